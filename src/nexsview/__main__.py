"""CLI entry point for nexsview.

Usage:
    python -m nexsview serve [--host HOST] [--port PORT]
    python -m nexsview stdio
"""

from __future__ import annotations

import argparse
import sys

from pydantic import ValidationError

from nexsview.config import Settings, get_settings
from nexsview.server import run_http, run_stdio


def cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    """Serve the MCP endpoint over streamable HTTP."""
    overrides = {k: v for k, v in (("host", args.host), ("port", args.port)) if v is not None}
    if overrides:
        settings = settings.model_copy(update=overrides)
    run_http(settings)
    return 0


def cmd_stdio(_args: argparse.Namespace, settings: Settings) -> int:
    """Serve the MCP protocol over stdin/stdout."""
    run_stdio(settings)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nexsview",
        description="MCP server rendering live NExS spreadsheets in chat",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Serve MCP over streamable HTTP")
    serve_parser.add_argument("--host", help="Interface to bind (default from HOST)")
    serve_parser.add_argument("--port", type=int, help="Port to listen on (default from PORT)")
    serve_parser.set_defaults(func=cmd_serve)

    stdio_parser = subparsers.add_parser("stdio", help="Serve MCP over stdin/stdout")
    stdio_parser.set_defaults(func=cmd_stdio)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    return args.func(args, settings)


if __name__ == "__main__":
    sys.exit(main())
