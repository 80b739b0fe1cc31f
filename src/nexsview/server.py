"""MCP server for the NExS spreadsheet viewer.

Registers the agent-facing tools, the internal tools the view calls, and
the HTML view resource. Tools are thin: they translate arguments, call
SpreadsheetService, and shape the result.

Tools:
- render_nexs_spreadsheet  - show an app inline and seed a session
- get_cell / set_cell      - read and write cells
- restore_nexs_spreadsheet - (view only) last URL, for refresh recovery
- sync_from_live_frame     - (view only) frame session and cell reports
- take_pending_writes      - (view only) agent writes to replay in the frame
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated, Any, Literal

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger
from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from mcp.types import CallToolResult, TextContent
from pydantic import BaseModel, Field

from nexsview import health
from nexsview.config import Settings, get_settings
from nexsview.exceptions import NexsError
from nexsview.logging import configure_logging
from nexsview.relay import DRAIN_TOOL, SYNC_TOOL
from nexsview.service import SpreadsheetService
from nexsview.session import CachedCell, PendingWrite, SessionStore
from nexsview.transport import NexsTransport

RESOURCE_URI = "ui://nexs/spreadsheet.html"
RESOURCE_MIME_TYPE = "text/html;profile=mcp-app"

STATIC_DIR = Path(__file__).parent / "static"

_VIEW_META = {"ui": {"resourceUri": RESOURCE_URI}}
_APP_ONLY_META = {"ui": {"resourceUri": RESOURCE_URI, "visibility": ["app"]}}


# =============================================================================
# Tool output models
# =============================================================================


class RenderOutput(BaseModel):
    app_url: str = Field(description="The NExS spreadsheet URL being rendered.")


class RestoreOutput(BaseModel):
    app_url: str | None = Field(description="Last spreadsheet URL, or null.")


class CellOutput(BaseModel):
    sheet: str = Field(description="Sheet name the cell was found in.")
    addr: str = Field(description="Cell address (e.g. 'A1').")
    value: str | int | float = Field(description="Raw cell value.")
    text: str = Field(description="Formatted display text.")
    datatype: Literal["numeric", "string", "error", "n/a"] = Field(description="Cell data type.")

    @classmethod
    def from_cell(cls, cell: CachedCell) -> "CellOutput":
        return cls.model_validate(cell.to_dict())

    def summary(self) -> str:
        return f"{self.sheet}!{self.addr} = {self.text} ({self.datatype})"


class ReplayHint(BaseModel):
    view_index: int | None = Field(description="Frame view showing the sheet, if any.")
    sheet: str
    addr: str
    value: str | int | float

    @classmethod
    def from_write(cls, write: PendingWrite) -> "ReplayHint":
        return cls.model_validate(write.to_dict())


class SetCellOutput(BaseModel):
    revision: int = Field(description="New revision number after the change.")
    changed: list[CellOutput] = Field(
        description="Cells that changed as a result of this input, including the written cell."
    )
    replay: ReplayHint = Field(description="How the view replays this write into the frame.")


class SyncOutput(BaseModel):
    accepted: bool
    live_bound: bool = False


class PendingWritesOutput(BaseModel):
    writes: list[ReplayHint]


# =============================================================================
# MCP server
# =============================================================================


def load_view_html(settings: Settings) -> str:
    """Read the bundled view and fill in the platform origin and replay interval."""
    html = (STATIC_DIR / "spreadsheet.html").read_text(encoding="utf-8")
    return html.replace("__PLATFORM_ORIGIN__", settings.platform_origin).replace(
        "__REPLAY_INTERVAL_MS__", str(settings.replay_interval_ms)
    )


def _with_text(text: str, output: BaseModel) -> CallToolResult:
    """A result carrying a readable summary next to the structured output."""
    return CallToolResult(
        content=[TextContent(type="text", text=text)],
        structuredContent=output.model_dump(mode="json"),
    )


def _tool_error(tool: str, error: NexsError) -> ToolError:
    logger.info(
        "Tool call failed",
        extra={"tool": tool, "error_type": type(error).__name__, "error": str(error)},
    )
    return ToolError(str(error))


def create_mcp_server(service: SpreadsheetService, settings: Settings) -> FastMCP:
    """Create the MCP server with every tool bound to one service."""
    mcp = FastMCP(
        "NExS Spreadsheet Viewer",
        host=settings.host,
        port=settings.port,
        streamable_http_path="/mcp",
        stateless_http=True,
    )

    @mcp.tool(
        name="render_nexs_spreadsheet",
        title="Render NExS Spreadsheet",
        description=(
            "Renders a live, interactive NExS spreadsheet inline in the conversation. "
            "Use when the user provides a published NExS platform URL "
            f"({settings.platform_url}/...). "
            "After rendering, use get_cell to read cell values and set_cell to write them."
        ),
        meta=_VIEW_META,
    )
    async def render_nexs_spreadsheet(
        app_url: str = Field(
            description=f"A published NExS spreadsheet URL ({settings.platform_url}/...)."
        ),
    ) -> RenderOutput:
        try:
            url = await service.render(app_url)
        except NexsError as e:
            raise _tool_error("render_nexs_spreadsheet", e) from e
        return RenderOutput(app_url=url)

    @mcp.tool(
        name="restore_nexs_spreadsheet",
        description="Returns the last-rendered NExS spreadsheet URL for refresh recovery.",
        meta=_APP_ONLY_META,
    )
    async def restore_nexs_spreadsheet() -> RestoreOutput:
        return RestoreOutput(app_url=service.restore_last_session())

    @mcp.tool(
        name="get_cell",
        title="Get NExS Cell Value",
        description=(
            "Reads the current value of a cell from the NExS spreadsheet. "
            "Returns the formatted text, raw data value, and data type. "
            "Requires render_nexs_spreadsheet to have been called first."
        ),
    )
    async def get_cell(
        cell_ref: str = Field(
            description="Cell reference such as 'A1', 'B17', or 'Sheet1!A1'."
        ),
        sheet: str | None = Field(
            default=None,
            description=(
                "Sheet name. Optional when cell_ref includes the sheet (e.g. 'Sheet1!A1') "
                "or the spreadsheet has only one sheet."
            ),
        ),
    ) -> Annotated[CallToolResult, CellOutput]:
        try:
            cell = await service.get_cell(cell_ref, sheet)
        except NexsError as e:
            raise _tool_error("get_cell", e) from e
        output = CellOutput.from_cell(cell)
        return _with_text(output.summary(), output)

    @mcp.tool(
        name="set_cell",
        title="Set NExS Cell Value",
        description=(
            "Writes a value to an editable cell in the NExS spreadsheet and returns "
            "all cells that changed as a result of the backend recalculation. "
            "Only cells marked as editable in the spreadsheet can be written. "
            "Requires render_nexs_spreadsheet to have been called first."
        ),
    )
    async def set_cell(
        cell_ref: str = Field(description="Cell reference such as 'A1', 'B17', or 'Sheet1!A1'."),
        value: str | int | float = Field(description="New value to write to the cell."),
        sheet: str | None = Field(
            default=None,
            description=(
                "Sheet name. Optional when cell_ref includes the sheet "
                "or the spreadsheet has one sheet."
            ),
        ),
    ) -> Annotated[CallToolResult, SetCellOutput]:
        try:
            result = await service.set_cell(cell_ref, value, sheet)
        except NexsError as e:
            raise _tool_error("set_cell", e) from e
        output = SetCellOutput(
            revision=result.revision,
            changed=[CellOutput.from_cell(cell) for cell in result.changed],
            replay=ReplayHint.from_write(result.replay),
        )
        return _with_text(result.summary(), output)

    @mcp.tool(
        name=SYNC_TOOL,
        description=(
            "Receives the embedded frame's session and cell reports. "
            "Internal use only: called by the view, not the model."
        ),
        meta=_APP_ONLY_META,
    )
    async def sync_from_live_frame(
        cell_maps: list[Any] = Field(description="Per-view cell maps from the frame."),
        is_initial: bool = Field(description="True for the frame's initial full report."),
        session_id: str | None = Field(default=None, description="The frame's session UUID."),
        revision: int | None = Field(default=None, description="The frame's revision."),
        views: list[Any] | None = Field(default=None, description="The frame's view list."),
    ) -> SyncOutput:
        session = service.sync_from_frame(cell_maps, is_initial, session_id, revision, views)
        return SyncOutput(
            accepted=session is not None,
            live_bound=bool(session and session.live_bound),
        )

    @mcp.tool(
        name=DRAIN_TOOL,
        description=(
            "Returns and clears agent writes waiting to be replayed into the frame. "
            "Internal use only: called by the view, not the model."
        ),
        meta=_APP_ONLY_META,
    )
    async def take_pending_writes() -> PendingWritesOutput:
        writes = service.take_pending_writes()
        return PendingWritesOutput(writes=[ReplayHint.from_write(w) for w in writes])

    @mcp.resource(
        RESOURCE_URI,
        name="NExS Spreadsheet View",
        mime_type=RESOURCE_MIME_TYPE,
        meta={
            "ui": {
                "prefersBorder": True,
                "csp": {"frameDomains": [settings.platform_origin]},
            }
        },
    )
    def spreadsheet_view() -> str:
        return load_view_html(settings)

    return mcp


def build_service(settings: Settings) -> SpreadsheetService:
    """Create the conversation's store, transport and service."""
    transport = NexsTransport(
        platform_url=settings.platform_url,
        timeout=settings.request_timeout,
    )
    return SpreadsheetService(
        SessionStore(),
        transport,
        platform_url=settings.platform_url,
        live_confirm_timeout=settings.live_confirm_timeout,
    )


# =============================================================================
# HTTP application
# =============================================================================


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global handler for unhandled exceptions."""
    logger.exception(
        "Unhandled exception",
        extra={"path": request.url.path, "error": str(exc)},
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


def create_app(
    settings: Settings | None = None,
    service: SpreadsheetService | None = None,
) -> FastAPI:
    """Create the FastAPI application hosting the MCP endpoint at /mcp."""
    settings = settings or get_settings()
    service = service or build_service(settings)
    mcp = create_mcp_server(service, settings)
    mcp_app = mcp.streamable_http_app()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"Starting nexsview server on {settings.host}:{settings.port}",
            extra={"platform_url": settings.platform_url},
        )
        async with mcp.session_manager.run():
            yield
        await service.close()
        logger.info("Shutting down nexsview server")

    app = FastAPI(
        title="nexsview",
        description="MCP server rendering live NExS spreadsheets in chat",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/api/docs" if not settings.is_production else None,
        redoc_url=None,
        openapi_url="/api/openapi.json" if not settings.is_production else None,
    )
    app.state.settings = settings
    app.state.service = service

    app.add_exception_handler(Exception, unhandled_exception_handler)
    app.include_router(health.router, prefix="/api")
    app.mount("/", mcp_app)

    return app


def run_http(settings: Settings) -> None:
    """Serve the MCP endpoint over streamable HTTP."""
    import uvicorn

    configure_logging(is_production=settings.is_production, log_level=settings.log_level)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_config=None)


def run_stdio(settings: Settings) -> None:
    """Serve the MCP protocol over stdin/stdout."""
    configure_logging(is_production=settings.is_production, log_level=settings.log_level)
    service = build_service(settings)
    create_mcp_server(service, settings).run("stdio")
