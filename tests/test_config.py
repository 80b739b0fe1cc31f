"""Tests for settings validation and the CLI parser."""

import pytest
from pydantic import ValidationError

from nexsview.__main__ import build_parser
from nexsview.config import Settings


class TestSettings:
    """Tests for Settings defaults and validators."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ("HOST", "PORT", "ENVIRONMENT", "LOG_LEVEL", "PLATFORM_URL"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings(_env_file=None)
        assert settings.port == 3001
        assert settings.platform_url == "https://platform.nexs.com"
        assert settings.platform_origin == "https://platform.nexs.com"
        assert settings.is_production is False

    def test_environment_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PORT", "8080")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        settings = Settings(_env_file=None)
        assert settings.port == 8080
        assert settings.log_level == "DEBUG"

    def test_platform_url_trailing_slash_and_origin(self) -> None:
        settings = Settings(_env_file=None, platform_url="https://staging.nexs.com/base/")
        assert settings.platform_url == "https://staging.nexs.com/base"
        assert settings.platform_origin == "https://staging.nexs.com"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"platform_url": "http://platform.nexs.com"},
            {"platform_url": "platform.nexs.com"},
            {"environment": "qa"},
            {"port": 0},
            {"log_level": "LOUD"},
            {"live_confirm_timeout": -1},
            {"replay_interval_ms": 10},
        ],
    )
    def test_invalid_values(self, overrides: dict) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **overrides)


class TestParser:
    """Tests for the CLI argument parser."""

    def test_serve_overrides(self) -> None:
        args = build_parser().parse_args(["serve", "--host", "0.0.0.0", "--port", "9000"])
        assert args.command == "serve"
        assert args.host == "0.0.0.0"
        assert args.port == 9000

    def test_stdio(self) -> None:
        args = build_parser().parse_args(["stdio"])
        assert args.command == "stdio"

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])
