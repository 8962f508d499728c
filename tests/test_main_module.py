"""Tests for the pairbot command line entry point."""

from __future__ import annotations

import logging
import sys
from collections.abc import Generator
from pathlib import Path
from unittest.mock import patch

import pytest

from pairbot import __version__
from pairbot.config import reset_settings
from pairbot.main import main


@pytest.fixture(autouse=True)
def reset_state() -> Generator[None, None, None]:
    """Reset logging and cached settings between tests."""
    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers.copy()
    original_level = root_logger.level
    reset_settings()

    yield

    root_logger.handlers = original_handlers
    root_logger.setLevel(original_level)
    reset_settings()


def _run(argv: list[str]) -> None:
    with patch.object(sys, "argv", ["pairbot", *argv]):
        main()


class TestMain:
    """Tests for main()."""

    def test_version(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            _run(["--version"])

        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_validate_ok(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            _run(["--validate", "--data-dir", str(tmp_path)])

        assert exc_info.value.code == 0
        output = capsys.readouterr().out
        assert "Configuration is valid" in output
        assert str(tmp_path) in output

    def test_validate_reports_problems(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with pytest.raises(SystemExit) as exc_info:
            _run(["--validate", "--data-dir", str(tmp_path), "--bridge-url", "http://bridge"])

        assert exc_info.value.code == 1
        assert "BRIDGE_URL" in capsys.readouterr().out

    def test_invalid_config_refuses_to_start(self, tmp_path: Path) -> None:
        with patch("uvicorn.run") as run, pytest.raises(SystemExit) as exc_info:
            _run(["--data-dir", str(tmp_path), "--bridge-url", "tcp://bridge"])

        assert exc_info.value.code == 1
        run.assert_not_called()

    def test_starts_server_with_cli_overrides(self, tmp_path: Path) -> None:
        with patch("uvicorn.run") as run, patch("pairbot.main.setup_logging") as setup:
            _run(["--host", "127.0.0.1", "--port", "8123", "--data-dir", str(tmp_path), "--debug"])

        setup.assert_called_once()
        assert setup.call_args.kwargs["debug"] is True
        run.assert_called_once()
        app = run.call_args.args[0]
        assert app.state.settings.data_dir == tmp_path
        assert run.call_args.kwargs["host"] == "127.0.0.1"
        assert run.call_args.kwargs["port"] == 8123
        assert run.call_args.kwargs["log_level"] == "debug"
