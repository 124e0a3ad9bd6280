"""
Unit tests for the main module — composition root.

Tests verify structlog configuration and the wiring logic
without binding sockets or installing real process hooks.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import structlog

from transit_guard.config import Environment
from transit_guard.main import configure_structlog, main


class TestConfigureStructlog:
    """Verify structlog configuration function."""

    def test_configure_structlog_sets_log_level(self) -> None:
        """
        GIVEN log_level="WARNING"
        WHEN configure_structlog is called
        THEN structlog is configured (no exception raised).
        """
        configure_structlog("WARNING")
        assert structlog.get_logger() is not None

    def test_configure_structlog_json_output(self) -> None:
        configure_structlog("INFO", json_output=True)
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)

    def test_configure_structlog_invalid_level_falls_back(self) -> None:
        """
        GIVEN an invalid log_level string
        WHEN configure_structlog is called
        THEN it falls back to INFO (no crash).
        """
        configure_structlog("NONEXISTENT")
        assert structlog.get_logger() is not None


class TestMain:
    def test_configuration_error_exits_one(self) -> None:
        with patch("transit_guard.main.AppSettings", side_effect=ValueError("bad port")):
            with pytest.raises(SystemExit) as info:
                main()

        assert info.value.code == 1

    def test_wires_handlers_controller_and_serves(self, make_settings) -> None:
        """
        GIVEN valid production settings
        WHEN main runs with the process-level adapters mocked
        THEN fault handlers are installed, the shutdown controller is installed
             and exposed on app.state, and the listener is served.
        """
        settings = make_settings(Environment.PRODUCTION)
        with (
            patch("transit_guard.main.AppSettings", return_value=settings),
            patch("transit_guard.main.configure_structlog"),
            patch("transit_guard.main.OsProcessControl") as process_cls,
            patch("transit_guard.main.ProcessFaultHandlers") as handlers_cls,
            patch("transit_guard.main.create_app") as create_app,
            patch("transit_guard.main.UvicornListener") as listener_cls,
            patch("transit_guard.main.GracefulShutdownController") as controller_cls,
            patch("transit_guard.main._serve", new=MagicMock()) as serve,
            patch("transit_guard.main.asyncio.run") as run,
        ):
            main()

        handlers_cls.return_value.install.assert_called_once_with()
        controller_cls.assert_called_once_with(
            listener_cls.return_value,
            process_cls.return_value,
            force_timeout_seconds=10.0,
        )
        controller_cls.return_value.install.assert_called_once_with()
        assert create_app.return_value.state.shutdown is controller_cls.return_value
        serve.assert_called_once_with(listener_cls.return_value, process_cls.return_value)
        run.assert_called_once_with(serve.return_value)
