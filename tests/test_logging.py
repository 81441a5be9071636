from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest
from loguru import logger

from holodeck.api.environment import Environment
from holodeck.config import Settings
from holodeck.logging import LogConfig, configure_logging, setup_logging, teardown_logging
from holodeck.providers.aws import AWSProvider
from tests.fakes import OPERATOR_IP, FakeClients

pytestmark = [pytest.mark.unit]


class TestLogging:
    def test_file_handler_receives_debug(self, tmp_path: Path) -> None:
        log_file = tmp_path / "holodeck.log"
        handler_ids = setup_logging(LogConfig(level="ERROR", file=str(log_file), console=False))
        try:
            logger.bind().patch(lambda r: r.update(name="holodeck.test")).debug("hello from holodeck")
        finally:
            teardown_logging(handler_ids)

        assert "hello from holodeck" in log_file.read_text()

    def test_console_handler_only_when_requested(self) -> None:
        handler_ids = setup_logging(LogConfig(console=False))
        assert handler_ids == []
        teardown_logging(handler_ids)

    def test_teardown_removes_handlers(self, tmp_path: Path) -> None:
        handler_ids = setup_logging(LogConfig(file=str(tmp_path / "a.log")))
        assert len(handler_ids) == 2
        teardown_logging(handler_ids)
        for hid in handler_ids:
            with pytest.raises(ValueError):
                logger.remove(hid)


class TestConfigureLogging:
    def test_replaces_previous_sinks(self, tmp_path: Path) -> None:
        first, second = tmp_path / "first.log", tmp_path / "second.log"
        try:
            configure_logging(LogConfig(file=str(first), console=False))
            configure_logging(LogConfig(file=str(second), console=False))
            logger.patch(lambda r: r.update(name="holodeck.test")).info("after reconfigure")
        finally:
            configure_logging(None)

        assert "after reconfigure" not in first.read_text()
        assert "after reconfigure" in second.read_text()

    def test_ci_console_has_no_colors(self, capsys: pytest.CaptureFixture[str]) -> None:
        try:
            configure_logging(LogConfig(level="INFO"))
            logger.patch(lambda r: r.update(name="holodeck.test")).info("plain line")
        finally:
            configure_logging(None)

        assert capsys.readouterr().err.strip() == "INFO    plain line"

    def test_provider_applies_log_settings(
        self,
        tmp_path: Path,
        clients: FakeClients,
        settings: Settings,
        single_node_env: Environment,
    ) -> None:
        log_file = tmp_path / "holodeck.log"
        configured = replace(settings, log=LogConfig(file=str(log_file), console=False))
        provider = AWSProvider(
            single_node_env,
            tmp_path / "env.yaml",
            settings=configured,
            clients=clients,  # type: ignore[arg-type]
            detect_ip=lambda: OPERATOR_IP,
            environ={},
        )
        try:
            provider.dry_run()
        finally:
            configure_logging(None)

        assert "Dry run passed" in log_file.read_text()
