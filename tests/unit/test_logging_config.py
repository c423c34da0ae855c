"""structlog configuration and settings-driven levels."""

import json
import logging

import pytest
import structlog

from classquest.config import Settings
from classquest.logging_config import setup_logging


@pytest.fixture(autouse=True)
def _restore_logging():
    yield
    setup_logging(Settings(log_format="console", log_level="INFO"))


class TestSetupLogging:
    def test_json_events_carry_bound_context(self, caplog):
        setup_logging(Settings(log_format="json", log_level="DEBUG"))
        log = structlog.get_logger("classquest.tests")

        with structlog.contextvars.bound_contextvars(grant_batch="abc123"):
            log.info("points_granted", students=2)

        payload = json.loads(caplog.records[-1].getMessage())
        assert payload["event"] == "points_granted"
        assert payload["grant_batch"] == "abc123"
        assert payload["students"] == 2
        assert payload["level"] == "info"
        assert payload["logger"] == "classquest.tests"
        assert "timestamp" in payload

    def test_root_level_follows_settings(self):
        setup_logging(Settings(log_level="warning"))
        assert logging.getLogger().level == logging.WARNING

    def test_unknown_level_falls_back_to_info(self):
        setup_logging(Settings(log_level="loud"))
        assert logging.getLogger().level == logging.INFO

    def test_sql_logging_is_opt_in(self):
        setup_logging(Settings())
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

        setup_logging(Settings(log_sql=True))
        assert logging.getLogger("sqlalchemy.engine").level == logging.INFO
        assert logging.getLogger("aiosqlite").level == logging.INFO
