"""
Tests for the logging module.

Tests verify:
- configure_logging picks the renderer and level filter
- LogContext binds and unbinds context variables
- Repository events are emitted with their key/value context
"""

import pytest
import structlog
from structlog.contextvars import get_contextvars
from structlog.testing import capture_logs

from relmap.errors import RecordNotFoundError
from relmap.logging import (
    LogContext,
    _add_entity_key,
    bind_context,
    clear_context,
    configure_logging,
    configure_logging_from_settings,
    get_logger,
    unbind_context,
)
from relmap.settings import RelmapSettings


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    clear_context()
    structlog.reset_defaults()


class TestConfigureLogging:
    def test_json_renderer(self):
        configure_logging(level="WARNING", json_format=True)
        assert isinstance(structlog.get_config()["processors"][-1], structlog.processors.JSONRenderer)

    def test_console_renderer(self):
        configure_logging(json_format=False, add_timestamp=False)
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)
        assert not any(isinstance(p, structlog.processors.TimeStamper) for p in processors)

    def test_level_filter(self):
        configure_logging(level="WARNING", json_format=True)
        with capture_logs() as logs:
            logger = get_logger("relmap.tests")
            logger.debug("repository.get")
            logger.warning("repository.index_changed")
        assert [entry["event"] for entry in logs] == ["repository.index_changed"]

    def test_entity_key_is_in_the_chain(self):
        configure_logging(json_format=True)
        assert _add_entity_key in structlog.get_config()["processors"]

    def test_from_settings(self):
        configure_logging_from_settings(RelmapSettings(_env_file=None, log_level="ERROR", json_logs=True))
        assert isinstance(structlog.get_config()["processors"][-1], structlog.processors.JSONRenderer)


class TestContext:
    def test_bind_and_unbind(self):
        bind_context(model="Customer", index="1")
        assert get_contextvars() == {"model": "Customer", "index": "1"}
        unbind_context("index")
        assert get_contextvars() == {"model": "Customer"}

    def test_log_context(self):
        with LogContext(request_id="abc123"):
            assert get_contextvars()["request_id"] == "abc123"
        assert "request_id" not in get_contextvars()


class TestEntityKey:
    def test_model_and_index(self):
        event = _add_entity_key(None, "debug", {"event": "repository.update", "model": "Customer", "index": "1"})
        assert event["entity"] == "Customer{1}"

    def test_composite_index(self):
        event = _add_entity_key(None, "debug", {"model": "Membership", "index": "1+3"})
        assert event["entity"] == "Membership{1+3}"

    def test_unsaved_instance(self):
        event = _add_entity_key(None, "warning", {"model": "Customer", "index": None})
        assert event["entity"] == "Customer{new}"

    def test_needs_an_index(self):
        assert "entity" not in _add_entity_key(None, "debug", {"model": "Customer"})

    def test_keeps_an_explicit_entity(self):
        event = _add_entity_key(None, "debug", {"model": "Customer", "index": "1", "entity": "bond"})
        assert event["entity"] == "bond"


class TestEvents:
    def test_get_logger_logs_events(self):
        with capture_logs() as logs:
            get_logger("relmap.tests").info("repository.custom", model="Customer")
        assert logs == [{"event": "repository.custom", "model": "Customer", "log_level": "info"}]

    def test_failed_save_is_logged(self, repository, backend):
        customer = repository.get("Customer", 1)
        customer.name = "007"
        backend.tables["customers"].clear()
        with capture_logs() as logs:
            with pytest.raises(RecordNotFoundError):
                repository.save("Customer", customer)
        failures = [entry for entry in logs if entry["event"] == "repository.save_failed"]
        assert failures == [
            {
                "event": "repository.save_failed",
                "model": "Customer",
                "index": "1",
                "state": "retrieved",
                "log_level": "warning",
            }
        ]

    def test_index_changes_are_logged(self, repository):
        customer = repository.get("Customer", 2)
        customer.id = 5
        with capture_logs() as logs:
            repository.validate()
        assert [entry["event"] for entry in logs] == ["repository.index_changed"]
        assert logs[0]["current"] == "5"
