"""Unit tests for structured logging helpers."""
import json
import logging

import pytest

from observability import ConsoleFormatter, JSONFormatter, log_data_structure, log_workflow


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def captured():
    logger = logging.getLogger("mealplan.tests.observability")
    logger.handlers = []
    handler = _ListHandler()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    yield logger, handler.records
    logger.handlers = []


def _record(message="Validation result", **fields):
    record = logging.LogRecord("mealplan.validator", logging.INFO, __file__, 10, message, None, None)
    if fields:
        record.extra_fields = fields
    return record


@pytest.mark.unit
class TestFormatters:
    def test_json_formatter_merges_extra_fields(self):
        payload = json.loads(JSONFormatter().format(_record(critical=2, plan_type="weekly")))

        assert payload["message"] == "Validation result"
        assert payload["logger"] == "mealplan.validator"
        assert payload["critical"] == 2
        assert payload["plan_type"] == "weekly"

    def test_console_formatter(self):
        line = ConsoleFormatter().format(_record(attempt=1))
        assert line == "[INFO] mealplan.validator: Validation result (attempt=1)"


@pytest.mark.unit
class TestWorkflowLogging:
    def test_start_and_complete(self, captured):
        logger, records = captured

        with log_workflow(logger, "repair_loop", max_attempts=3):
            pass

        phases = [r.extra_fields["phase"] for r in records]
        assert phases == ["start", "complete"]
        assert records[-1].extra_fields["max_attempts"] == 3
        assert "duration_ms" in records[-1].extra_fields

    def test_error_is_logged_and_reraised(self, captured):
        logger, records = captured

        with pytest.raises(ValueError):
            with log_workflow(logger, "chunked_generation"):
                raise ValueError("window failed")

        assert records[-1].extra_fields["phase"] == "error"
        assert records[-1].extra_fields["error_type"] == "ValueError"

    def test_large_payload_is_truncated(self, captured):
        logger, records = captured

        log_data_structure(logger, "Generated text", "x" * 6000, level="INFO")

        fields = records[-1].extra_fields
        assert fields["truncated"] is True
        assert fields["full_size"] == 6000
