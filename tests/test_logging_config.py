"""Tests for logging configuration."""

import json
import logging

from reviewtree.logging_config import HIERARCHY_LOGGERS, JsonFormatter, configure_logging


class TestJsonFormatter:
    def test_generation_included_when_present(self):
        record = logging.LogRecord("reviewtree.coordinator", logging.INFO, __file__, 1, "published %d", (3,), None)
        record.generation = 7
        payload = json.loads(JsonFormatter().format(record))
        assert payload["message"] == "published 3"
        assert payload["generation"] == 7
        assert payload["level"] == "INFO"

    def test_generation_absent(self):
        record = logging.LogRecord("x", logging.WARNING, __file__, 1, "plain", (), None)
        assert "generation" not in json.loads(JsonFormatter().format(record))


class TestDebugHierarchy:
    def test_hierarchy_loggers_toggle(self):
        configure_logging(level="INFO", debug_hierarchy=True)
        assert all(logging.getLogger(name).level == logging.DEBUG for name in HIERARCHY_LOGGERS)

        configure_logging(level="INFO", debug_hierarchy=False)
        assert all(logging.getLogger(name).level == logging.NOTSET for name in HIERARCHY_LOGGERS)
