import json
import logging

from confmanager.common.logging_setup import (
    JsonFormatter,
    configure_service_loggers,
    get_service_logger,
)


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord("confmanager.broker", logging.INFO, __file__, 1, "changed %s", ("Timeout",), None)
    record.service = "broker"
    record.application = "alpha"

    data = json.loads(JsonFormatter().format(record))

    assert data["message"] == "changed Timeout"
    assert data["level"] == "INFO"
    assert data["service"] == "broker"
    assert data["application"] == "alpha"


def test_service_logger_adds_service_name(monkeypatch):
    monkeypatch.setenv("CONFMANAGER_LOG_LEVEL", "WARNING")
    adapter = get_service_logger("test.adapter")

    assert adapter.logger.name == "confmanager.test.adapter"
    assert adapter.logger.level == logging.WARNING
    assert adapter.process("hello", {})[1]["extra"]["service"] == "test.adapter"


def test_configure_service_loggers_switches_format(monkeypatch):
    monkeypatch.setenv("CONFMANAGER_LOG_LEVEL", "INFO")
    monkeypatch.setenv("CONFMANAGER_LOG_FORMAT", "json")
    adapter = get_service_logger("test.reconfigure")

    configure_service_loggers("DEBUG", json_format=False)

    logger = logging.getLogger("confmanager.test.reconfigure")
    assert logger is adapter.logger
    assert logger.level == logging.DEBUG
    assert not isinstance(logger.handlers[0].formatter, JsonFormatter)

    configure_service_loggers("INFO", json_format=True)
