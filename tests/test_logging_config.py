import json
import logging

from conftest import USER

from app.logging_config import JSONFormatter, get_logger, get_user_logger


def _record(msg="hello", **extra):
    record = logging.LogRecord("fotoagenda.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_basic_fields(self):
        data = json.loads(JSONFormatter().format(_record()))
        assert data["level"] == "INFO"
        assert data["logger"] == "fotoagenda.test"
        assert data["message"] == "hello"
        assert "context" not in data

    def test_context_and_unicode(self):
        data = json.loads(JSONFormatter().format(_record("olá", context={"user_id": USER})))
        assert data["message"] == "olá"
        assert data["context"] == {"user_id": USER}


class TestLoggers:
    def test_namespace(self):
        assert get_logger("webhook").name == "fotoagenda.webhook"

    def test_user_logger_merges_context(self):
        adapter = get_user_logger("message_service", USER)
        msg, kwargs = adapter.process("classified", {"context": {"decision": "confirm"}})
        assert msg == "classified"
        assert kwargs == {"extra": {"context": {"user_id": USER, "decision": "confirm"}}}
