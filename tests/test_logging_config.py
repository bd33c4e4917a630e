import json
import logging

from supportrelay.logging_config import JSONFormatter, chat_logger


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("supportrelay.test", logging.INFO, __file__, 1, "hello %s", ("there",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_plain_record(self):
        data = json.loads(JSONFormatter().format(make_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "supportrelay.test"
        assert data["message"] == "hello there"
        assert "context" not in data

    def test_context_is_nested(self):
        data = json.loads(JSONFormatter().format(make_record(context={"chat_id": "web_1"})))
        assert data["context"] == {"chat_id": "web_1"}


class TestChatLogger:
    def test_chat_id_is_merged_with_call_context(self):
        log = chat_logger("test", "tg_42")

        msg, kwargs = log.process("routed", {"extra": {"context": {"delivered": True}}})

        assert msg == "routed"
        assert kwargs["extra"]["context"] == {"chat_id": "tg_42", "delivered": True}

    def test_chat_id_without_call_context(self):
        _, kwargs = chat_logger("test", "web_1").process("x", {})
        assert kwargs["extra"] == {"context": {"chat_id": "web_1"}}
