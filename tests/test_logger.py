from __future__ import annotations

import json
import logging

from whisperly.core.config import Settings
from whisperly.core.logger import LOG_FILE_NAME, JsonFormatter, SizeAndTimeRotatingFileHandler, build_handler
from whisperly.core.trace import new_trace_id, set_trace_id


def _record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("whisperly.test", logging.INFO, __file__, 1, message, None, None)
    record.__dict__.update(extra)
    return record


def test_json_formatter_carries_the_trace_id():
    tid = new_trace_id()
    line = JsonFormatter().format(_record("Action summarize started"))
    data = json.loads(line)
    assert data["message"] == "Action summarize started"
    assert data["level"] == "INFO"
    assert data["category"] == "whisperly.test"
    assert data["trace_id"] == tid
    set_trace_id(None)


def test_json_formatter_without_trace():
    set_trace_id(None)
    data = json.loads(JsonFormatter().format(_record("idle")))
    assert data["trace_id"] is None
    assert "exc" not in data
    assert "action" not in data


def test_json_formatter_copies_overlay_context():
    record = _record("Action summarize succeeded", action="summarize", run=3, outcome="succeeded", color="red")
    data = json.loads(JsonFormatter().format(record))
    assert data["action"] == "summarize"
    assert data["run"] == 3
    assert data["outcome"] == "succeeded"
    assert "color" not in data


def test_handler_writes_json_lines_into_the_log_dir(tmp_path):
    settings = Settings(_env_file=None, log_dir=str(tmp_path / "logs"))
    handler = build_handler(settings)
    try:
        handler.handle(_record("Voice capture started", language="fr-FR"))
    finally:
        handler.close()

    lines = (tmp_path / "logs" / LOG_FILE_NAME).read_text(encoding="utf-8").splitlines()
    assert json.loads(lines[0])["language"] == "fr-FR"


def test_handler_rolls_over_on_size(tmp_path):
    handler = SizeAndTimeRotatingFileHandler(tmp_path / "overlay.jsonl", max_bytes=10, backup_count=2)
    handler.setFormatter(JsonFormatter())
    try:
        handler.stream = handler._open()
        handler.stream.write("x" * 20)
        assert handler.shouldRollover(_record("next")) is True
    finally:
        handler.close()
