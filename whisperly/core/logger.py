import json
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from whisperly.core.config import Settings, get_settings
from whisperly.core.trace import get_trace_id

LOG_FILE_NAME = "whisperly.jsonl"

# Keys accepted through ``extra=`` and copied into the JSON line.
CONTEXT_FIELDS = ("action", "run", "provider", "outcome", "intent", "language")


class JsonFormatter(logging.Formatter):
    """Serialize log records as one JSON object per line.

    Overlay context passed through ``extra=`` (the action kind, the run
    token, the provider...) lands next to the message so a single run can
    be followed across the orchestrator and the text service.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "category": record.name,
            "message": record.getMessage(),
            "trace_id": get_trace_id() or None,
        }
        for key in CONTEXT_FIELDS:
            value = record.__dict__.get(key)
            if value is not None:
                log_record[key] = value
        if record.exc_info:
            log_record["exc"] = self.formatException(record.exc_info)
        return json.dumps(log_record, ensure_ascii=False, default=str)


class SizeAndTimeRotatingFileHandler(TimedRotatingFileHandler):
    """Rotate at midnight, or earlier once the file reaches ``max_bytes``."""

    def __init__(self, filename: str | Path, max_bytes: int = 0, backup_count: int = 0) -> None:
        self.maxBytes = max_bytes
        super().__init__(
            str(filename),
            when="midnight",
            backupCount=backup_count,
            encoding="utf-8",
            delay=True,
        )

    def shouldRollover(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if self.maxBytes > 0:
            if self.stream is None:  # pragma: no cover - delayed open
                self.stream = self._open()
            size = len(f"{self.format(record)}\n".encode("utf-8"))
            if self.stream.tell() + size >= self.maxBytes:
                return True
        return super().shouldRollover(record)


def log_dir(settings: Settings | None = None) -> Path:
    root = Path((settings or get_settings()).log_dir)
    root.mkdir(parents=True, exist_ok=True)
    return root


def build_handler(settings: Settings) -> logging.Handler:
    """Create the rotating JSON handler every whisperly logger writes to."""
    handler = SizeAndTimeRotatingFileHandler(
        log_dir(settings) / LOG_FILE_NAME,
        max_bytes=settings.log_rotate_mb * 1024 * 1024,
        backup_count=settings.log_retention_days,
    )
    handler.setFormatter(JsonFormatter())
    return handler


_HANDLER: logging.Handler | None = None
_LOGGERS: dict[str, logging.Logger] = {}


def _shared_handler() -> logging.Handler:
    global _HANDLER
    if _HANDLER is None:
        _HANDLER = build_handler(get_settings())
    return _HANDLER


def get_logger(name: str) -> logging.Logger:
    """Return the named logger, attached to the shared overlay log file."""
    if name not in _LOGGERS:
        logger = logging.getLogger(name)
        if not logger.handlers:
            logger.addHandler(_shared_handler())
            logger.setLevel(get_settings().log_level.upper())
        _LOGGERS[name] = logger
    return _LOGGERS[name]
