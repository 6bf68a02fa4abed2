import json
import logging
import sys
from datetime import datetime, timezone
from threading import local

LOGGER_NAME = "tradeplan"

_log_ctx = local()

_CONTEXT_FIELDS = ("fn", "request_id", "plan_key", "stage")
_EXTRA_FIELDS = ("duration_ms", "metrics", "error_code", "preview", "status")


def set_log_context(**kwargs):
    for k, v in kwargs.items():
        setattr(_log_ctx, k, v)


def clear_log_context(keys=None):
    if keys is None:
        keys = [k for k in _log_ctx.__dict__ if not k.startswith("_")]
    for k in keys:
        if hasattr(_log_ctx, k):
            delattr(_log_ctx, k)


def get_log_context() -> dict:
    return {k: v for k, v in _log_ctx.__dict__.items() if not k.startswith("_")}


def get_logger(name: str | None = None) -> logging.Logger:
    if not name:
        return logging.getLogger(LOGGER_NAME)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()
        data = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                "%Y-%m-%dT%H:%M:%SZ"
            ),
            "level": record.levelname,
        }
        for field in _CONTEXT_FIELDS:
            data[field] = getattr(record, field, None) or ctx.get(field)
        data["msg"] = record.getMessage()

        for field in _EXTRA_FIELDS:
            if hasattr(record, field):
                data[field] = getattr(record, field)

        if record.exc_info:
            data["exc"] = self.formatException(record.exc_info)

        # Clean nulls
        data = {k: v for k, v in data.items() if v is not None}
        return json.dumps(data, ensure_ascii=False, default=str)


def setup_logging(level=logging.INFO, log_file: str = None) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()

    formatter = JsonFormatter()

    sh = logging.StreamHandler(sys.stdout)
    sh.setFormatter(formatter)
    logger.addHandler(sh)

    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    return logger
