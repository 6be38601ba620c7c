import json
import logging
import re
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone

# Name of the job whose code is currently executing ("" outside jobs)
job_var: ContextVar[str] = ContextVar("job", default="")

_REDACTED_KEYS = ("password", "secret", "token", "api_key", "authorization", "webhook")
_EMAIL_RE = re.compile(r"([A-Za-z0-9._%+-]{1,2})[A-Za-z0-9._%+-]*@([A-Za-z0-9.-]+)")
_STANDARD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}
_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "aiosmtplib")


def _redact(value):
    """Mask secrets by key name and email addresses anywhere in string values."""
    if isinstance(value, dict):
        return {
            k: "********" if any(s in str(k).lower() for s in _REDACTED_KEYS) else _redact(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple, set)):
        return [_redact(v) for v in value]
    if isinstance(value, str):
        return _EMAIL_RE.sub(r"\1***@\2", value)
    return value


@contextmanager
def job_context(job: str) -> Iterator[None]:
    """Tag every log line emitted inside the block with ``job``."""
    token = job_var.set(job)
    try:
        yield
    finally:
        job_var.reset(token)


class JSONFormatter(logging.Formatter):
    """One JSON object per line, correlated by request id and job name."""

    def format(self, record: logging.LogRecord) -> str:
        from hrops.api.middleware.request_id import request_id_var

        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field, var in (("request_id", request_id_var), ("job", job_var)):
            current = var.get("")
            if current:
                entry[field] = current
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        extra = {k: v for k, v in record.__dict__.items() if k not in _STANDARD_ATTRS}
        if extra:
            entry["extra"] = _redact(extra)
        return json.dumps(entry, default=str, ensure_ascii=False)


def setup_logging(debug: bool = False) -> None:
    """Route all logging to stdout as JSON lines."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
