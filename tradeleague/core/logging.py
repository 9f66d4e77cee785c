"""Logging setup: JSON or text lines tagged with request and job context."""

from __future__ import annotations

import json
import logging
import re
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

from .config import settings


request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
# (job name, run key) of the scheduled job currently executing
job_var: ContextVar[Optional[tuple[str, Optional[str]]]] = ContextVar("job", default=None)

_REDACT_KEYS = ("appsecret", "app_secret", "appkey", "app_key", "access_token", "cron_secret", "authorization")
_REDACT_RE = re.compile(
    r"""(['"]?(?:%s)['"]?\s*[=:]\s*(?:bearer\s+)?)[^\s,}\]'"]+""" % "|".join(_REDACT_KEYS),
    re.IGNORECASE,
)


@contextmanager
def job_context(job_name: str, run_key: Optional[str] = None) -> Iterator[None]:
    """Tag every record logged inside the block with the running job."""
    token = job_var.set((job_name, run_key))
    try:
        yield
    finally:
        job_var.reset(token)


def fields(**values: Any) -> dict[str, Any]:
    """``logger.info("...", **fields(updated=3))`` attaches structured values."""
    return {"extra": {"extra_fields": values}}


def _context() -> dict[str, Any]:
    context: dict[str, Any] = {}
    request_id = request_id_var.get()
    if request_id:
        context["request_id"] = request_id
    job = job_var.get()
    if job:
        context["job"] = job[0]
        if job[1]:
            context["run_key"] = job[1]
    return context


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context(),
            **getattr(record, "extra_fields", {}),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Single-line text for local runs."""

    def format(self, record: logging.LogRecord) -> str:
        context = _context()
        tags = ""
        if "request_id" in context:
            tags += f"[{context['request_id'][:8]}] "
        if "job" in context:
            tags += f"[{context['job']}{'@' + context['run_key'] if 'run_key' in context else ''}] "
        timestamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        line = f"{timestamp} {record.levelname:8} {tags}{record.name}: {record.getMessage()}"
        extra = getattr(record, "extra_fields", None)
        if extra:
            line += " " + " ".join(f"{k}={v}" for k, v in extra.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class SensitiveDataFilter(logging.Filter):
    """Mask provider credentials and the cron secret in messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _REDACT_RE.sub(r"\1[REDACTED]", message)
        if redacted != message:
            record.msg, record.args = redacted, None
        return True


def setup_logging() -> None:
    """Install a single stdout handler on the root logger."""
    level = getattr(logging, settings.log_level)
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(StructuredFormatter() if settings.log_format == "json" else TextFormatter())
    handler.addFilter(SensitiveDataFilter())
    root.addHandler(handler)

    for noisy in ("uvicorn.access", "httpx", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"tradeleague.{name}")
