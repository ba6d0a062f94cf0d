# src/aiworker/utils/logging_config.py
"""
Centralized logging configuration for aiworker.

Usage:
    from aiworker.utils.logging_config import configure_logging, set_trace_id

    configure_logging()
    set_trace_id(request_id)          # every record now carries the request id
    logger.info("Processing started")

Configuration via environment variables:
    AIWORKER_LOG_LEVEL: info, verbose, debug (default: info); warning/error also accepted
    AIWORKER_LOG_DIR: when set, records are also written to <dir>/aiworker.log
    AIWORKER_LOG_MAX_BYTES: Max size per log file in bytes (default: 10MB)
    AIWORKER_LOG_BACKUP_COUNT: Number of backup files to keep (default: 5)

Verbosity gates how much request/response payload detail is logged:
    info    - provider, model, message count, content length
    verbose - plus message and content previews
    debug   - full JSON dumps
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from contextvars import ContextVar
from enum import IntEnum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

# Context variable for trace_id (thread-safe, async-safe)
_trace_id_var: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)

DEFAULT_LOG_LEVEL = "info"
DEFAULT_LOG_FILE = "aiworker.log"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_BACKUP_COUNT = 5
DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] [%(trace_id)s] %(name)s:%(lineno)d - %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
PREVIEW_CHARS = 160

VERBOSE = 15
logging.addLevelName(VERBOSE, "VERBOSE")


class Verbosity(IntEnum):
    DEBUG = logging.DEBUG
    VERBOSE = VERBOSE
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR

    @classmethod
    def parse(cls, raw: Optional[str]) -> "Verbosity":
        name = str(raw or DEFAULT_LOG_LEVEL).strip().upper()
        if name == "WARN":
            name = "WARNING"
        try:
            return cls[name]
        except KeyError:
            return cls.INFO


_initialized = False
_verbosity: Optional[Verbosity] = None


class _TraceIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = _trace_id_var.get() or "-"
        return True


def get_verbosity() -> Verbosity:
    """Current verbosity; read from AIWORKER_LOG_LEVEL until set explicitly."""
    if _verbosity is not None:
        return _verbosity
    return Verbosity.parse(os.environ.get("AIWORKER_LOG_LEVEL"))


def set_verbosity(level: str) -> Verbosity:
    """Change the verbosity at runtime."""
    global _verbosity
    _verbosity = Verbosity.parse(level)
    logging.getLogger("aiworker").setLevel(int(_verbosity))
    return _verbosity


def is_verbose() -> bool:
    return get_verbosity() <= Verbosity.VERBOSE


def is_debug() -> bool:
    return get_verbosity() <= Verbosity.DEBUG


def configure_logging(level: Optional[str] = None, log_dir: Optional[str] = None) -> None:
    """
    Initialize the logging system once per process.

    Args:
        level: info, verbose or debug; falls back to AIWORKER_LOG_LEVEL
        log_dir: directory for a rotating log file; falls back to AIWORKER_LOG_DIR
    """
    global _initialized

    if level:
        set_verbosity(level)
    if _initialized:
        return

    verbosity = get_verbosity()
    root = logging.getLogger("aiworker")
    root.setLevel(int(verbosity))

    formatter = logging.Formatter(DEFAULT_FORMAT, datefmt=DEFAULT_DATE_FORMAT)
    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    stream.addFilter(_TraceIdFilter())
    root.addHandler(stream)

    directory = log_dir or os.environ.get("AIWORKER_LOG_DIR")
    if directory:
        path = Path(directory)
        path.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            filename=str(path / DEFAULT_LOG_FILE),
            maxBytes=int(os.environ.get("AIWORKER_LOG_MAX_BYTES", DEFAULT_MAX_BYTES)),
            backupCount=int(os.environ.get("AIWORKER_LOG_BACKUP_COUNT", DEFAULT_BACKUP_COUNT)),
            encoding="utf-8",
        )
        handler.setFormatter(formatter)
        handler.addFilter(_TraceIdFilter())
        root.addHandler(handler)

    root.propagate = False
    _initialized = True


def _preview(value: Any, limit: int = PREVIEW_CHARS) -> str:
    text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)
    text = text.replace("\n", " ")
    return text if len(text) <= limit else text[:limit] + "..."


def describe_payload(payload: Mapping[str, Any]) -> str:
    """Render a request/response payload at the current verbosity."""
    if is_debug():
        return json.dumps(payload, ensure_ascii=False, default=str)

    summary: Dict[str, Any] = {}
    for key in ("type", "provider", "model", "stop_reason", "success"):
        if payload.get(key) is not None:
            summary[key] = payload.get(key)
    options = payload.get("options") or {}
    for key in ("provider", "model", "useBedrock"):
        if options.get(key) is not None:
            summary[f"options.{key}"] = options.get(key)
    messages = payload.get("messages")
    if isinstance(messages, list):
        summary["messages"] = len(messages)
    content = payload.get("content")
    if isinstance(content, str):
        summary["content_length"] = len(content)
    if payload.get("tool_calls"):
        summary["tool_calls"] = len(payload["tool_calls"])

    if is_verbose():
        if isinstance(messages, list) and messages:
            summary["last_message"] = _preview(messages[-1].get("content"))
        if isinstance(content, str) and content:
            summary["content_preview"] = _preview(content)
    return json.dumps(summary, ensure_ascii=False, default=str)


# ============================================================================
# Trace ID Management
# ============================================================================

def generate_trace_id() -> str:
    """Generate a new trace ID."""
    return f"req-{uuid.uuid4().hex[:12]}"


def set_trace_id(trace_id: Optional[str] = None) -> str:
    """
    Set the trace ID for the current context.

    If no trace_id is provided, generates a new one.
    Returns the trace_id that was set.
    """
    tid = trace_id or generate_trace_id()
    _trace_id_var.set(tid)
    return tid


def get_trace_id() -> Optional[str]:
    """Get the current trace ID."""
    return _trace_id_var.get()


def clear_trace_id() -> None:
    """Clear the current trace ID."""
    _trace_id_var.set(None)
