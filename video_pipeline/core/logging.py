"""
Structured logging for the video pipeline.

Two rotating files are written side by side: `pipeline.log.json` (one JSON
object per line, for log shipping) and `pipeline.log` (readable text). The
HTTP request id, the queue job id and the current operation travel in
context variables, so every record emitted while a request or job is being
handled carries them without threading them through call signatures.
"""

import asyncio
import functools
import json
import logging
import logging.handlers
import time
import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any

_request_id: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
_job_id: ContextVar[Optional[str]] = ContextVar('job_id', default=None)
_operation: ContextVar[Optional[str]] = ContextVar('operation', default=None)

LOG_RETENTION_DAYS = 30
MAX_CONTEXT_VALUE_CHARS = 500


def _context_fields() -> Dict[str, str]:
    """Non-empty context variables, in a fixed order."""
    values = (
        ("request_id", _request_id.get()),
        ("job_id", _job_id.get()),
        ("operation", _operation.get()),
    )
    return {key: value for key, value in values if value}


def _exception_lines(exc_info) -> list:
    return [
        line
        for chunk in traceback.format_exception(*exc_info)
        for line in chunk.rstrip().split('\n')
    ]


class StructuredJSONFormatter(logging.Formatter):
    """One JSON document per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            **_context_fields(),
        }
        event = getattr(record, 'event', None)
        if event:
            payload["event"] = event
        payload["message"] = record.getMessage()

        context = getattr(record, 'context', None)
        if context:
            payload["context"] = context

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            payload["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "traceback": _exception_lines(record.exc_info),
            }

        return json.dumps(payload, ensure_ascii=False, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Header line plus indented `key: value` lines for context and errors."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        lines = [f"{timestamp} {record.levelname:8s} [{record.name}] {record.getMessage()}"]

        fields = dict(_context_fields())
        event = getattr(record, 'event', None)
        if event:
            fields["event"] = event
        context = getattr(record, 'context', None)
        if isinstance(context, dict):
            fields.update(context)
        elif context:
            fields["context"] = context

        for key, value in fields.items():
            if isinstance(value, (dict, list)):
                value = json.dumps(value, ensure_ascii=False, default=str)
            value = str(value)
            if len(value) > MAX_CONTEXT_VALUE_CHARS:
                value = value[:MAX_CONTEXT_VALUE_CHARS] + "... (truncated)"
            lines.append(f"  {key}: {value}")

        if record.exc_info:
            lines.append("  traceback:")
            lines.extend(f"    {line}" for line in _exception_lines(record.exc_info))

        return '\n'.join(lines)


def _rotating_handler(path: Path, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.TimedRotatingFileHandler(
        filename=str(path),
        when='midnight',
        backupCount=LOG_RETENTION_DAYS,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(log_level: str = "INFO", log_dir: Optional[Path] = None, console: bool = False) -> None:
    """
    Configure the root logger for an API or worker process.

    Args:
        log_level: Logging level name
        log_dir: Directory for log files; defaults to <repo>/logs
        console: Also echo readable logs to stderr (worker script)
    """
    log_dir = Path(log_dir) if log_dir is not None else Path(__file__).resolve().parents[2] / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    level = getattr(logging, log_level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    root_logger.addHandler(_rotating_handler(log_dir / "pipeline.log.json", level, StructuredJSONFormatter()))
    root_logger.addHandler(_rotating_handler(log_dir / "pipeline.log", level, HumanReadableFormatter()))
    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(HumanReadableFormatter())
        root_logger.addHandler(console_handler)

    log_event(
        level="INFO",
        logger=__name__,
        operation="logging_setup",
        event="logging_initialized",
        message="Logging system initialized",
        context={"log_level": log_level, "log_dir": str(log_dir)}
    )


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


def generate_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


def set_job_id(job_id: Optional[str]) -> None:
    """Bind the queue job id to the current task's log context."""
    _job_id.set(job_id)


def set_operation(operation: str) -> None:
    _operation.set(operation)


def log_event(
    level: str,
    logger: str,
    operation: Optional[str] = None,
    event: Optional[str] = None,
    message: str = "",
    context: Optional[Dict[str, Any]] = None,
    exc_info: Optional[BaseException] = None
) -> None:
    """
    Log a structured event.

    `operation` overrides the context operation for this record only.
    """
    log_method = getattr(logging.getLogger(logger), level.lower())

    extra = {}
    if event:
        extra['event'] = event
    if context:
        extra['context'] = context

    token = _operation.set(operation) if operation else None
    try:
        log_method(message, extra=extra, exc_info=exc_info)
    finally:
        if token is not None:
            _operation.reset(token)


def log_operation_error(
    logger: str,
    operation: str,
    error: BaseException,
    message: str = "",
    context: Optional[Dict[str, Any]] = None,
    event: str = "operation_error"
) -> None:
    """Log a failed operation with the error's type and message in its context."""
    context = dict(context or {})
    context["error_type"] = type(error).__name__
    context["error_message"] = str(error)

    log_event(
        level="ERROR",
        logger=logger,
        operation=operation,
        event=event,
        message=message or f"Error in {operation}",
        context=context,
        exc_info=error
    )


def operation_logger(operation_name: str):
    """
    Log start, completion (with duration) and failure around a coroutine method.

        @operation_logger("clip_compilation")
        async def compile_videos(self, segments): ...
    """
    def decorator(func):
        if not asyncio.iscoroutinefunction(func):
            raise TypeError("operation_logger only wraps coroutine functions")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            logger_name = func.__module__
            log_event(
                level="INFO",
                logger=logger_name,
                operation=operation_name,
                event="operation_start",
                message=f"Starting {operation_name}",
                context={"function": func.__qualname__},
            )

            started = time.monotonic()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                log_operation_error(
                    logger=logger_name,
                    operation=operation_name,
                    error=e,
                    context={"duration_seconds": round(time.monotonic() - started, 3)},
                )
                raise

            log_event(
                level="INFO",
                logger=logger_name,
                operation=operation_name,
                event="operation_complete",
                message=f"Completed {operation_name}",
                context={"duration_seconds": round(time.monotonic() - started, 3)},
            )
            return result

        return wrapper
    return decorator
