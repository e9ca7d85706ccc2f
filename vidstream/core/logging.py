"""
Centralized logging configuration for structured JSON logging.

Two rotating sinks are written side by side:
- application.log.json: one JSON object per record (machine readable)
- application.log: indented text (developer readable)

Records carry the current request ID and operation name from ContextVars, plus
optional `event` and `context` extras set through log_event().
"""

import asyncio
import functools
import json
import logging
import logging.handlers
import sys
import time
import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

# Request ID of the HTTP request (or job) being handled
_request_id: ContextVar[Optional[str]] = ContextVar('request_id', default=None)

# High-level operation name
_operation: ContextVar[Optional[str]] = ContextVar('operation', default=None)

_logger: Optional[logging.Logger] = None


def _record_scope(record: logging.LogRecord) -> Dict[str, Any]:
    scope = {}
    request_id = _request_id.get()
    if request_id:
        scope["request_id"] = request_id
    operation = _operation.get()
    if operation:
        scope["operation"] = operation
    if getattr(record, 'event', None):
        scope["event"] = record.event
    return scope


class StructuredJSONFormatter(logging.Formatter):
    """Formatter that outputs structured JSON logs."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
        }
        log_data.update(_record_scope(record))
        log_data["message"] = record.getMessage()

        if getattr(record, 'context', None):
            log_data["context"] = record.context

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info)
            }

        return json.dumps(log_data, ensure_ascii=False, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Formatter that outputs indented, human-readable logs."""

    max_value_length = 500

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        lines = [
            f"{timestamp} {record.levelname:8s} [{record.name}] {record.funcName}() - {record.getMessage()}"
        ]

        for key, value in _record_scope(record).items():
            lines.append(f"  {key}: {value}")

        context = getattr(record, 'context', None)
        if isinstance(context, dict):
            for key, value in context.items():
                if isinstance(value, (dict, list)):
                    rendered = json.dumps(value, indent=2, ensure_ascii=False, default=str)
                    lines.append(f"  {key}:")
                    lines.extend('    ' + line for line in rendered.split('\n'))
                else:
                    value_str = str(value)
                    if len(value_str) > self.max_value_length:
                        value_str = value_str[:self.max_value_length] + "... (truncated)"
                    lines.append(f"  {key}: {value_str}")
        elif context:
            lines.append(f"  context: {context}")

        if record.exc_info:
            exc_type, exc_value, exc_traceback = record.exc_info
            lines.append(f"  exception_type: {exc_type.__name__ if exc_type else 'Unknown'}")
            lines.append(f"  exception_message: {exc_value if exc_value else 'N/A'}")
            if exc_traceback:
                lines.append("  traceback:")
                for tb_line in traceback.format_exception(exc_type, exc_value, exc_traceback):
                    lines.extend(f"    {line}" for line in tb_line.rstrip().split('\n'))

        return '\n'.join(lines)


def setup_logging(log_level: str = "INFO", log_dir: Optional[Path] = None, console: bool = False) -> None:
    """
    Initialize the logging system with dual file output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files. If None, uses <project root>/logs/
        console: Also echo human-readable records to stderr
    """
    global _logger

    if log_dir is None:
        log_dir = Path(__file__).resolve().parent.parent.parent / "logs"
    else:
        log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    level = getattr(logging, log_level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    json_log_file = log_dir / "application.log.json"
    text_log_file = log_dir / "application.log"

    for path, formatter in (
        (json_log_file, StructuredJSONFormatter()),
        (text_log_file, HumanReadableFormatter()),
    ):
        handler = logging.handlers.TimedRotatingFileHandler(
            filename=str(path),
            when='midnight',
            interval=1,
            backupCount=30,  # Keep 30 days of logs
            encoding='utf-8'
        )
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    if console:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setLevel(level)
        stream_handler.setFormatter(HumanReadableFormatter())
        root_logger.addHandler(stream_handler)

    _logger = root_logger

    log_event(
        level="INFO",
        logger=__name__,
        function="setup_logging",
        operation="logging_setup",
        event="logging_initialized",
        message="Logging system initialized",
        context={
            "log_level": log_level,
            "log_dir": str(log_dir),
            "console": console,
        }
    )


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return _request_id.get()


def set_request_id(request_id: str) -> None:
    """Set the request ID in context."""
    _request_id.set(request_id)


def generate_request_id(prefix: str = "req") -> str:
    """Generate a unique request ID."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def log_event(
    level: str,
    logger: str,
    function: str,
    operation: Optional[str] = None,
    event: Optional[str] = None,
    message: str = "",
    context: Optional[Dict[str, Any]] = None,
    exc_info: Optional[BaseException] = None
) -> None:
    """
    Log a structured event.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger: Logger name (usually module path)
        function: Function name where log originated
        operation: High-level operation name
        event: Specific event type
        message: Human-readable message
        context: Operation-specific data
        exc_info: Exception to attach
    """
    logger_instance = logging.getLogger(logger)
    log_method = getattr(logger_instance, level.lower(), logger_instance.info)

    extra = {}
    if event:
        extra['event'] = event
    if context:
        extra['context'] = context

    if operation:
        token = _operation.set(operation)
        try:
            log_method(message, extra=extra, exc_info=exc_info)
        finally:
            _operation.reset(token)
    else:
        log_method(message, extra=extra, exc_info=exc_info)


def log_operation_start(
    logger: str,
    function: str,
    operation: str,
    message: str = "",
    context: Optional[Dict[str, Any]] = None
) -> None:
    """Log the start of an operation."""
    log_event(
        level="INFO",
        logger=logger,
        function=function,
        operation=operation,
        event="operation_start",
        message=message or f"Starting {operation}",
        context=context
    )


def log_operation_complete(
    logger: str,
    function: str,
    operation: str,
    message: str = "",
    context: Optional[Dict[str, Any]] = None,
    duration: Optional[float] = None
) -> None:
    """Log the completion of an operation."""
    context = dict(context or {})
    if duration is not None:
        context["duration_seconds"] = round(duration, 3)

    log_event(
        level="INFO",
        logger=logger,
        function=function,
        operation=operation,
        event="operation_complete",
        message=message or f"Completed {operation}",
        context=context
    )


def log_operation_error(
    logger: str,
    function: str,
    operation: str,
    error: BaseException,
    message: str = "",
    context: Optional[Dict[str, Any]] = None
) -> None:
    """Log an operation error."""
    context = dict(context or {})
    context["error_type"] = type(error).__name__
    context["error_message"] = str(error)

    log_event(
        level="ERROR",
        logger=logger,
        function=function,
        operation=operation,
        event="operation_error",
        message=message or f"Error in {operation}",
        context=context,
        exc_info=error
    )


def operation_logger(operation_name: str):
    """
    Decorator to log operation start/complete/error around a function.
    Works for both plain and async functions.

    Usage:
        @operation_logger("storage_prune")
        async def prune(...):
            ...
    """
    def decorator(func):
        logger_name = func.__module__
        function_name = func.__name__

        def _start(args, kwargs):
            log_operation_start(
                logger=logger_name,
                function=function_name,
                operation=operation_name,
                context={
                    "args": str(args)[:500] if args else None,
                    "kwargs": {k: str(v)[:200] for k, v in kwargs.items()} if kwargs else None
                }
            )
            return time.monotonic()

        def _complete(result, started):
            log_operation_complete(
                logger=logger_name,
                function=function_name,
                operation=operation_name,
                context={"result_type": type(result).__name__},
                duration=time.monotonic() - started
            )

        def _error(error, started):
            log_operation_error(
                logger=logger_name,
                function=function_name,
                operation=operation_name,
                error=error,
                context={"duration_seconds": round(time.monotonic() - started, 3)}
            )

        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                started = _start(args, kwargs)
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    _error(e, started)
                    raise
                _complete(result, started)
                return result
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            started = _start(args, kwargs)
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _error(e, started)
                raise
            _complete(result, started)
            return result
        return wrapper
    return decorator
