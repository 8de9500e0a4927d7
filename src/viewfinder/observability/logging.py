"""Structured logging for viewfinder-core.

Thin layer over the standard logging module adding:
- Keyword fields on every log call (``logger.info("msg", frame=12)``)
- Human-readable ``key=value`` or single-line JSON output
- ``LogContext`` for tagging everything logged inside a bracket or worker
- Idempotent, thread-safe configuration of the ``viewfinder`` logger tree

Security Note:
    Pass device- or user-supplied values as keyword fields rather than
    formatting them into the message, so they cannot forge log lines:

    # SAFE
    logger.warning("Capture failed", destination=path)

    # UNSAFE
    logger.warning(f"Capture failed for {path}")

Example:
    logger = get_logger(__name__)

    logger.info("Worker started")
    logger.info("Frame analysed", sequence=42, duration_ms=3.1)

    with LogContext(bracket_id="a1b2", mode="hdr"):
        logger.info("Shot captured", ev_index=-2)

    configure_logging(json_format=True, force=True)
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import threading
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, cast

#: Name of the package root logger. All module loggers hang below it.
ROOT_LOGGER_NAME = "viewfinder"

_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "viewfinder_log_context", default={}
)


# =============================================================================
# Structured Logger
# =============================================================================


class StructuredLogger(logging.Logger):
    """Logger accepting arbitrary keyword fields as structured data.

    The standard ``debug``/``info``/... methods forward their keyword
    arguments to ``_log``; this class intercepts them there, merges them
    over the active ``LogContext`` and attaches the result to the record
    as ``structured_data``.

    Usage:
        logger = StructuredLogger("viewfinder.analysis")
        logger.info("Histogram computed", samples=307200, peak_bucket=118)
    """

    def _log(  # type: ignore[override]
        self,
        level: int,
        msg: object,
        args: Any,
        exc_info: Any = None,
        extra: Mapping[str, object] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **kwargs: Any,
    ) -> None:
        """Emit a record carrying context and keyword fields.

        Merge order is ``LogContext`` values first, explicit keyword fields
        second, so a call site can override ambient context (for example a
        per-shot ``ev_index`` inside a bracket-wide context).

        Args:
            level: Numeric log level.
            msg: Message, may hold ``%`` placeholders.
            args: Arguments for ``%`` formatting.
            exc_info: Exception info as accepted by ``logging``.
            extra: Extra record attributes; ``structured_data`` is overwritten.
            stack_info: Include the current stack.
            stacklevel: Frames to skip when locating the caller. Bumped by one
                to skip this override.
            **kwargs: Structured fields for the record.

        Returns:
            None.

        Example:
            >>> with LogContext(bracket_id="x"):
            ...     logger.info("Shot", ev_index=2)
            # ... - Shot | bracket_id=x ev_index=2
        """
        merged_extra = dict(extra) if extra else {}
        merged_extra["structured_data"] = {**_log_context.get(), **kwargs}
        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=merged_extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


# =============================================================================
# Formatters
# =============================================================================


class StructuredFormatter(logging.Formatter):
    """Human-readable formatter.

    Format: ``timestamp - name - level - message | key=value key=value``
    """

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        include_structured: bool = True,
    ) -> None:
        """Create the formatter.

        Args:
            fmt: ``logging`` format string. Defaults to
                ``'%(asctime)s - %(name)s - %(levelname)s - %(message)s'``.
            datefmt: Date format for ``%(asctime)s``.
            include_structured: Append structured fields after ``' | '``.

        Returns:
            None.
        """
        if fmt is None:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        super().__init__(fmt, datefmt)
        self.include_structured = include_structured

    def format(self, record: logging.LogRecord) -> str:
        """Format the record, appending its structured fields.

        Args:
            record: Record to format. A missing or empty ``structured_data``
                attribute yields the plain base format.

        Returns:
            Formatted line, e.g.
            ``'... - INFO - Shot captured | ev_index=-2 width=640'``.
        """
        base = super().format(record)
        if not self.include_structured:
            return base

        structured = getattr(record, "structured_data", {})
        if not structured:
            return base

        pairs = " ".join(f"{k}={_format_value(v)}" for k, v in structured.items())
        return f"{base} | {pairs}"


class JSONFormatter(logging.Formatter):
    """One JSON object per line, structured fields at top level."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the record as a JSON line.

        Keys: ``timestamp`` (UTC ISO 8601), ``level``, ``logger``,
        ``message``, every structured field, and ``exception`` when the
        record carries exception info. Non-serialisable values go through
        ``str()``.

        Args:
            record: Record to format.

        Returns:
            Single-line JSON string.
        """
        log_dict: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_dict.update(getattr(record, "structured_data", {}))
        if record.exc_info:
            log_dict["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_dict, default=str)


def _format_value(value: Any) -> str:
    """Render one structured value for ``key=value`` output.

    Rules: ``None`` → ``null``; strings quoted only when they contain a
    space; dicts, lists and tuples as JSON; everything else via ``str()``.

    Args:
        value: Value to render.

    Returns:
        Rendered string.

    Example:
        >>> _format_value("hdr")
        'hdr'
        >>> _format_value("two words")
        '"two words"'
        >>> _format_value((-1, 0, 1))
        '[-1, 0, 1]'
    """
    if value is None:
        return "null"
    if isinstance(value, str):
        if " " in value:
            return f'"{value}"'
        return value
    if isinstance(value, dict | list | tuple):
        return json.dumps(value, default=str)
    return str(value)


# =============================================================================
# Context Management
# =============================================================================


class LogContext:
    """Context manager adding fields to every record logged inside it.

    Backed by ``contextvars`` so the analysis worker thread and the capture
    flow keep independent contexts. Nested contexts merge, inner values win.

    Usage:
        with LogContext(bracket_id="a1b2"):
            logger.info("Bracket started")
            with LogContext(ev_index=-2):
                logger.info("Shot")  # bracket_id and ev_index
    """

    def __init__(self, **kwargs: Any) -> None:
        """Store the fields to activate on ``__enter__``.

        Args:
            **kwargs: Fields to attach to records.

        Returns:
            None.
        """
        self._kwargs = kwargs
        self._token: contextvars.Token[dict[str, Any]] | None = None

    def __enter__(self) -> LogContext:
        """Activate the fields on top of the current context.

        Returns:
            Self.
        """
        self._token = _log_context.set({**_log_context.get(), **self._kwargs})
        return self

    def __exit__(self, *args: Any) -> None:
        """Restore the context that was active before ``__enter__``.

        Args:
            *args: Exception info, ignored; exceptions propagate.

        Returns:
            None.
        """
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None

    def __repr__(self) -> str:
        """Return a debug representation listing the fields."""
        return f"LogContext({self._kwargs!r})"


# =============================================================================
# Configuration
# =============================================================================

_configured = False
_config_lock = threading.Lock()


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
    force: bool = False,
) -> None:
    """Configure the ``viewfinder`` logger tree.

    Idempotent: once configured, later calls are ignored unless
    ``force=True``. Guarded by a lock so the analysis worker and the caller
    thread can race on first use safely.

    Business context: The CLI calls this once from ``--log-level`` and
    ``--log-json``; library users embedding the pipeline in an app may skip
    it and get INFO-level text logs on stderr from the first ``get_logger``.

    Args:
        level: Minimum level, int or name (``"DEBUG"``).
        json_format: Use ``JSONFormatter`` instead of ``StructuredFormatter``.
        stream: Output stream, default ``sys.stderr``.
        include_structured: Append fields in text mode.
        force: Drop existing handlers and reconfigure.

    Returns:
        None.

    Example:
        >>> import io
        >>> buffer = io.StringIO()
        >>> configure_logging(level="DEBUG", stream=buffer, force=True)
    """
    with _config_lock:
        if force:
            _reset_logging_impl()
        _configure_logging_impl(level, json_format, stream, include_structured)


def _configure_logging_impl(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
) -> None:
    """Configure handlers (caller holds ``_config_lock``)."""
    global _configured

    if _configured:
        return

    logging.setLoggerClass(StructuredLogger)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = StructuredFormatter(include_structured=include_structured)
    handler.setFormatter(formatter)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.addHandler(handler)
    root.propagate = False

    _configured = True


def _reset_logging_impl() -> None:
    """Remove handlers (caller holds ``_config_lock``)."""
    global _configured

    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    _configured = False


def reset_logging() -> None:
    """Return logging to the unconfigured state.

    Intended for tests; the next ``get_logger`` or ``configure_logging``
    call reinstalls handlers.

    Returns:
        None.
    """
    with _config_lock:
        _reset_logging_impl()


def get_logger(name: str) -> StructuredLogger:
    """Return a structured logger, configuring defaults on first use.

    Args:
        name: Logger name, normally ``__name__``.

    Returns:
        ``StructuredLogger`` below the ``viewfinder`` root.

    Example:
        >>> logger = get_logger("viewfinder.devices.bracket")
        >>> logger.info("Exposure restored", ev_index=0)
    """
    if not _configured:
        with _config_lock:
            if not _configured:  # pragma: no branch
                _configure_logging_impl()

    logger = logging.getLogger(name)
    if not isinstance(logger, StructuredLogger):
        # Logger existed before setLoggerClass() ran.
        logger.__class__ = StructuredLogger
    return cast(StructuredLogger, logger)
