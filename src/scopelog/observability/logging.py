"""Structured diagnostic logging for scopelog.

The scope tracker writes its user-facing lines to a text stream. This
module is the *other* channel: the package's own diagnostics (stack
reconciliation anomalies, ignored configuration changes, store failures)
go through Python's standard logging with structured key-value data, so a
host application can route, filter or aggregate them like any other log.

Builds on Python's standard logging module with:
- Structured data support (key-value pairs in logs)
- JSON formatting option for log aggregation
- Context management for scope tracking
- A handler that forwards standard log records into a ScopeTracker

Example:
    logger = get_logger(__name__)
    logger.debug("Scope stack mismatch", kind="missing_ends", scope_id="A.run")

    with LogContext(scope="Loader.load"):
        logger.info("Loading")  # includes scope=Loader.load

    configure_logging(level=logging.DEBUG, json_format=True, force=True)
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import threading
from collections.abc import Callable, MutableMapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from scopelog.tracker import ScopeTracker

#: Name of the logger every scopelog diagnostic logger descends from.
ROOT_LOGGER_NAME = "scopelog"

# Context variable for structured logging context
_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "scopelog_log_context", default={}
)


# =============================================================================
# Structured Logger
# =============================================================================


class StructuredLogger(logging.Logger):
    """Logger with structured data support.

    Extends standard Logger to accept keyword arguments that become
    structured data in the log record.

    Usage:
        logger = StructuredLogger("scopelog.tracker")
        logger.debug("Scope stack mismatch", scope_id="Loader.load", indent=2)
    """

    def debug(
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log debug message with optional structured data kwargs."""
        if self.isEnabledFor(logging.DEBUG):
            self._log(
                logging.DEBUG,
                msg,
                args,
                exc_info=exc_info,
                extra=extra,
                stack_info=stack_info,
                stacklevel=stacklevel + 1,
                **kwargs,
            )

    def info(
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log info message with optional structured data kwargs."""
        if self.isEnabledFor(logging.INFO):
            self._log(
                logging.INFO,
                msg,
                args,
                exc_info=exc_info,
                extra=extra,
                stack_info=stack_info,
                stacklevel=stacklevel + 1,
                **kwargs,
            )

    def warning(
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log warning message with optional structured data kwargs."""
        if self.isEnabledFor(logging.WARNING):
            self._log(
                logging.WARNING,
                msg,
                args,
                exc_info=exc_info,
                extra=extra,
                stack_info=stack_info,
                stacklevel=stacklevel + 1,
                **kwargs,
            )

    def error(
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log error message with optional structured data kwargs."""
        if self.isEnabledFor(logging.ERROR):
            self._log(
                logging.ERROR,
                msg,
                args,
                exc_info=exc_info,
                extra=extra,
                stack_info=stack_info,
                stacklevel=stacklevel + 1,
                **kwargs,
            )

    def _log(
        self,
        level: int,
        msg: object,
        args: tuple[Any, ...] | MutableMapping[str, Any] | None = None,
        exc_info: Any = None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **kwargs: Any,
    ) -> None:
        """Log a message with structured data support.

        Merges the active LogContext values with the keyword arguments
        (keyword arguments win) and stores the result on the record as
        ``structured_data`` for the formatters and TrackerLogHandler.

        Args:
            level: Numeric log level.
            msg: Log message, may contain % formatting placeholders.
            args: Arguments for % formatting, or None.
            exc_info: Exception info, True, or None.
            extra: Additional attributes for the LogRecord. The
                'structured_data' key will be added/overwritten.
            stack_info: If True, include stack trace in log.
            stacklevel: Stack frames to skip for caller info.
            **kwargs: Key-value pairs to include as structured data.
                Common keys: scope_id, kind, unclosed, indent.

        Returns:
            None.
        """
        context = _log_context.get()
        structured_data = {**context, **kwargs}

        if extra is None:
            extra = {}
        extra["structured_data"] = structured_data

        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


#: Keyword arguments the standard logging methods accept themselves.
_LOGGING_KWARGS = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """Structured keyword arguments over a plain ``logging.Logger``.

    Returned by get_logger() when the named logger already existed as a
    plain Logger, for example because the host application created it
    before StructuredLogger became the logger class.
    """

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        """Move structured kwargs into ``extra['structured_data']``."""
        structured = {
            key: kwargs.pop(key) for key in list(kwargs) if key not in _LOGGING_KWARGS
        }
        extra = dict(kwargs.get("extra") or {})
        extra["structured_data"] = {**_log_context.get(), **structured}
        kwargs["extra"] = extra
        return msg, kwargs


# =============================================================================
# Formatters
# =============================================================================


class StructuredFormatter(logging.Formatter):
    """Human-readable formatter with structured data.

    Format: timestamp - name - level - message | key=value key=value
    """

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        include_structured: bool = True,
    ) -> None:
        """Initialize the structured formatter.

        Args:
            fmt: Format string using LogRecord attributes. If None, uses
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'.
            datefmt: Date/time format string for %(asctime)s.
            include_structured: If True (default), appends structured data
                as ' | key=value key=value' after the message.

        Example:
            >>> formatter = StructuredFormatter(fmt="%(levelname)s: %(message)s")
            >>> handler.setFormatter(formatter)
            # Output: "DEBUG: Scope stack mismatch | kind=missing_begin"
        """
        if fmt is None:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        super().__init__(fmt, datefmt)
        self.include_structured = include_structured

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as text, appending structured data if any.

        Args:
            record: The LogRecord to format. May carry a
                'structured_data' dict.

        Returns:
            The base formatted message, followed by
            ' | key=value ...' when structured data is present and
            include_structured is set.
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
    """JSON formatter for log aggregation systems.

    Outputs each log record as a single JSON line with timestamp, level,
    logger name, message and all structured data as top-level keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a single-line JSON object.

        Args:
            record: The LogRecord to format. Its 'structured_data'
                attribute (if present) is merged at top level; exception
                info is included under 'exception'.

        Returns:
            Single-line JSON string with no trailing newline.

        Example:
            >>> output = JSONFormatter().format(record)
            >>> json.loads(output)["scope_id"]
            'Loader.load'
        """
        log_dict: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        structured = getattr(record, "structured_data", {})
        log_dict.update(structured)

        if record.exc_info:
            log_dict["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_dict, default=str)


def _format_value(value: Any) -> str:
    """Format a value for human-readable structured log output.

    - None: 'null'
    - Strings: as-is, quoted when they contain spaces
    - Dicts/lists/tuples: JSON
    - Other types: str()

    Example:
        >>> _format_value("has spaces")
        '"has spaces"'
        >>> _format_value(["A.run", "B.run"])
        '["A.run", "B.run"]'
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


@dataclass
class LogContext:
    """Context manager for structured logging context.

    Adds key-value pairs to all diagnostic records emitted within the
    context. Thread- and task-safe via contextvars, and supports nesting.

    Usage:
        with LogContext(scope="Importer.run"):
            logger.info("Processing")  # includes scope=Importer.run

            with LogContext(step="parse"):
                logger.info("Parsing")  # includes both
    """

    _kwargs: dict[str, Any] = field(default_factory=dict, init=False, repr=True)
    _token: contextvars.Token[dict[str, Any]] | None = field(
        default=None, init=False, repr=False
    )

    def __init__(self, **kwargs: Any) -> None:
        """Initialize a logging context with key-value pairs.

        Args:
            **kwargs: Key-value pairs to include in every record emitted
                while the context is active. Inner contexts override
                outer values with the same key.
        """
        self._kwargs = kwargs

    def __enter__(self) -> LogContext:
        """Merge this context's values into the active logging context."""
        current = _log_context.get()
        new_context = {**current, **self._kwargs}
        self._token = _log_context.set(new_context)
        return self

    def __exit__(self, *args: Any) -> None:
        """Restore the logging context saved on entry.

        Exceptions raised inside the block are not suppressed.
        """
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None


# =============================================================================
# Configuration
# =============================================================================

# Track if logging has been configured
_configured = False
_config_lock = threading.Lock()


def configure_logging(
    level: int | str = logging.WARNING,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
    force: bool = False,
) -> None:
    """Configure scopelog's diagnostic logging.

    Attaches one handler to the 'scopelog' logger. Idempotent: later
    calls have no effect unless force=True. Protected by a lock for safe
    concurrent initialization.

    Args:
        level: Minimum level to capture, int or name. Default WARNING, so
            the DEBUG-level reconciliation records stay quiet unless a
            host asks for them.
        json_format: Use JSONFormatter (NDJSON) instead of
            StructuredFormatter.
        stream: Output stream. Default: sys.stderr.
        include_structured: Append ' | key=value' pairs in text mode.
        force: Reconfigure even if already configured.

    Returns:
        None.

    Example:
        >>> import io
        >>> buffer = io.StringIO()
        >>> configure_logging(stream=buffer, level=logging.DEBUG, force=True)
    """
    with _config_lock:
        if force:
            _reset_logging_impl()
        _configure_logging_impl(level, json_format, stream, include_structured)


def _configure_logging_impl(
    level: int | str = logging.WARNING,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
) -> None:
    """Internal implementation of configure_logging (assumes lock is held)."""
    global _configured

    if _configured:
        return

    logging.setLoggerClass(StructuredLogger)

    if stream is None:
        stream = sys.stderr
    handler = logging.StreamHandler(stream)

    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = StructuredFormatter(include_structured=include_structured)
    handler.setFormatter(formatter)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.addHandler(handler)

    # Prevent propagation to root logger (avoid duplicate logs)
    root.propagate = False

    _configured = True


def _reset_logging_impl() -> None:
    """Internal implementation of reset_logging (assumes lock is held)."""
    global _configured

    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    _configured = False


def reset_logging() -> None:
    """Reset diagnostic logging to the unconfigured state (for testing).

    Removes every handler from the 'scopelog' logger. The next call to
    configure_logging() or get_logger() reinitializes it.
    """
    with _config_lock:
        _reset_logging_impl()


def get_logger(name: str) -> StructuredLogger | StructuredLoggerAdapter:
    """Get a structured diagnostic logger.

    Configures logging with defaults (WARNING, text, stderr) on first use
    if configure_logging() has not been called.

    Args:
        name: Logger name, typically __name__.

    Returns:
        StructuredLogger accepting keyword arguments as structured data,
        or a StructuredLoggerAdapter when the logger already existed as a
        plain Logger.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.debug("Ignored silent change", mode="production")
    """
    # Double-checked locking pattern for thread-safe lazy initialization
    if not _configured:
        with _config_lock:
            if not _configured:  # pragma: no branch
                _configure_logging_impl()

    logger = logging.getLogger(name)
    if isinstance(logger, StructuredLogger):
        return logger
    return StructuredLoggerAdapter(logger)


# =============================================================================
# Tracker Integration
# =============================================================================


class TrackerLogHandler(logging.Handler):
    """Handler that forwards standard log records into a ScopeTracker.

    Lets existing ``logging`` calls show up between a tracker's scope
    markers, indented at the current depth, with warnings and errors
    counted by the tracker.

    Level mapping:
        DEBUG, INFO       -> tracker.info (NONE / INFORMATION highlight)
        WARNING           -> tracker.warn
        ERROR, CRITICAL   -> tracker.error

    Includes a thread-local recursion guard: the tracker itself logs
    diagnostics, which would otherwise loop back through this handler.

    Usage:
        handler = TrackerLogHandler(lambda: tracker, level=logging.INFO)
        logging.getLogger("myapp").addHandler(handler)
    """

    # Thread-local recursion guard to prevent infinite loops
    _local = threading.local()

    def __init__(
        self,
        tracker_getter: Callable[[], ScopeTracker | None],
        level: int = logging.NOTSET,
    ) -> None:
        """Initialize the handler with a tracker accessor.

        A getter (rather than a direct reference) allows the handler to
        be installed before the tracker exists and to follow a default
        tracker that gets replaced by ``scopelog.config.configure``.

        Args:
            tracker_getter: Returns the tracker to forward into, or None
                to drop records.
            level: Minimum level to forward. Default NOTSET forwards all.
        """
        super().__init__(level)
        self._get_tracker = tracker_getter

    def emit(self, record: logging.LogRecord) -> None:
        """Forward one record to the tracker.

        Exceptions are passed to handleError() rather than propagated so
        that a logging failure never breaks the host.

        Args:
            record: LogRecord to forward. Structured data, if present, is
                appended as key=value pairs.
        """
        if getattr(self._local, "emitting", False):
            return

        try:
            self._local.emitting = True

            tracker = self._get_tracker()
            if tracker is None:
                return

            message = record.getMessage()
            structured = getattr(record, "structured_data", {})
            if structured:
                pairs = " ".join(
                    f"{k}={_format_value(v)}" for k, v in structured.items()
                )
                message = f"{message} | {pairs}"

            from scopelog.emitter import Severity
            from scopelog.tracker import Provenance

            provenance = Provenance(
                module=record.pathname,
                line=record.lineno,
                component=record.name,
                operation=record.funcName or "<module>",
            )
            text = f"[{record.name}] {message}"
            if record.levelno >= logging.ERROR:
                tracker.error(text, provenance=provenance)
            elif record.levelno >= logging.WARNING:
                tracker.warn(text, provenance=provenance)
            elif record.levelno >= logging.INFO:
                tracker.info(text, provenance=provenance)
            else:
                tracker.info(text, severity=Severity.NONE, provenance=provenance)
        except Exception:
            # Don't raise exceptions in logging
            self.handleError(record)
        finally:
            self._local.emitting = False
