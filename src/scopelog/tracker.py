"""Nesting-aware scope tracker.

A ``ScopeTracker`` annotates program execution with indented scope
sections, free-form messages and counted warnings/errors. Callers bracket
a logical unit of work with ``begin``/``end`` (or the ``scope()`` context
manager); everything logged in between is indented by the current depth.

The tracker keeps a stack of open scope identifiers next to the indent
counter. ``end`` reconciles that stack against the scope the caller claims
to close, so a forgotten ``end`` or a stray one produces a warning and a
well-defined recovery instead of a corrupted indent:

============== =====================================================
Outcome        Recovery
============== =====================================================
MATCHED        pop the top of the stack
NOTHING_OPEN   warn, nothing changes
MISSING_ENDS   warn naming the skipped scopes, truncate down to and
               including the named scope
MISSING_BEGIN  warn, nothing changes
============== =====================================================

After every ``begin`` and ``end`` the indent equals the stack depth.

Example:
    tracker = ScopeTracker()

    def load(self):
        tracker.begin(self)
        tracker.info("reading", path)
        tracker.end(self)

    with tracker.scope(provenance=Provenance("job.py", 12, "Job", "run")):
        tracker.warn("retrying", attempt)
"""

from __future__ import annotations

import os
import sys
import threading
import time
from dataclasses import dataclass
from enum import Enum
from types import TracebackType
from typing import Any, TextIO

from scopelog.config import BuildMode, TrackerConfig
from scopelog.emitter import Emitter, Severity
from scopelog.formatting import DEFAULT_SEPARATOR, MessageFormatter
from scopelog.observability.logging import LogContext, get_logger
from scopelog.observability.stats import ScopeStats

logger = get_logger(__name__)

#: Scope identifiers are plain strings, conventionally "Component.operation".
ScopeId = str

ENTER_MARK = "🔽"
EXIT_MARK = "🔼"

NESTING_WARNING = "Incorrect nesting of begin() and end()."


class MismatchKind(str, Enum):
    """Branch taken by ``ScopeTracker.end``."""

    MATCHED = "matched"
    NOTHING_OPEN = "nothing_open"
    MISSING_ENDS = "missing_ends"
    MISSING_BEGIN = "missing_begin"


@dataclass(frozen=True)
class Reconciliation:
    """Result of one ``end`` call.

    Attributes:
        kind: Which reconciliation branch ran.
        scope_id: Identifier the caller asked to close.
        unclosed: Scopes dropped because their ``end`` was missing, in the
            order they were opened. Empty unless kind is MISSING_ENDS.
    """

    kind: MismatchKind
    scope_id: ScopeId
    unclosed: tuple[ScopeId, ...] = ()

    @property
    def warned(self) -> bool:
        """True when the call produced a nesting warning."""
        return self.kind is not MismatchKind.MATCHED


@dataclass(frozen=True)
class Provenance:
    """Where a tracker call came from.

    Attributes:
        module: Source file path or module name.
        line: Line number of the call.
        component: Type or component name of the caller.
        operation: Function or method name of the caller.
    """

    module: str
    line: int
    component: str
    operation: str

    @property
    def file_name(self) -> str:
        """Last path component of ``module``."""
        return os.path.basename(self.module)

    @property
    def scope_id(self) -> ScopeId:
        """Identifier matching a ``begin`` to its ``end``."""
        return f"{self.component}.{self.operation}"

    @property
    def location(self) -> str:
        """``file_name:line`` as printed at the start of every line."""
        return f"{self.file_name}:{self.line}"

    @classmethod
    def capture(cls, owner: Any = None, stacklevel: int = 1) -> Provenance:
        """Build a provenance from the calling frame.

        Args:
            owner: Object the call is made on behalf of. Its type name
                becomes the component; a class passed directly uses its
                own name. None falls back to the frame's module name.
            stacklevel: Frames to walk up; 1 is the caller of capture().

        Returns:
            Provenance for the selected frame.

        Example:
            >>> class Job:
            ...     def run(self):
            ...         return Provenance.capture(self)
            >>> Job().run().scope_id
            'Job.run'
        """
        frame = sys._getframe(stacklevel)
        if owner is None:
            component = frame.f_globals.get("__name__", "__main__")
        else:
            component = _type_name(owner)
        return cls(
            module=frame.f_code.co_filename,
            line=frame.f_lineno,
            component=component,
            operation=frame.f_code.co_name,
        )


def _type_name(owner: Any) -> str:
    if isinstance(owner, type):
        return owner.__name__
    return type(owner).__name__


class ScopeTracker:
    """Indent/stack state machine behind one logging stream.

    Thread-safe: every operation holds one reentrant lock, so a
    ``begin``/``end`` pair observed from another thread never sees the
    indent and the stack disagree.

    Attributes exposed read-only: ``indent``, ``stack``, ``warnings``,
    ``errors``, ``buffer``, ``mode``. ``silent`` is writable in
    development mode and pinned to True in production mode.
    """

    def __init__(
        self,
        config: TrackerConfig | None = None,
        *,
        stream: TextIO | None = None,
        stats: ScopeStats | None = None,
    ) -> None:
        """Create a tracker.

        Args:
            config: Mode, silencing and layout settings. None uses
                ``TrackerConfig()`` (development, not silent).
            stream: Overrides ``config.stream``.
            stats: Optional collector receiving scope durations and
                reconciliation outcomes.
        """
        self._config = config or TrackerConfig()
        self._emitter = Emitter(
            self,
            stream=stream if stream is not None else self._config.stream,
            indent_width=self._config.indent_width,
        )
        self._formatter = MessageFormatter()
        self._stats = stats
        self._lock = threading.RLock()

        self._indent = 0
        self._stack: list[ScopeId] = []
        self._opened_at: list[float] = []
        self._warnings = 0
        self._errors = 0
        self._silent = self._config.silent
        self._buffer = ""

    def __repr__(self) -> str:
        return (
            f"ScopeTracker(mode={self.mode.value}, indent={self._indent}, "
            f"warnings={self._warnings}, errors={self._errors})"
        )

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def indent(self) -> int:
        return self._indent

    @property
    def stack(self) -> tuple[ScopeId, ...]:
        with self._lock:
            return tuple(self._stack)

    @property
    def warnings(self) -> int:
        return self._warnings

    @property
    def errors(self) -> int:
        return self._errors

    @property
    def buffer(self) -> str:
        return self._buffer

    @property
    def mode(self) -> BuildMode:
        return self._config.mode

    @property
    def stats(self) -> ScopeStats | None:
        return self._stats

    @property
    def count_when_silent(self) -> bool:
        return self._config.count_when_silent

    @property
    def silent(self) -> bool:
        """Whether emission is suppressed. Always True in production."""
        if self._config.mode is BuildMode.PRODUCTION:
            return True
        return self._silent

    @silent.setter
    def silent(self, value: bool) -> None:
        if self._config.mode is BuildMode.PRODUCTION:
            logger.debug(
                "Ignored silencing change", mode=self._config.mode.value, value=value
            )
            return
        self._silent = bool(value)

    def count(self, severity: Severity) -> None:
        """Record one emitted line of ``severity`` in the counters.

        WARNING and ERROR increment ``warnings`` and ``errors``; other
        severities are not counted. Called by the emitter for every line,
        subject to the silencing policy.
        """
        with self._lock:
            if severity is Severity.WARNING:
                self._warnings += 1
            elif severity is Severity.ERROR:
                self._errors += 1

    # -------------------------------------------------------------------------
    # Scopes
    # -------------------------------------------------------------------------

    def begin(
        self, owner: Any = None, *, provenance: Provenance | None = None
    ) -> ScopeId:
        """Open a scope.

        Increments the indent, pushes the scope identifier and writes a
        separator plus an entry line at the new depth.

        Args:
            owner: Object the scope belongs to (usually ``self``). Used for
                the component name when provenance is captured and for the
                entry line's description.
            provenance: Explicit call site. None captures the caller's
                frame.

        Returns:
            The identifier pushed onto the stack.
        """
        provenance = provenance or Provenance.capture(owner, stacklevel=2)
        scope_id = provenance.scope_id

        with self._lock:
            self._indent += 1
            self._stack.append(scope_id)
            self._opened_at.append(time.monotonic())

            self._emit(self._separator())
            self._emit(self._describe(owner, provenance, ENTER_MARK))

            assert self._indent == len(self._stack)
        return scope_id

    def end(
        self, owner: Any = None, *, provenance: Provenance | None = None
    ) -> Reconciliation:
        """Close a scope, reconciling the stack if the caller got it wrong.

        Never raises for nesting mistakes: each mismatch is reported as a
        single warning and the stack is repaired (see the module table).
        The exit line and separator are written at the depth in force
        just before the final decrement.

        Args:
            owner: Object the scope belongs to (usually ``self``).
            provenance: Explicit call site. None captures the caller's
                frame; it must yield the same scope id as the ``begin``.

        Returns:
            Reconciliation describing the branch taken.
        """
        provenance = provenance or Provenance.capture(owner, stacklevel=2)

        with self._lock:
            outcome = self._reconcile(provenance)

            self._emit(self._describe(owner, provenance, EXIT_MARK))
            self._emit(self._separator())
            self._indent -= 1

            assert self._indent == len(self._stack)

        if self._stats is not None:
            self._stats.record_outcome(outcome.kind.value)
        return outcome

    def scope(
        self, owner: Any = None, *, provenance: Provenance | None = None
    ) -> ScopeGuard:
        """Context manager pairing ``begin`` and ``end``.

        The scope id is also pushed into the diagnostic ``LogContext`` so
        package diagnostics emitted inside carry ``scope=<id>``.

        Example:
            >>> with tracker.scope(self):
            ...     tracker.info("working")
        """
        provenance = provenance or Provenance.capture(owner, stacklevel=2)
        return ScopeGuard(self, owner, provenance)

    def _reconcile(self, provenance: Provenance) -> Reconciliation:
        """Pick the reconciliation branch and apply it.

        Every branch leaves ``indent == len(stack) + 1`` so that the
        decrement in ``end`` restores the invariant.
        """
        scope_id = provenance.scope_id

        if self._indent == 0:
            return self._close_nothing_open(scope_id, provenance)
        if self._stack[-1] == scope_id:
            return self._close_matched(scope_id)

        position = self._find(scope_id)
        if position is None:
            return self._close_missing_begin(scope_id, provenance)
        return self._close_missing_ends(scope_id, position, provenance)

    def _find(self, scope_id: ScopeId) -> int | None:
        """Index of the most recently opened entry equal to ``scope_id``."""
        for index in range(len(self._stack) - 1, -1, -1):
            if self._stack[index] == scope_id:
                return index
        return None

    def _close_matched(self, scope_id: ScopeId) -> Reconciliation:
        self._stack.pop()
        self._record_close(scope_id, self._opened_at.pop())
        return Reconciliation(MismatchKind.MATCHED, scope_id)

    def _close_nothing_open(
        self, scope_id: ScopeId, provenance: Provenance
    ) -> Reconciliation:
        self.warn(
            f"{NESTING_WARNING} Insert begin() in {scope_id}", provenance=provenance
        )
        self._report(MismatchKind.NOTHING_OPEN, scope_id)

        self._indent = len(self._stack) + 1
        return Reconciliation(MismatchKind.NOTHING_OPEN, scope_id)

    def _close_missing_begin(
        self, scope_id: ScopeId, provenance: Provenance
    ) -> Reconciliation:
        self.warn(
            f"{NESTING_WARNING} Insert begin() in {scope_id}", provenance=provenance
        )
        self._report(MismatchKind.MISSING_BEGIN, scope_id)

        self._indent = len(self._stack) + 1
        return Reconciliation(MismatchKind.MISSING_BEGIN, scope_id)

    def _close_missing_ends(
        self, scope_id: ScopeId, position: int, provenance: Provenance
    ) -> Reconciliation:
        unclosed = tuple(self._stack[position + 1 :])
        self.warn(
            f"{NESTING_WARNING} Insert end() in {', '.join(unclosed)}",
            provenance=provenance,
        )
        self._report(MismatchKind.MISSING_ENDS, scope_id, unclosed)

        opened_at = self._opened_at[position:]
        for forced_id, started in zip(unclosed, opened_at[1:]):
            self._record_close(forced_id, started, forced=True)
        self._record_close(scope_id, opened_at[0])

        del self._stack[position:]
        del self._opened_at[position:]
        self._indent = position + 1
        return Reconciliation(MismatchKind.MISSING_ENDS, scope_id, unclosed)

    def _record_close(
        self, scope_id: ScopeId, started: float, forced: bool = False
    ) -> None:
        if self._stats is not None:
            duration_ms = (time.monotonic() - started) * 1000
            self._stats.record_close(scope_id, duration_ms, forced=forced)

    def _report(
        self, kind: MismatchKind, scope_id: ScopeId, unclosed: tuple[ScopeId, ...] = ()
    ) -> None:
        logger.debug(
            "Scope stack mismatch",
            kind=kind.value,
            scope_id=scope_id,
            unclosed=list(unclosed),
            indent=self._indent,
        )

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    def log(
        self,
        owner: Any,
        message: str = "",
        severity: Severity = Severity.NONE,
        verbose: bool = True,
        *,
        provenance: Provenance | None = None,
    ) -> None:
        """Log that something happened in ``owner``.

        Args:
            owner: Object being reported. Verbose mode prints ``str(owner)``,
                otherwise only its type name.
            message: Free text appended after the operation name.
            severity: Highlight; WARNING and ERROR are counted.
            verbose: Full description versus type name only.
            provenance: Explicit call site, captured when None.
        """
        provenance = provenance or Provenance.capture(owner, stacklevel=2)
        with self._lock:
            self._emit(self._describe(owner, provenance, message, verbose), severity)

    def info(
        self,
        *values: Any,
        severity: Severity = Severity.INFORMATION,
        provenance: Provenance | None = None,
    ) -> None:
        """Write an informational line.

        Raises:
            ValueError: If ``severity`` is WARNING or ERROR; use ``warn``
                or ``error`` for those.
        """
        if severity not in (Severity.NONE, Severity.INFORMATION):
            raise ValueError(
                f"info() accepts NONE or INFORMATION severity, got {severity.value}"
            )
        provenance = provenance or Provenance.capture(stacklevel=2)
        self._emit_values(values, severity, provenance)

    def warn(self, *values: Any, provenance: Provenance | None = None) -> None:
        """Write a warning line and count it."""
        provenance = provenance or Provenance.capture(stacklevel=2)
        self._emit_values(values, Severity.WARNING, provenance)

    def error(self, *values: Any, provenance: Provenance | None = None) -> None:
        """Write an error line and count it."""
        provenance = provenance or Provenance.capture(stacklevel=2)
        self._emit_values(values, Severity.ERROR, provenance)

    def add(self, *values: Any, separator: str = DEFAULT_SEPARATOR) -> None:
        """Append values to the line buffer without writing anything.

        Unsupported values still produce their warning immediately.
        """
        provenance = Provenance.capture(stacklevel=2)
        with self._lock:
            self._buffer += self._format(values, separator, provenance)

    def flush(self, provenance: Provenance | None = None) -> None:
        """Write the buffered text as one line and clear the buffer."""
        provenance = provenance or Provenance.capture(stacklevel=2)
        with self._lock:
            self._emit(f"{provenance.location}\t- {self._buffer}")
            self._buffer = ""

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _emit(self, line: str, severity: Severity = Severity.NONE) -> None:
        self._emitter.emit(line, severity)

    def _emit_values(
        self, values: tuple[Any, ...], severity: Severity, provenance: Provenance
    ) -> None:
        with self._lock:
            text = self._format(values, DEFAULT_SEPARATOR, provenance)
            self._emit(f"{provenance.location}\t- {text}", severity)

    def _format(
        self, values: tuple[Any, ...], separator: str, provenance: Provenance
    ) -> str:
        formatted = self._formatter.format(values, separator)
        for type_name in formatted.unsupported:
            self._emit(
                f"{provenance.location}\t- unsupported type '{type_name}'",
                Severity.WARNING,
            )
        return formatted.text

    def _separator(self) -> str:
        return "-" * self._config.separator_width

    @staticmethod
    def _describe(
        owner: Any, provenance: Provenance, message: str, verbose: bool = True
    ) -> str:
        if owner is None:
            description = provenance.component
        elif verbose:
            description = str(owner)
        else:
            description = _type_name(owner)
        return (
            f"{provenance.location}\t- {description}.{provenance.operation} : {message}"
        )


class ScopeGuard:
    """Context manager returned by ``ScopeTracker.scope``."""

    def __init__(
        self, tracker: ScopeTracker, owner: Any, provenance: Provenance
    ) -> None:
        self._tracker = tracker
        self._owner = owner
        self._provenance = provenance
        self._context = LogContext(scope=provenance.scope_id)
        self.reconciliation: Reconciliation | None = None

    def __enter__(self) -> ScopeGuard:
        self._tracker.begin(self._owner, provenance=self._provenance)
        self._context.__enter__()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self._context.__exit__(exc_type, exc_val, exc_tb)
        self.reconciliation = self._tracker.end(
            self._owner, provenance=self._provenance
        )
