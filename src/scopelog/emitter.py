"""Line emission for the scope tracker.

The emitter prefixes each line with a severity glyph and an indent
proportional to the tracker's nesting depth, then writes it to the
configured text stream. Every line passes through here once, and is
reported to ``ScopeTracker.count`` under the silencing policy.
"""

from __future__ import annotations

import sys
from enum import Enum
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from scopelog.tracker import ScopeTracker


class Severity(str, Enum):
    """Highlight applied to an emitted line."""

    NONE = "none"
    INFORMATION = "information"
    WARNING = "warning"
    ERROR = "error"


#: Prefix glyph per severity. NONE keeps the column aligned with two spaces.
SEVERITY_GLYPHS: dict[Severity, str] = {
    Severity.NONE: "  ",
    Severity.INFORMATION: "✅",
    Severity.WARNING: "⚠️",
    Severity.ERROR: "🧨",
}


class Emitter:
    """Writes formatted lines on behalf of a ``ScopeTracker``.

    The emitter reads ``silent``, ``indent`` and the counting policy from
    its tracker and reports each line to ``ScopeTracker.count``. It keeps
    no state of its own apart from the optional stream override.
    """

    def __init__(
        self,
        tracker: ScopeTracker,
        stream: TextIO | None = None,
        indent_width: int = 2,
    ) -> None:
        """Bind the emitter to a tracker.

        Args:
            tracker: Owner whose indent, silencing flag and counters are used.
            stream: Destination for lines. None means ``sys.stdout`` looked
                up at write time, so pytest's capsys sees the output.
            indent_width: Spaces written per nesting level.
        """
        self._tracker = tracker
        self._stream = stream
        self.indent_width = indent_width

    @property
    def stream(self) -> TextIO:
        """Stream lines are written to."""
        return self._stream if self._stream is not None else sys.stdout

    def render(self, line: str, severity: Severity, indent: int) -> str:
        """Build the exact text written for ``line`` (without newline).

        Args:
            line: Fully formatted message.
            severity: Highlight selecting the prefix glyph.
            indent: Nesting depth used for the leading spaces.

        Returns:
            ``glyph + "\\t" + spaces + line``.

        Example:
            >>> emitter.render("hello", Severity.NONE, 1)
            '  \\t  hello'
        """
        spaces = " " * (indent * self.indent_width)
        return f"{SEVERITY_GLYPHS[severity]}\t{spaces}{line}"

    def emit(self, line: str, severity: Severity = Severity.NONE) -> None:
        """Count and write one line.

        Warning and error counters are incremented before the silencing
        check when the tracker counts while silenced (the default);
        otherwise only lines that are actually written are counted.

        Args:
            line: Fully formatted message.
            severity: Highlight of the line.
        """
        tracker = self._tracker
        silent = tracker.silent

        if not silent or tracker.count_when_silent:
            tracker.count(severity)

        if silent:
            return

        stream = self.stream
        stream.write(self.render(line, severity, tracker.indent) + "\n")
        stream.flush()
