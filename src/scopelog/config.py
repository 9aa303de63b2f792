"""Tracker configuration and factory.

Selects between a development build, where output can be silenced and
unsilenced at will, and a production build, where the tracker is
permanently silent. Also holds the optional process-wide default tracker.

The core never reaches for the default tracker; it exists for scripts
and tests that want one shared handle without threading it through every
call. Libraries should create and pass their own tracker.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, TextIO

if TYPE_CHECKING:
    from scopelog.observability.stats import ScopeStats
    from scopelog.tracker import ScopeTracker

# =============================================================================
# Constants
# =============================================================================

#: Environment variable read by ``BuildMode.from_env``.
MODE_ENV_VAR = "SCOPELOG_MODE"

DEFAULT_INDENT_WIDTH = 2
DEFAULT_SEPARATOR_WIDTH = 80


class BuildMode(Enum):
    """Build configuration the tracker runs under."""

    DEVELOPMENT = "development"  # silencing under caller control
    PRODUCTION = "production"  # permanently silent

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> BuildMode:
        """Read the mode from ``SCOPELOG_MODE``.

        Matching is case-insensitive. Missing or unrecognised values mean
        DEVELOPMENT.

        Args:
            environ: Mapping to read instead of ``os.environ``.

        Returns:
            The selected BuildMode.

        Example:
            >>> BuildMode.from_env({"SCOPELOG_MODE": "Production"})
            <BuildMode.PRODUCTION: 'production'>
        """
        env = os.environ if environ is None else environ
        raw = env.get(MODE_ENV_VAR, "").strip().lower()
        for mode in cls:
            if mode.value == raw:
                return mode
        return cls.DEVELOPMENT


@dataclass
class TrackerConfig:
    """Settings for one tracker.

    Attributes:
        mode: DEVELOPMENT (silencing mutable) or PRODUCTION (always silent).
        silent: Initial silencing flag in development mode. Ignored in
            production mode.
        indent_width: Spaces written per nesting level.
        separator_width: Length of the dashed separator around scopes.
        count_when_silent: Count warnings and errors while silenced. When
            False only lines actually written are counted.
        stream: Output stream. None means ``sys.stdout`` at write time.
    """

    mode: BuildMode = BuildMode.DEVELOPMENT
    silent: bool = False
    indent_width: int = DEFAULT_INDENT_WIDTH
    separator_width: int = DEFAULT_SEPARATOR_WIDTH
    count_when_silent: bool = True
    stream: TextIO | None = None

    @classmethod
    def from_env(cls, **overrides: Any) -> TrackerConfig:
        """Build a config whose mode comes from ``SCOPELOG_MODE``."""
        return cls(mode=BuildMode.from_env(), **overrides)


def is_running_tests() -> bool:
    """Report whether the process is running under a test runner.

    Returns:
        True when pytest has set ``PYTEST_CURRENT_TEST``, or when
        unittest's runner is the main program.

    Example:
        >>> is_running_tests()  # inside a pytest test
        True
    """
    if "PYTEST_CURRENT_TEST" in os.environ:
        return True
    main = sys.modules.get("__main__")
    return getattr(main, "__package__", None) == "unittest"


def create_tracker(
    config: TrackerConfig | None = None,
    *,
    stats: ScopeStats | None = None,
    **overrides: Any,
) -> ScopeTracker:
    """Create a tracker from a config plus field overrides.

    Args:
        config: Base configuration. None uses ``TrackerConfig()``.
        stats: Optional statistics collector to inject.
        **overrides: TrackerConfig fields to replace, e.g. ``silent=True``.

    Returns:
        A new ScopeTracker.

    Raises:
        TypeError: If an override names an unknown field.

    Example:
        >>> tracker = create_tracker(mode=BuildMode.PRODUCTION)
        >>> tracker.silent
        True
    """
    from scopelog.tracker import ScopeTracker

    base = config or TrackerConfig()
    if overrides:
        base = replace(base, **overrides)
    return ScopeTracker(base, stats=stats)


# =============================================================================
# Global Default Tracker
# =============================================================================

# Thread Safety: configure once at startup before concurrent access.
_tracker: ScopeTracker | None = None


def get_tracker() -> ScopeTracker:
    """Get the process-wide default tracker, creating it on first use.

    The default is built from ``TrackerConfig.from_env()``.

    Returns:
        The shared ScopeTracker.

    Example:
        >>> tracker = get_tracker()
        >>> tracker is get_tracker()
        True
    """
    global _tracker
    if _tracker is None:
        _tracker = create_tracker(TrackerConfig.from_env())
    return _tracker


def configure(
    config: TrackerConfig, *, stats: ScopeStats | None = None
) -> ScopeTracker:
    """Replace the default tracker with one built from ``config``.

    The previous tracker's counters and stack are not carried over.

    Returns:
        The new default tracker.
    """
    global _tracker
    _tracker = create_tracker(config, stats=stats)
    return _tracker


def reset_tracker() -> None:
    """Drop the default tracker (for testing)."""
    global _tracker
    _tracker = None
