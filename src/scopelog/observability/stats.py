"""Scope timing and reconciliation statistics.

Provides metrics for tracked scopes:
- How often each scope was closed, and how often it was closed only
  because an outer ``end`` swept it away
- Timing statistics (min, max, avg, p95) per scope
- Counts of every reconciliation outcome of ``ScopeTracker.end``

Thread-safe. Inject an instance into a tracker to enable collection.

Example:
    stats = ScopeStats()
    tracker = ScopeTracker(stats=stats)

    with tracker.scope(provenance=Provenance("app.py", 10, "Loader", "load")):
        ...

    summary = stats.get_summary("Loader.load")
    print(f"avg {summary.avg_duration_ms:.1f}ms over {summary.total_closes}")

    data = stats.to_dict()
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

# =============================================================================
# Constants
# =============================================================================

#: Default number of close records retained per scope.
DEFAULT_STATS_WINDOW_SIZE: int = 1000


# =============================================================================
# Helpers
# =============================================================================


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class ScopeStatsSummary:
    """Summary statistics for one scope identifier.

    Attributes:
        scope_id: Scope identifier ("Component.operation").
        total_closes: Times the scope was closed by any ``end`` call.
        forced_closes: Times it was closed because an outer ``end``
            swept it off the stack (its own ``end`` was missing).
        min_duration_ms: Shortest time between begin and close.
        max_duration_ms: Longest time between begin and close.
        avg_duration_ms: Mean duration.
        p95_duration_ms: 95th percentile duration.
        last_closed_time: UTC time of the most recent close.
    """

    scope_id: str
    total_closes: int = 0
    forced_closes: int = 0
    min_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    avg_duration_ms: float = 0.0
    p95_duration_ms: float = 0.0
    last_closed_time: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert the summary to a JSON-serializable dictionary.

        Returns:
            Dictionary with every field; ``last_closed_time`` becomes an
            ISO string or None.

        Example:
            >>> stats.get_summary("Loader.load").to_dict()["total_closes"]
            3
        """
        return {
            "scope_id": self.scope_id,
            "total_closes": self.total_closes,
            "forced_closes": self.forced_closes,
            "min_duration_ms": self.min_duration_ms,
            "max_duration_ms": self.max_duration_ms,
            "avg_duration_ms": self.avg_duration_ms,
            "p95_duration_ms": self.p95_duration_ms,
            "last_closed_time": (
                self.last_closed_time.isoformat() if self.last_closed_time else None
            ),
        }


@dataclass
class CloseRecord:
    """Single scope close."""

    duration_ms: float
    forced: bool


class ScopeStatsCollector:
    """Statistics collector for a single scope identifier.

    Maintains a rolling window of recent closes and computes summary
    statistics on demand.
    """

    def __init__(
        self,
        scope_id: str,
        window_size: int = DEFAULT_STATS_WINDOW_SIZE,
    ) -> None:
        """Initialize a collector for one scope.

        Args:
            scope_id: Scope identifier the records belong to.
            window_size: Maximum close records kept for duration
                statistics. Totals are cumulative regardless.
        """
        self.scope_id = scope_id
        self._records: deque[CloseRecord] = deque(maxlen=window_size)
        self._total_closes = 0
        self._forced_closes = 0
        self._last_closed_time: datetime | None = None
        self._lock = threading.Lock()

    def record(self, duration_ms: float, forced: bool = False) -> None:
        """Record one close of this scope.

        Args:
            duration_ms: Milliseconds between ``begin`` and the close.
            forced: True when an outer ``end`` closed the scope.

        Example:
            >>> collector = ScopeStatsCollector("Loader.load")
            >>> collector.record(duration_ms=12.5)
        """
        record = CloseRecord(
            duration_ms=duration_ms,
            forced=forced,
        )

        with self._lock:
            self._records.append(record)
            self._total_closes += 1
            if forced:
                self._forced_closes += 1
            self._last_closed_time = _utc_now()

    def get_summary(self) -> ScopeStatsSummary:
        """Compute the current statistics summary.

        Duration statistics cover every record still in the window.

        Returns:
            ScopeStatsSummary snapshot; later closes do not affect it.

        Example:
            >>> collector.record(100.0)
            >>> collector.record(200.0)
            >>> collector.get_summary().avg_duration_ms
            150.0
        """
        # Copy data under lock, compute statistics outside lock
        with self._lock:
            total = self._total_closes
            forced = self._forced_closes
            last_closed_time = self._last_closed_time
            durations = [r.duration_ms for r in self._records]

        if durations:
            min_dur = min(durations)
            max_dur = max(durations)
            avg_dur = sum(durations) / len(durations)
            p95_dur = _percentile(sorted(durations), 95)
        else:
            min_dur = max_dur = avg_dur = p95_dur = 0.0

        return ScopeStatsSummary(
            scope_id=self.scope_id,
            total_closes=total,
            forced_closes=forced,
            min_duration_ms=min_dur,
            max_duration_ms=max_dur,
            avg_duration_ms=avg_dur,
            p95_duration_ms=p95_dur,
            last_closed_time=last_closed_time,
        )

    def reset(self) -> None:
        """Clear every record and counter."""
        with self._lock:
            self._records.clear()
            self._total_closes = 0
            self._forced_closes = 0
            self._last_closed_time = None


class ScopeStats:
    """Statistics manager for every scope a tracker closes.

    Thread-safe container for per-scope collectors plus the tally of
    reconciliation outcomes.

    Usage:
        stats = ScopeStats()
        tracker = ScopeTracker(stats=stats)
        ...
        stats.get_summary("Loader.load")
        stats.mismatch_counts()   # {"matched": 4, "missing_ends": 1, ...}
        stats.to_dict()
    """

    def __init__(self, window_size: int = DEFAULT_STATS_WINDOW_SIZE) -> None:
        """Initialize the manager.

        Args:
            window_size: Window passed to every per-scope collector.
        """
        self._window_size = window_size
        self._collectors: dict[str, ScopeStatsCollector] = {}
        self._outcomes: dict[str, int] = {}
        self._lock = threading.Lock()

    def _get_collector(self, scope_id: str) -> ScopeStatsCollector:
        with self._lock:
            if scope_id not in self._collectors:
                self._collectors[scope_id] = ScopeStatsCollector(
                    scope_id, self._window_size
                )
            return self._collectors[scope_id]

    def record_close(
        self,
        scope_id: str,
        duration_ms: float,
        forced: bool = False,
    ) -> None:
        """Record that ``scope_id`` was closed after ``duration_ms``.

        Args:
            scope_id: Scope identifier.
            duration_ms: Milliseconds the scope was open.
            forced: True when the scope's own ``end`` was missing.
        """
        self._get_collector(scope_id).record(duration_ms, forced)

    def record_outcome(self, kind: str) -> None:
        """Count one reconciliation outcome (a ``MismatchKind`` value)."""
        with self._lock:
            self._outcomes[kind] = self._outcomes.get(kind, 0) + 1

    def mismatch_counts(self) -> dict[str, int]:
        """Return a copy of the reconciliation outcome counts."""
        with self._lock:
            return dict(self._outcomes)

    def get_summary(self, scope_id: str) -> ScopeStatsSummary:
        """Get the summary for one scope (zeros if never closed)."""
        return self._get_collector(scope_id).get_summary()

    def get_all_summaries(self) -> dict[str, ScopeStatsSummary]:
        """Get summaries for every scope closed at least once.

        Returns:
            Mapping of scope id to summary, empty if nothing was recorded.
        """
        with self._lock:
            collectors = list(self._collectors.items())
        return {scope_id: c.get_summary() for scope_id, c in collectors}

    def reset(self, scope_id: str | None = None) -> None:
        """Reset one scope's statistics, or everything when None.

        Resetting everything also clears the outcome counts. Unknown
        scope ids are ignored.
        """
        with self._lock:
            if scope_id is not None:
                if scope_id in self._collectors:
                    self._collectors[scope_id].reset()
            else:
                for collector in self._collectors.values():
                    collector.reset()
                self._outcomes.clear()

    def to_dict(self) -> dict[str, Any]:
        """Export all statistics in a JSON-serializable form.

        Returns:
            {"scopes": {scope_id: summary dict}, "outcomes": {...},
            "timestamp": ISO string}
        """
        summaries = self.get_all_summaries()
        return {
            "scopes": {
                scope_id: summary.to_dict() for scope_id, summary in summaries.items()
            },
            "outcomes": self.mismatch_counts(),
            "timestamp": _utc_now().isoformat(),
        }


def _percentile(sorted_data: list[float], p: float) -> float:
    """Calculate a percentile from pre-sorted data.

    Uses linear interpolation between data points, matching numpy's
    'linear' method.

    Args:
        sorted_data: Values sorted ascending. Empty returns 0.0.
        p: Percentile in [0, 100].

    Returns:
        The percentile value.

    Raises:
        ValueError: If p is outside [0, 100].

    Example:
        >>> _percentile([1.0, 2.0, 3.0, 4.0, 5.0], 50)
        3.0
        >>> _percentile([100.0, 150.0, 200.0], 95)
        195.0
    """
    if not 0 <= p <= 100:
        raise ValueError(f"Percentile must be between 0 and 100, got {p}")

    if not sorted_data:
        return 0.0

    k = (len(sorted_data) - 1) * (p / 100)
    floor_idx = int(k)
    ceil_idx = min(floor_idx + 1, len(sorted_data) - 1)

    if floor_idx == ceil_idx:
        return sorted_data[floor_idx]

    fraction = k - floor_idx
    return sorted_data[floor_idx] * (1 - fraction) + sorted_data[ceil_idx] * fraction
