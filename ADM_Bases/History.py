"""
History.py
----------
Bounded, time-ordered log of round scores plus the analytics derived from
it (average, least-squares trend, variance) and the blender that folds
those analytics into the score used for control.
"""

import logging
from collections import deque
from dataclasses import dataclass, replace
from typing import Iterable

from ADM_Bases.Dimensions import DimensionVector, KPIVector
from ADM_Bases.Interpolation import clamp, clamp01

logger = logging.getLogger(__name__)

NEUTRAL_AVERAGE = 0.5


@dataclass(frozen=True)
class PerformanceHistoryEntry:
    timestamp: float
    overall_score: float
    normalized_kpis: KPIVector
    arousal_level: float
    dimension_values: DimensionVector


@dataclass(frozen=True)
class PerformanceMetrics:
    average: float
    trend: float
    variance: float


class HistoryTracker:

    __slots__ = ("_entries", "_max_size")

    def __init__(self, max_size: int, entries: Iterable[PerformanceHistoryEntry] = ()):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._max_size = max_size
        self._entries: deque[PerformanceHistoryEntry] = deque(maxlen=max_size)
        for entry in entries:
            self.append(entry)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def entries(self) -> tuple[PerformanceHistoryEntry, ...]:
        return tuple(self._entries)

    def append(self, entry: PerformanceHistoryEntry) -> None:
        """Append an entry, evicting the oldest on overflow; timestamps never go backwards."""
        if self._entries and entry.timestamp < self._entries[-1].timestamp:
            logger.debug(
                {
                    "event": "history_timestamp_clamped",
                    "timestamp": entry.timestamp,
                    "previous": self._entries[-1].timestamp,
                }
            )
            entry = replace(entry, timestamp=self._entries[-1].timestamp)
        self._entries.append(entry)

    def clear(self) -> None:
        self._entries.clear()

    def scores(self) -> list[float]:
        return [entry.overall_score for entry in self._entries]

    def average(self) -> float:
        scores = self.scores()
        if not scores:
            return NEUTRAL_AVERAGE
        return sum(scores) / len(scores)

    # Trend: OLS slope of score against sample index, scaled down for long windows
    def trend(self) -> float:
        scores = self.scores()
        n = len(scores)
        if n < 2:
            return 0.0
        mean_x = (n - 1) / 2.0
        mean_y = sum(scores) / n
        numerator = 0.0
        denominator = 0.0
        for index, score in enumerate(scores):
            dx = index - mean_x
            numerator += dx * (score - mean_y)
            denominator += dx * dx
        slope = numerator / denominator
        return clamp(slope / max(1.0, n / 10.0), -1.0, 1.0)

    def variance(self) -> float:
        scores = self.scores()
        n = len(scores)
        if n < 2:
            return 0.0
        mean = sum(scores) / n
        return sum((score - mean) ** 2 for score in scores) / n

    def metrics(self) -> PerformanceMetrics:
        return PerformanceMetrics(
            average=self.average(),
            trend=self.trend(),
            variance=self.variance(),
        )


class AdaptiveScoreBlender:
    """Blends the round score with history; pass-through until the window is large enough."""

    __slots__ = ("_current_weight", "_history_weight", "_trend_weight", "_min_history")

    def __init__(
        self,
        current_weight: float,
        history_weight: float,
        trend_weight: float,
        min_history: int,
    ):
        self._current_weight = current_weight
        self._history_weight = history_weight
        self._trend_weight = trend_weight
        self._min_history = min_history

    def blend(self, current_score: float, history: HistoryTracker) -> float:
        if len(history) < self._min_history:
            return clamp01(current_score)
        metrics = history.metrics()
        adaptive = (
            current_score * self._current_weight
            + metrics.average * self._history_weight
            + metrics.trend * self._trend_weight
        )
        return clamp01(adaptive)
