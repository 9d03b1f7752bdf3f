"""
Confidence.py
-------------
How far the controller trusts its own evidence. Confidence blends three
components, each in [0, 1]:
  - variance:  consistency of recent scores (recency-weighted spread)
  - direction: how long the current adaptation direction has been held
  - history:   recency-weighted amount of history against a baseline

Low confidence shrinks the adaptation budget and widens the hysteresis
thresholds; an empty history is neutral (0.5).
"""

import math
from dataclasses import dataclass
from typing import Sequence

from ADM_Bases.History import PerformanceHistoryEntry
from ADM_Bases.Interpolation import clamp01, lerp
from adm_config import (
    CONFIDENCE_DIRECTION_WEIGHT,
    CONFIDENCE_HISTORY_WEIGHT,
    CONFIDENCE_VARIANCE_WEIGHT,
    NEUTRAL_CONFIDENCE,
    ADMConfig,
)

# Standard deviation at which variance confidence reaches zero
MAX_SCORE_DEVIATION = 0.5


@dataclass(frozen=True)
class AdaptationConfidence:
    variance: float
    direction: float
    history: float
    total: float


def recency_weight(age: float, half_life: float) -> float:
    if half_life <= 0.0:
        return 1.0
    return 0.5 ** (max(0.0, age) / half_life)


class ConfidenceEstimator:

    __slots__ = ("_enabled", "_min_multiplier", "_widening", "_baseline", "_half_life", "_max_stable")

    def __init__(self, config: ADMConfig):
        self._enabled = config.enable_confidence_scaling
        self._min_multiplier = config.min_confidence_multiplier
        self._widening = config.confidence_threshold_widening_factor
        self._baseline = config.confidence_history_baseline
        self._half_life = config.confidence_recency_half_life
        self._max_stable = max(1, config.confidence_max_stable_rounds)

    def estimate(
        self,
        entries: Sequence[PerformanceHistoryEntry],
        stable_rounds: int,
        now: float,
    ) -> AdaptationConfidence:
        if not entries:
            return AdaptationConfidence(
                variance=NEUTRAL_CONFIDENCE,
                direction=NEUTRAL_CONFIDENCE,
                history=0.0,
                total=NEUTRAL_CONFIDENCE,
            )

        weights = [recency_weight(now - entry.timestamp, self._half_life) for entry in entries]
        total_weight = math.fsum(weights)
        mean = math.fsum(w * e.overall_score for w, e in zip(weights, entries)) / total_weight
        variance = math.fsum(w * (e.overall_score - mean) ** 2 for w, e in zip(weights, entries)) / total_weight

        variance_confidence = clamp01(1.0 - math.sqrt(variance) / MAX_SCORE_DEVIATION)
        held = min(max(0, stable_rounds), self._max_stable) / self._max_stable
        direction_confidence = held * weights[-1]
        history_confidence = min(1.0, total_weight / self._baseline)

        total = (
            CONFIDENCE_VARIANCE_WEIGHT * variance_confidence
            + CONFIDENCE_DIRECTION_WEIGHT * direction_confidence
            + CONFIDENCE_HISTORY_WEIGHT * history_confidence
        )
        return AdaptationConfidence(
            variance=variance_confidence,
            direction=direction_confidence,
            history=history_confidence,
            total=clamp01(total),
        )

    def multiplier(self, confidence: AdaptationConfidence) -> float:
        """Budget scale; 1.0 when scaling is disabled."""
        if not self._enabled:
            return 1.0
        return lerp(self._min_multiplier, 1.0, confidence.total)

    # Thresholds: the dead band around the neutral score widens as confidence drops
    def thresholds(
        self, increase: float, decrease: float, confidence: AdaptationConfidence
    ) -> tuple[float, float]:
        if not self._enabled:
            return increase, decrease
        widen = (1.0 - confidence.total) * self._widening
        return increase + widen, decrease - widen
