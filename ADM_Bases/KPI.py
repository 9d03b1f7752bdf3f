"""
KPI.py
------
Turns one round's raw outcome into five 0-1 "goodness" scores and combines
them into a single round score.

Normalization never raises: a misconfigured best/worst pair (worst <= best)
degrades to a step function and NaN inputs score as the worst case.
"""

import math
from dataclasses import dataclass

from ADM_Bases.Dimensions import KPIVector
from ADM_Bases.Interpolation import clamp01, lerp, smoothstep
from adm_config import ADMConfig


_TRUE_STRINGS = frozenset({"true", "1", "yes"})
_FALSE_STRINGS = frozenset({"false", "0", "no"})


def parse_flag(value) -> bool:
    """Strict boolean: real bools, 0/1, or true/false/yes/no strings."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise ValueError(f"expected a boolean, got {value!r}")


@dataclass(frozen=True)
class RoundOutcome:
    task_success: bool
    find_ratio: float
    reaction_time: float
    response_duration: float
    tap_error: float
    target_count: int

    @classmethod
    def from_dict(cls, payload: dict) -> "RoundOutcome":
        if not isinstance(payload, dict):
            raise TypeError("round outcome must be a dictionary")
        return cls(
            task_success=parse_flag(payload.get("task_success", False)),
            find_ratio=float(payload.get("find_ratio", 0.0)),
            reaction_time=float(payload.get("reaction_time", 0.0)),
            response_duration=float(payload.get("response_duration", 0.0)),
            tap_error=float(payload.get("tap_error", 0.0)),
            target_count=int(payload.get("target_count", 0)),
        )


# Lower Is Better: 1.0 at best, 0.0 at worst, linear in between
def normalize_lower_is_better(value: float, best: float, worst: float) -> float:
    if math.isnan(value):
        return 0.0
    if worst <= best:
        return 1.0 if value <= best else 0.0
    return 1.0 - clamp01((value - best) / (worst - best))


class KPINormalizer:

    __slots__ = (
        "_rt_best",
        "_rt_worst",
        "_rd_best_per_target",
        "_rd_worst_per_target",
        "_tap_best",
        "_tap_worst",
    )

    def __init__(self, config: ADMConfig):
        self._rt_best = config.reaction_time_best
        self._rt_worst = config.reaction_time_worst
        self._rd_best_per_target = config.response_duration_per_target_best
        self._rd_worst_per_target = config.response_duration_per_target_worst
        self._tap_best = config.tap_error_best
        self._tap_worst = config.tap_error_worst

    @staticmethod
    def _sanitize_ratio(ratio: float) -> float:
        if math.isnan(ratio):
            return 0.0
        return clamp01(ratio)

    def reaction_time_score(self, reaction_time: float) -> float:
        return normalize_lower_is_better(reaction_time, self._rt_best, self._rt_worst)

    # Response duration bounds scale with the number of targets in the round
    def response_duration_score(self, response_duration: float, target_count: int) -> float:
        targets = max(0, target_count)
        best = self._rd_best_per_target * targets
        worst = self._rd_worst_per_target * targets
        return normalize_lower_is_better(response_duration, best, worst)

    def tap_accuracy_score(self, tap_error: float) -> float:
        return normalize_lower_is_better(abs(tap_error), self._tap_best, self._tap_worst)

    def normalize(self, outcome: RoundOutcome) -> KPIVector:
        return KPIVector(
            task_success=1.0 if outcome.task_success else 0.0,
            find_ratio=self._sanitize_ratio(outcome.find_ratio),
            reaction_time=self.reaction_time_score(outcome.reaction_time),
            response_duration=self.response_duration_score(
                outcome.response_duration, outcome.target_count
            ),
            tap_accuracy=self.tap_accuracy_score(outcome.tap_error),
        )


class PerformanceScorer:
    """
    Weighted sum of normalized KPIs with arousal-dependent weights.

    The two weight sets blend smoothly across the transition band instead of
    switching at a threshold. Weights are not renormalized; the clamp to
    [0, 1] is the only bound on the result.
    """

    __slots__ = (
        "_low_mid",
        "_high",
        "_transition_start",
        "_transition_end",
        "_interpolate",
        "_switch_threshold",
    )

    def __init__(self, config: ADMConfig):
        self._low_mid = config.kpi_weights_low_mid
        self._high = config.kpi_weights_high
        self._transition_start = config.kpi_weight_transition_start
        self._transition_end = config.kpi_weight_transition_end
        self._interpolate = config.use_kpi_weight_interpolation
        self._switch_threshold = config.arousal_threshold_for_kpi_switch

    def weights_for(self, arousal: float) -> KPIVector:
        if not self._interpolate:
            return self._high if arousal >= self._switch_threshold else self._low_mid
        t = smoothstep(self._transition_start, self._transition_end, arousal)
        return KPIVector.build(
            lambda kind: lerp(self._low_mid.get(kind), self._high.get(kind), t)
        )

    # Each weight set is summed on its own and the two sums are blended
    def score(self, kpis: KPIVector, arousal: float) -> float:
        low = kpis.weighted_sum(self._low_mid)
        high = kpis.weighted_sum(self._high)
        if not self._interpolate:
            return clamp01(high if arousal >= self._switch_threshold else low)
        t = smoothstep(self._transition_start, self._transition_end, arousal)
        if t <= 0.0 or low == high:
            return clamp01(low)
        if t >= 1.0:
            return clamp01(high)
        return clamp01(lerp(low, high, t))
