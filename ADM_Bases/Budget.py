"""
Budget.py
---------
Turns the adaptive score into a signed adaptation budget and spends it on
the difficulty dimensions.

Negative budgets ease, non-negative budgets harden. Easing inverts the
priority table and first relieves the dimensions sitting above the
midpoint (pass 1) before spreading what is left over every dimension
(pass 2). Budget is charged for the clamped change, before smoothing, so
the unspent remainder reflects range saturation only.
"""

import logging
from dataclasses import dataclass
from typing import Iterable

from ADM_Bases.Dimensions import DifficultyDimension, DimensionVector
from ADM_Bases.Interpolation import clamp, clamp01, lerp, smoothstep
from ADM_Bases.RangeMapper import RangeMapper
from adm_config import ADMConfig

logger = logging.getLogger(__name__)


NEUTRAL_SCORE = 0.5


def budget_from_signal(signal: float, dead_zone: float, sensitivity: float) -> float:
    if abs(signal) < dead_zone:
        return 0.0
    return signal * sensitivity


def signed_budget(adaptive_score: float, dead_zone: float, sensitivity: float) -> float:
    return budget_from_signal((adaptive_score - NEUTRAL_SCORE) * 2.0, dead_zone, sensitivity)


def threshold_signal(
    adaptive_score: float,
    increase_threshold: float,
    decrease_threshold: float,
    hysteresis_dead_zone: float,
    neutral_zone_scale: float,
) -> float:
    """
    Signal for hysteresis mode. Outside [decrease, increase] the full
    (score - 0.5) * 2 signal applies; inside it the signal is damped to
    (score - 0.5) * neutral_zone_scale and is zero within
    hysteresis_dead_zone of the neutral score.
    """
    offset = adaptive_score - NEUTRAL_SCORE
    if adaptive_score > increase_threshold or adaptive_score < decrease_threshold:
        return offset * 2.0
    if abs(offset) < hysteresis_dead_zone:
        return 0.0
    return offset * neutral_zone_scale


def interpolated_priority(
    low: float,
    high: float,
    arousal: float,
    transition_start: float,
    transition_end: float,
    invert: bool,
    max_priority_scale: float,
) -> float:
    t = smoothstep(transition_start, transition_end, arousal)
    priority = lerp(low, high, t)
    if invert:
        return max_priority_scale - priority
    return priority


def allocate(
    budget: float,
    weights: DimensionVector,
    subset: Iterable[DifficultyDimension],
) -> DimensionVector:
    """Split budget over subset proportionally to weight; zero shares outside it."""
    members = {dimension for dimension in subset if weights.get(dimension) > 0.0}
    total = sum(weights.get(dimension) for dimension in members)
    if budget == 0.0 or total <= 0.0:
        return DimensionVector()
    return DimensionVector.build(
        lambda dimension: budget * weights.get(dimension) / total if dimension in members else 0.0
    )


@dataclass(frozen=True)
class AllocationResult:
    positions: DimensionVector
    changes: DimensionVector
    initial_budget: float
    remaining_budget: float
    passes: int

    @property
    def spent_budget(self) -> float:
        return self.initial_budget - self.remaining_budget


class BudgetAllocator:

    __slots__ = ("_config", "_mapper")

    def __init__(self, config: ADMConfig, mapper: RangeMapper):
        self._config = config
        self._mapper = mapper

    def budget_for(
        self, adaptive_score: float, thresholds: tuple[float, float] | None = None
    ) -> float:
        """Signed budget; hysteresis mode uses the (increase, decrease) thresholds."""
        cfg = self._config
        if not cfg.enable_hysteresis:
            return signed_budget(
                adaptive_score,
                cfg.adaptation_signal_dead_zone,
                cfg.adaptation_signal_sensitivity,
            )
        if thresholds is None:
            thresholds = (cfg.adaptation_increase_threshold, cfg.adaptation_decrease_threshold)
        increase, decrease = thresholds
        signal = threshold_signal(
            adaptive_score,
            increase,
            decrease,
            cfg.hysteresis_dead_zone,
            cfg.neutral_zone_signal_scale,
        )
        return budget_from_signal(
            signal, cfg.adaptation_signal_dead_zone, cfg.adaptation_signal_sensitivity
        )

    def priority(self, dimension: DifficultyDimension, arousal: float, invert: bool) -> float:
        cfg = self._config
        return interpolated_priority(
            cfg.priorities_low_mid.get(dimension),
            cfg.priorities_high.get(dimension),
            arousal,
            cfg.kpi_weight_transition_start,
            cfg.kpi_weight_transition_end,
            invert,
            cfg.max_priority_scale,
        )

    # Priority Weights: dimensions without a usable range at this arousal weigh zero
    def priority_weights(self, arousal: float, invert: bool) -> DimensionVector:
        def weight(dimension: DifficultyDimension) -> float:
            if not self._mapper.has_range(dimension, arousal):
                return 0.0
            return max(0.0, self.priority(dimension, arousal, invert))

        return DimensionVector.build(weight)

    def _apply_pass(
        self,
        positions: DimensionVector,
        shares: DimensionVector,
        floor: float,
        smoothing: DimensionVector,
        rates: DimensionVector,
    ) -> tuple[DimensionVector, DimensionVector]:
        changes = DimensionVector()
        for dimension, share in shares.items():
            if share == 0.0:
                continue
            current = positions.get(dimension)
            achieved = clamp(current + share, floor, 1.0)
            actual_change = achieved - current
            factor = clamp01(smoothing.get(dimension) * rates.get(dimension))
            smoothed = current + actual_change * factor
            positions = positions.with_value(dimension, clamp01(smoothed))
            changes = changes.with_value(dimension, actual_change)
        return positions, changes

    def modulate(
        self, positions: DimensionVector, budget: float, arousal: float
    ) -> AllocationResult:
        cfg = self._config
        easing = budget < 0.0
        smoothing = cfg.easing_smoothing if easing else cfg.hardening_smoothing
        rates = cfg.easing_rate_multipliers if easing else cfg.hardening_rate_multipliers
        weights = self.priority_weights(arousal, invert=easing)
        remaining = budget
        total_changes = DimensionVector()
        passes = 0

        def accumulate(changes: DimensionVector) -> float:
            nonlocal total_changes
            spent = 0.0
            for dimension, change in changes.items():
                if change != 0.0:
                    total_changes = total_changes.with_value(
                        dimension, total_changes.get(dimension) + change
                    )
                    spent += change
            return spent

        # Pass 1: relieve over-hardened dimensions without pushing them below the midpoint
        if easing and abs(remaining) >= cfg.budget_epsilon:
            over_hardened = [
                dimension
                for dimension, position in positions.items()
                if position > cfg.easing_midpoint
            ]
            if over_hardened:
                shares = allocate(remaining, weights, over_hardened)
                positions, changes = self._apply_pass(
                    positions, shares, cfg.easing_midpoint, smoothing, rates
                )
                remaining -= accumulate(changes)
                passes += 1

        # Pass 2: spread what is left across every dimension
        if abs(remaining) >= cfg.budget_epsilon:
            shares = allocate(remaining, weights, list(DifficultyDimension))
            positions, changes = self._apply_pass(positions, shares, 0.0, smoothing, rates)
            remaining -= accumulate(changes)
            passes += 1

        logger.debug(
            {
                "event": "budget_allocated",
                "initial_budget": round(budget, 4),
                "remaining_budget": round(remaining, 4),
                "passes": passes,
                "easing": easing,
            }
        )
        return AllocationResult(
            positions=positions,
            changes=total_changes,
            initial_budget=budget,
            remaining_budget=remaining,
            passes=passes,
        )
