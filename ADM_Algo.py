"""
ADM_Algo.py
-----------
Adaptive Difficulty Manager. Consumes one round's KPI outcome plus the
current arousal estimate and retunes the difficulty dimensions, returning
the absolute values the host applies to the next round along with
diagnostics.

Pipeline per round: normalize KPIs -> score -> record history -> blend with
history -> confidence-scaled budget -> direction gate -> two-pass allocation
-> absolute values.
"""

import logging
import math
import time
from dataclasses import dataclass
from threading import RLock
from typing import Callable

from ADM_Bases.Budget import AllocationResult, BudgetAllocator
from ADM_Bases.Confidence import AdaptationConfidence, ConfidenceEstimator
from ADM_Bases.Dimensions import AdaptationDirection, DifficultyDimension, DimensionVector, KPIVector
from ADM_Bases.History import (
    AdaptiveScoreBlender,
    HistoryTracker,
    PerformanceHistoryEntry,
    PerformanceMetrics,
)
from ADM_Bases.Interpolation import clamp01
from ADM_Bases.KPI import KPINormalizer, PerformanceScorer, RoundOutcome
from ADM_Bases.RangeMapper import RangeMapper
from ADM_Bases.Telemetry import LoggingTelemetry, TelemetrySink
from ADM_Persistence import (
    AdaptiveDifficultyState,
    DomPerformanceSample,
    ProfileSet,
    StateStore,
    migrate,
)
from adm_config import CURRENT_SCHEMA_VERSION, DEFAULT_CONFIG, ADMConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoundDiagnostics:
    round_score: float
    adaptive_score: float
    metrics: PerformanceMetrics
    initial_budget: float
    spent_budget: float
    unspent_budget: float
    direction: AdaptationDirection
    direction_stable_count: int
    confidence: AdaptationConfidence
    confidence_multiplier: float
    arousal: float
    normalized_kpis: KPIVector
    normalized_positions: DimensionVector
    absolute_values: DimensionVector
    performance_slopes: DimensionVector

    def as_dict(self) -> dict:
        return {
            "round_score": round(self.round_score, 4),
            "adaptive_score": round(self.adaptive_score, 4),
            "average": round(self.metrics.average, 4),
            "trend": round(self.metrics.trend, 4),
            "variance": round(self.metrics.variance, 4),
            "initial_budget": round(self.initial_budget, 4),
            "spent_budget": round(self.spent_budget, 4),
            "unspent_budget": round(self.unspent_budget, 4),
            "direction": self.direction.value,
            "direction_stable_count": self.direction_stable_count,
            "confidence": round(self.confidence.total, 4),
            "confidence_multiplier": round(self.confidence_multiplier, 4),
            "arousal": round(self.arousal, 4),
            "normalized_kpis": {k: round(v, 4) for k, v in self.normalized_kpis.to_json().items()},
            "normalized_positions": {
                k: round(v, 4) for k, v in self.normalized_positions.to_json().items()
            },
            "absolute_values": self.absolute_values.to_json(),
            "performance_slopes": {
                k: round(v, 4) for k, v in self.performance_slopes.to_json().items()
            },
        }


class AdaptiveDifficultyManager:
    """
    Closed-loop difficulty controller.

    All public methods take one re-entrant lock, so a host may share an
    instance between threads. Persistence is optional: pass a StateStore and
    a user id to load prior learning at construction and save it on demand.
    """

    def __init__(
        self,
        config: ADMConfig = DEFAULT_CONFIG,
        initial_arousal: float | None = None,
        user_id: str | None = None,
        store: StateStore | None = None,
        telemetry: TelemetrySink | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._config = config
        self._user_id = user_id
        self._store = store
        self._telemetry = telemetry if telemetry is not None else LoggingTelemetry()
        self._clock = clock
        self._lock = RLock()

        self._mapper = RangeMapper(
            config.dimension_ranges,
            config.arousal_operational_min,
            config.arousal_operational_max,
            config.range_epsilon,
        )
        self._normalizer = KPINormalizer(config)
        self._scorer = PerformanceScorer(config)
        self._blender = AdaptiveScoreBlender(
            config.current_performance_weight,
            config.history_influence_weight,
            config.trend_influence_weight,
            config.minimum_history_for_trend,
        )
        self._allocator = BudgetAllocator(config, self._mapper)
        self._confidence = ConfidenceEstimator(config)

        arousal = config.initial_arousal if initial_arousal is None else initial_arousal
        self._arousal = self._sanitize_arousal(arousal)
        self._reset_learning_state()

        if self._store is not None and self._user_id is not None:
            if config.clear_past_session_data:
                self._store.clear(self._user_id)
            else:
                self.load_state()

    # Internal state

    def _reset_learning_state(self) -> None:
        self._history = HistoryTracker(self._config.max_history_size)
        self._positions = DimensionVector.filled(clamp01(self._config.default_normalized_position))
        self._last_direction = AdaptationDirection.NONE
        self._direction_stable_count = 0
        self._gate_direction = AdaptationDirection.NONE
        self._gate_rounds = 0
        self._profiles = ProfileSet()
        self._schema_version = CURRENT_SCHEMA_VERSION
        self._absolute_values = self._mapper.absolute_values(self._positions, self._arousal)

    @staticmethod
    def _sanitize_arousal(arousal: float) -> float:
        arousal = float(arousal)
        if math.isnan(arousal):
            return 0.0
        return clamp01(arousal)

    def _refresh_absolute_values(self) -> None:
        self._absolute_values = self._mapper.absolute_values(self._positions, self._arousal)

    # Read-only views

    @property
    def config(self) -> ADMConfig:
        return self._config

    @property
    def range_mapper(self) -> RangeMapper:
        return self._mapper

    @property
    def arousal_level(self) -> float:
        with self._lock:
            return self._arousal

    @property
    def normalized_positions(self) -> DimensionVector:
        with self._lock:
            return self._positions

    @property
    def absolute_values(self) -> DimensionVector:
        with self._lock:
            return self._absolute_values

    @property
    def history(self) -> tuple[PerformanceHistoryEntry, ...]:
        with self._lock:
            return self._history.entries

    @property
    def last_adaptation_direction(self) -> AdaptationDirection:
        with self._lock:
            return self._last_direction

    @property
    def direction_stable_count(self) -> int:
        with self._lock:
            return self._direction_stable_count

    @property
    def performance_profiles(self) -> ProfileSet:
        with self._lock:
            return self._profiles

    def absolute_value(self, dimension: DifficultyDimension) -> float:
        with self._lock:
            return self._absolute_values.get(dimension)

    # Public API

    def update_arousal(self, arousal: float) -> None:
        """Take a new arousal estimate; absolute values follow the re-gated ranges."""
        with self._lock:
            previous = self._arousal
            self._arousal = self._sanitize_arousal(arousal)
            self._refresh_absolute_values()
            if self._arousal != previous:
                self._telemetry.log_event(
                    "adm_arousal",
                    {"previous": round(previous, 4), "arousal": round(self._arousal, 4)},
                )

    def add_performance_entry(self, entry: PerformanceHistoryEntry) -> None:
        with self._lock:
            self._history.append(entry)

    def get_performance_metrics(self) -> PerformanceMetrics:
        with self._lock:
            return self._history.metrics()

    def calculate_adaptive_score(self, current_score: float) -> float:
        with self._lock:
            if not self._config.use_performance_history:
                return clamp01(current_score)
            return self._blender.blend(current_score, self._history)

    def calculate_adaptation_confidence(self) -> AdaptationConfidence:
        with self._lock:
            return self._confidence.estimate(self._history.entries, self._gate_rounds, self._clock())

    def record_round(self, outcome: RoundOutcome) -> RoundDiagnostics:
        """Run one control step for a completed round."""
        if not isinstance(outcome, RoundOutcome):
            raise TypeError("outcome must be a RoundOutcome")
        with self._lock:
            cfg = self._config
            now = self._clock()
            kpis = self._normalizer.normalize(outcome)
            round_score = self._scorer.score(kpis, self._arousal)

            if cfg.use_performance_history:
                self._history.append(
                    PerformanceHistoryEntry(
                        timestamp=now,
                        overall_score=round_score,
                        normalized_kpis=kpis,
                        arousal_level=self._arousal,
                        dimension_values=self._absolute_values,
                    )
                )
            if cfg.enable_dom_profiling:
                self._record_profiles(round_score, now)

            adaptive_score = self.calculate_adaptive_score(round_score)
            confidence = self._confidence.estimate(self._history.entries, self._gate_rounds, now)
            thresholds = self._confidence.thresholds(
                cfg.adaptation_increase_threshold, cfg.adaptation_decrease_threshold, confidence
            )
            multiplier = self._confidence.multiplier(confidence)
            budget = self._allocator.budget_for(adaptive_score, thresholds) * multiplier
            budget, direction = self._apply_direction_rules(budget)

            allocation = self._allocator.modulate(self._positions, budget, self._arousal)
            self._positions = allocation.positions
            self._refresh_absolute_values()

            diagnostics = self._build_diagnostics(
                round_score, adaptive_score, kpis, allocation, direction, confidence, multiplier
            )
            self._telemetry.log_event("adm_round", diagnostics.as_dict())
            return diagnostics

    def reset(self) -> None:
        with self._lock:
            self._reset_learning_state()
            self._telemetry.log_event("adm_reset", {"user_id": self._user_id})

    # Direction tracking and hysteresis
    #
    # The gate remembers the last non-None direction and how many rounds it
    # has been held; rounds that request no change leave it untouched.

    def _apply_direction_rules(self, budget: float) -> tuple[float, AdaptationDirection]:
        requested = AdaptationDirection.from_budget(budget)
        if requested is not AdaptationDirection.NONE:
            gate = self._gate_direction
            if (
                self._config.enable_hysteresis
                and gate is not AdaptationDirection.NONE
                and requested is not gate
                and self._gate_rounds < self._config.min_stable_rounds_before_direction_change
            ):
                self._gate_rounds += 1
                budget = 0.0
                requested = AdaptationDirection.NONE
            elif requested is gate:
                self._gate_rounds += 1
            else:
                self._gate_direction = requested
                self._gate_rounds = 1

        if requested is self._last_direction:
            self._direction_stable_count += 1
        else:
            self._last_direction = requested
            self._direction_stable_count = 1
        return budget, requested

    # Per-dimension profiles

    def _record_profiles(self, round_score: float, timestamp: float) -> None:
        max_samples = self._config.dom_profile_max_samples
        profiles = self._profiles
        for dimension, position in self._positions.items():
            sample = DomPerformanceSample(
                timestamp=timestamp,
                value=float(self._absolute_values.get(dimension)),
                normalized_position=position,
                performance=round_score,
            )
            profiles = profiles.with_value(
                dimension, profiles.get(dimension).with_sample(sample, max_samples)
            )
        self._profiles = profiles

    def performance_slopes(self) -> DimensionVector:
        """Per-dimension slope of round score against normalized position."""
        with self._lock:
            profiles = self._profiles
            return DimensionVector.build(
                lambda dimension: profiles.get(dimension).performance_slope()
            )

    def _build_diagnostics(
        self,
        round_score: float,
        adaptive_score: float,
        kpis: KPIVector,
        allocation: AllocationResult,
        direction: AdaptationDirection,
        confidence: AdaptationConfidence,
        multiplier: float,
    ) -> RoundDiagnostics:
        return RoundDiagnostics(
            round_score=round_score,
            adaptive_score=adaptive_score,
            metrics=self._history.metrics(),
            initial_budget=allocation.initial_budget,
            spent_budget=allocation.spent_budget,
            unspent_budget=allocation.remaining_budget,
            direction=direction,
            direction_stable_count=self._direction_stable_count,
            confidence=confidence,
            confidence_multiplier=multiplier,
            arousal=self._arousal,
            normalized_kpis=kpis,
            normalized_positions=self._positions,
            absolute_values=self._absolute_values,
            performance_slopes=self.performance_slopes(),
        )

    # Persistence

    def export_state(self) -> AdaptiveDifficultyState:
        with self._lock:
            return AdaptiveDifficultyState(
                history=self._history.entries,
                last_adaptation_direction=self._last_direction,
                direction_stable_count=self._direction_stable_count,
                normalized_positions=self._positions,
                performance_profiles=self._profiles,
                schema_version=self._schema_version,
            )

    def restore_state(self, state: AdaptiveDifficultyState) -> None:
        with self._lock:
            state = migrate(state)
            self._history = HistoryTracker(self._config.max_history_size, state.history)
            self._positions = DimensionVector.build(
                lambda dimension: clamp01(state.normalized_positions.get(dimension))
            )
            self._last_direction = state.last_adaptation_direction
            self._direction_stable_count = max(0, state.direction_stable_count)
            self._gate_direction = self._last_direction
            if self._gate_direction is AdaptationDirection.NONE:
                self._gate_rounds = 0
            else:
                self._gate_rounds = self._direction_stable_count
            self._profiles = state.performance_profiles or ProfileSet()
            self._schema_version = state.schema_version
            self._refresh_absolute_values()

    def load_state(self) -> bool:
        """Restore prior learning from the store; False means fresh defaults are in use."""
        if self._store is None or self._user_id is None:
            return False
        state = self._store.load(self._user_id)
        if state is None:
            return False
        self.restore_state(state)
        self._telemetry.log_event(
            "adm_state_loaded",
            {
                "user_id": self._user_id,
                "history_entries": len(state.history),
                "direction": state.last_adaptation_direction.value,
                "schema_version": state.schema_version,
            },
        )
        return True

    def save_state(self) -> bool:
        if self._store is None or self._user_id is None:
            return False
        state = self.export_state()
        saved = self._store.save(state, self._user_id)
        if saved:
            self._telemetry.log_event(
                "adm_state_saved",
                {"user_id": self._user_id, "history_entries": len(state.history)},
            )
        return saved
