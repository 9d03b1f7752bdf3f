"""
Central configuration for the adaptive difficulty manager.
Keep all tunable constants here so the controller, the tester backend and
tests rely on one source.
"""

import os
from dataclasses import dataclass
from typing import ClassVar

from ADM_Bases.Dimensions import DifficultyDimension, DimensionVector, KPIVector, KeyedFields

# Persistence schema
CURRENT_SCHEMA_VERSION = 2
STATE_DIR_DEFAULT = os.getenv("ADM_STATE_DIR", "ADMState")

# Arousal band over which dimension ranges are scaled
AROUSAL_OPERATIONAL_MIN = 0.35
AROUSAL_OPERATIONAL_MAX = 1.0
INITIAL_AROUSAL_DEFAULT = 0.5

# KPI weight / priority interpolation band (smoothstep between the edges)
KPI_WEIGHT_TRANSITION_START = 0.55
KPI_WEIGHT_TRANSITION_END = 0.85
# Legacy hard switch, used only when interpolation is disabled
AROUSAL_THRESHOLD_FOR_KPI_SWITCH = 0.7

# KPI normalization (seconds / points, lower is better)
REACTION_TIME_BEST = 0.2
REACTION_TIME_WORST = 1.75
RESPONSE_DURATION_PER_TARGET_BEST = 0.2
RESPONSE_DURATION_PER_TARGET_WORST = 1.0
TAP_ERROR_BEST = 0.0
TAP_ERROR_WORST = 225.0

# Weights are tuned gains, not required to sum to 1; the score is clamped
KPI_WEIGHTS_LOW_MID_AROUSAL = KPIVector(
	task_success=0.6,
	find_ratio=0.225,
	reaction_time=0.025,
	response_duration=0.05,
	tap_accuracy=0.10,
)
KPI_WEIGHTS_HIGH_AROUSAL = KPIVector(
	task_success=0.6,
	find_ratio=0.1,
	reaction_time=0.15,
	response_duration=0.10,
	tap_accuracy=0.05,
)

# Per-dimension base adaptation rates used as allocation priorities.
# Easing inverts p -> MAX_PRIORITY_SCALE - p; the scale sits one above the largest rate.
MAX_PRIORITY_SCALE = 8.0
DOM_PRIORITIES_LOW_MID_AROUSAL = DimensionVector(
	discriminatory_load=3.0,
	mean_speed=3.0,
	speed_variance=2.0,
	response_time=3.0,
	target_count=7.0,
)
DOM_PRIORITIES_HIGH_AROUSAL = DimensionVector(
	discriminatory_load=6.0,
	mean_speed=3.0,
	speed_variance=3.0,
	response_time=2.0,
	target_count=1.0,
)

# Budget mapping
ADAPTATION_SIGNAL_SENSITIVITY = 1.5
ADAPTATION_SIGNAL_DEAD_ZONE = 0.02
BUDGET_EPSILON = 0.001
RANGE_EPSILON = 1e-4
EASING_MIDPOINT = 0.5
DEFAULT_NORMALIZED_POSITION = 0.5

# Exponential smoothing per dimension; easing reacts faster than hardening
DOM_HARDENING_SMOOTHING = DimensionVector(
	discriminatory_load=0.3,
	mean_speed=0.2,
	speed_variance=0.1,
	response_time=0.1,
	target_count=0.3,
)
DOM_EASING_SMOOTHING = DimensionVector(
	discriminatory_load=0.5,
	mean_speed=0.3,
	speed_variance=0.2,
	response_time=0.15,
	target_count=0.15,
)

# Performance history
USE_PERFORMANCE_HISTORY = True
MAX_HISTORY_SIZE = 20
MINIMUM_HISTORY_FOR_TREND = 3
CURRENT_PERFORMANCE_WEIGHT = 0.85
HISTORY_INFLUENCE_WEIGHT = 0.15
TREND_INFLUENCE_WEIGHT = 0.15

# Direction-specific rate multipliers, applied on top of the smoothing factors
DOM_EASING_RATE_MULTIPLIERS = DimensionVector(
	discriminatory_load=1.25,
	mean_speed=0.8,
	speed_variance=0.8,
	response_time=1.0,
	target_count=1.0,
)
DOM_HARDENING_RATE_MULTIPLIERS = DimensionVector(
	discriminatory_load=1.1,
	mean_speed=0.5,
	speed_variance=0.5,
	response_time=0.85,
	target_count=0.85,
)

# Hysteresis: scores inside [decrease, increase] give a damped signal,
# and nothing at all within HYSTERESIS_DEAD_ZONE of the neutral point
ENABLE_HYSTERESIS = False
ADAPTATION_INCREASE_THRESHOLD = 0.55
ADAPTATION_DECREASE_THRESHOLD = 0.45
HYSTERESIS_DEAD_ZONE = 0.02
NEUTRAL_ZONE_SIGNAL_SCALE = 1.0
MIN_STABLE_ROUNDS_BEFORE_DIRECTION_CHANGE = 2

# Confidence scaling: the budget is multiplied by lerp(MIN_CONFIDENCE_MULTIPLIER, 1, confidence)
ENABLE_CONFIDENCE_SCALING = True
MIN_CONFIDENCE_MULTIPLIER = 0.2
CONFIDENCE_THRESHOLD_WIDENING_FACTOR = 0.05
CONFIDENCE_HISTORY_BASELINE = 10
CONFIDENCE_RECENCY_HALF_LIFE = 24 * 3600.0
CONFIDENCE_MAX_STABLE_ROUNDS = 5
CONFIDENCE_VARIANCE_WEIGHT = 0.4
CONFIDENCE_DIRECTION_WEIGHT = 0.3
CONFIDENCE_HISTORY_WEIGHT = 0.3
NEUTRAL_CONFIDENCE = 0.5

# Per-dimension performance profiling
ENABLE_DOM_PROFILING = True
DOM_PROFILE_MAX_SAMPLES = 50
PERSIST_DOM_PERFORMANCE_PROFILES = True


@dataclass(frozen=True)
class DimensionRange:
	"""Absolute bounds of one dimension at the two ends of the arousal band."""

	easiest_at_min_arousal: float
	easiest_at_max_arousal: float
	hardest_at_min_arousal: float
	hardest_at_max_arousal: float


@dataclass(frozen=True)
class DimensionRanges(KeyedFields):
	_keys: ClassVar[type] = DifficultyDimension

	discriminatory_load: DimensionRange
	mean_speed: DimensionRange
	speed_variance: DimensionRange
	response_time: DimensionRange
	target_count: DimensionRange


# Discriminatory load and response time are inverted: higher is easier.
# Target count collapses to a single value at max arousal.
DIMENSION_RANGES_DEFAULT = DimensionRanges(
	discriminatory_load=DimensionRange(1.0, 0.3, 0.65, 0.075),
	mean_speed=DimensionRange(25.0, 700.0, 75.0, 1000.0),
	speed_variance=DimensionRange(0.0, 75.0, 25.0, 200.0),
	response_time=DimensionRange(10.0, 2.0, 5.0, 1.0),
	target_count=DimensionRange(5.0, 1.0, 7.0, 1.0),
)


@dataclass(frozen=True)
class ADMConfig:
	arousal_operational_min: float = AROUSAL_OPERATIONAL_MIN
	arousal_operational_max: float = AROUSAL_OPERATIONAL_MAX
	initial_arousal: float = INITIAL_AROUSAL_DEFAULT
	dimension_ranges: DimensionRanges = DIMENSION_RANGES_DEFAULT

	kpi_weight_transition_start: float = KPI_WEIGHT_TRANSITION_START
	kpi_weight_transition_end: float = KPI_WEIGHT_TRANSITION_END
	use_kpi_weight_interpolation: bool = True
	arousal_threshold_for_kpi_switch: float = AROUSAL_THRESHOLD_FOR_KPI_SWITCH
	kpi_weights_low_mid: KPIVector = KPI_WEIGHTS_LOW_MID_AROUSAL
	kpi_weights_high: KPIVector = KPI_WEIGHTS_HIGH_AROUSAL

	reaction_time_best: float = REACTION_TIME_BEST
	reaction_time_worst: float = REACTION_TIME_WORST
	response_duration_per_target_best: float = RESPONSE_DURATION_PER_TARGET_BEST
	response_duration_per_target_worst: float = RESPONSE_DURATION_PER_TARGET_WORST
	tap_error_best: float = TAP_ERROR_BEST
	tap_error_worst: float = TAP_ERROR_WORST

	priorities_low_mid: DimensionVector = DOM_PRIORITIES_LOW_MID_AROUSAL
	priorities_high: DimensionVector = DOM_PRIORITIES_HIGH_AROUSAL
	max_priority_scale: float = MAX_PRIORITY_SCALE

	adaptation_signal_sensitivity: float = ADAPTATION_SIGNAL_SENSITIVITY
	adaptation_signal_dead_zone: float = ADAPTATION_SIGNAL_DEAD_ZONE
	budget_epsilon: float = BUDGET_EPSILON
	range_epsilon: float = RANGE_EPSILON
	easing_midpoint: float = EASING_MIDPOINT
	default_normalized_position: float = DEFAULT_NORMALIZED_POSITION
	hardening_smoothing: DimensionVector = DOM_HARDENING_SMOOTHING
	easing_smoothing: DimensionVector = DOM_EASING_SMOOTHING
	easing_rate_multipliers: DimensionVector = DOM_EASING_RATE_MULTIPLIERS
	hardening_rate_multipliers: DimensionVector = DOM_HARDENING_RATE_MULTIPLIERS

	use_performance_history: bool = USE_PERFORMANCE_HISTORY
	max_history_size: int = MAX_HISTORY_SIZE
	minimum_history_for_trend: int = MINIMUM_HISTORY_FOR_TREND
	current_performance_weight: float = CURRENT_PERFORMANCE_WEIGHT
	history_influence_weight: float = HISTORY_INFLUENCE_WEIGHT
	trend_influence_weight: float = TREND_INFLUENCE_WEIGHT

	enable_hysteresis: bool = ENABLE_HYSTERESIS
	min_stable_rounds_before_direction_change: int = MIN_STABLE_ROUNDS_BEFORE_DIRECTION_CHANGE
	adaptation_increase_threshold: float = ADAPTATION_INCREASE_THRESHOLD
	adaptation_decrease_threshold: float = ADAPTATION_DECREASE_THRESHOLD
	hysteresis_dead_zone: float = HYSTERESIS_DEAD_ZONE
	neutral_zone_signal_scale: float = NEUTRAL_ZONE_SIGNAL_SCALE

	enable_confidence_scaling: bool = ENABLE_CONFIDENCE_SCALING
	min_confidence_multiplier: float = MIN_CONFIDENCE_MULTIPLIER
	confidence_threshold_widening_factor: float = CONFIDENCE_THRESHOLD_WIDENING_FACTOR
	confidence_history_baseline: int = CONFIDENCE_HISTORY_BASELINE
	confidence_recency_half_life: float = CONFIDENCE_RECENCY_HALF_LIFE
	confidence_max_stable_rounds: int = CONFIDENCE_MAX_STABLE_ROUNDS

	enable_dom_profiling: bool = ENABLE_DOM_PROFILING
	dom_profile_max_samples: int = DOM_PROFILE_MAX_SAMPLES
	persist_dom_performance_profiles: bool = PERSIST_DOM_PERFORMANCE_PROFILES
	clear_past_session_data: bool = False
	state_directory: str = STATE_DIR_DEFAULT

	def __post_init__(self):
		if self.max_history_size < 1:
			raise ValueError("max_history_size must be at least 1")
		if self.dom_profile_max_samples < 1:
			raise ValueError("dom_profile_max_samples must be at least 1")
		if self.adaptation_decrease_threshold > self.adaptation_increase_threshold:
			raise ValueError("adaptation_decrease_threshold must not exceed adaptation_increase_threshold")
		if self.confidence_history_baseline < 1:
			raise ValueError("confidence_history_baseline must be at least 1")


DEFAULT_CONFIG = ADMConfig()
