import pytest

from ADM_Bases.Confidence import ConfidenceEstimator, recency_weight
from ADM_Bases.Dimensions import DimensionVector, KPIVector
from ADM_Bases.History import PerformanceHistoryEntry
from adm_config import CONFIDENCE_RECENCY_HALF_LIFE, DEFAULT_CONFIG, ADMConfig

NOW = 1_000_000.0
DAY = 24 * 3600.0


def make_entry(score: float, age: float = 0.0):
	return PerformanceHistoryEntry(
		timestamp=NOW - age,
		overall_score=score,
		normalized_kpis=KPIVector(),
		arousal_level=0.5,
		dimension_values=DimensionVector(),
	)


def make_estimator(config=DEFAULT_CONFIG):
	return ConfidenceEstimator(config)


def test_empty_history_is_neutral():
	confidence = make_estimator().estimate((), 0, NOW)
	assert confidence.total == 0.5
	assert confidence.history == 0.0


def test_consistent_scores_give_high_confidence():
	entries = [make_entry(0.5), make_entry(0.51), make_entry(0.49)]
	confidence = make_estimator().estimate(entries, 5, NOW)
	assert confidence.variance > 0.95
	assert confidence.direction == pytest.approx(1.0)
	assert confidence.total > 0.7


def test_scattered_scores_give_low_confidence():
	entries = [make_entry(0.9), make_entry(0.1), make_entry(0.8)]
	confidence = make_estimator().estimate(entries, 0, NOW)
	assert confidence.variance < 0.4
	assert confidence.total < 0.4


def test_single_entry_has_little_history_weight():
	confidence = make_estimator().estimate([make_entry(0.7)], 0, NOW)
	assert confidence.history == pytest.approx(0.1)
	assert confidence.total < 0.5


def test_old_entries_count_for_less():
	assert recency_weight(DAY, CONFIDENCE_RECENCY_HALF_LIFE) == pytest.approx(0.5)
	assert recency_weight(0.0, CONFIDENCE_RECENCY_HALF_LIFE) == 1.0
	assert recency_weight(-50.0, CONFIDENCE_RECENCY_HALF_LIFE) == 1.0
	stale = make_estimator().estimate([make_entry(0.7, age=DAY)], 5, NOW)
	assert stale.history == pytest.approx(0.05)
	assert stale.direction == pytest.approx(0.5)


def test_direction_component_saturates():
	entries = [make_entry(0.6)]
	estimator = make_estimator()
	assert estimator.estimate(entries, 2, NOW).direction == pytest.approx(0.4)
	assert estimator.estimate(entries, 50, NOW).direction == pytest.approx(1.0)


def test_low_confidence_dampens_budget_and_widens_thresholds():
	estimator = make_estimator()
	neutral = estimator.estimate((), 0, NOW)
	assert estimator.multiplier(neutral) == pytest.approx(0.6)
	increase, decrease = estimator.thresholds(0.55, 0.45, neutral)
	assert increase == pytest.approx(0.575)
	assert decrease == pytest.approx(0.425)

	confident = estimator.estimate([make_entry(0.5)] * 10, 5, NOW)
	assert confident.total == pytest.approx(1.0)
	assert estimator.multiplier(confident) == pytest.approx(1.0)
	assert estimator.thresholds(0.55, 0.45, confident) == pytest.approx((0.55, 0.45))


def test_scaling_disabled_leaves_budget_and_thresholds_alone():
	estimator = make_estimator(ADMConfig(enable_confidence_scaling=False))
	low = estimator.estimate([make_entry(0.9), make_entry(0.1)], 0, NOW)
	assert estimator.multiplier(low) == 1.0
	assert estimator.thresholds(0.55, 0.45, low) == (0.55, 0.45)
