import pytest

from ADM_Bases.Dimensions import DimensionVector, KPIVector
from ADM_Bases.History import AdaptiveScoreBlender, HistoryTracker, PerformanceHistoryEntry
from adm_config import CURRENT_PERFORMANCE_WEIGHT, HISTORY_INFLUENCE_WEIGHT, MINIMUM_HISTORY_FOR_TREND, TREND_INFLUENCE_WEIGHT


def make_entry(score: float, timestamp: float = 0.0):
	return PerformanceHistoryEntry(
		timestamp=timestamp,
		overall_score=score,
		normalized_kpis=KPIVector(),
		arousal_level=0.5,
		dimension_values=DimensionVector(),
	)


def make_tracker(scores, max_size: int = 20):
	return HistoryTracker(max_size, [make_entry(score, float(i)) for i, score in enumerate(scores)])


def make_blender():
	return AdaptiveScoreBlender(CURRENT_PERFORMANCE_WEIGHT, HISTORY_INFLUENCE_WEIGHT, TREND_INFLUENCE_WEIGHT, MINIMUM_HISTORY_FOR_TREND)


def test_empty_history_metrics_are_neutral():
	metrics = HistoryTracker(20).metrics()
	assert (metrics.average, metrics.trend, metrics.variance) == (0.5, 0.0, 0.0)


def test_single_entry_has_no_trend_or_variance():
	metrics = make_tracker([0.8]).metrics()
	assert metrics.average == 0.8
	assert metrics.trend == 0.0
	assert metrics.variance == 0.0


def test_oldest_entry_evicted_at_capacity():
	tracker = make_tracker([0.1, 0.2, 0.3, 0.4], max_size=3)
	assert len(tracker) == 3
	assert tracker.scores() == [0.2, 0.3, 0.4]


def test_timestamps_never_go_backwards():
	tracker = HistoryTracker(5)
	tracker.append(make_entry(0.5, timestamp=10.0))
	tracker.append(make_entry(0.6, timestamp=4.0))
	assert [entry.timestamp for entry in tracker.entries] == [10.0, 10.0]


def test_trend_is_least_squares_slope():
	assert make_tracker([0.2, 0.5, 0.8]).trend() == pytest.approx(0.3)
	assert make_tracker([0.8, 0.5, 0.2]).trend() == pytest.approx(-0.3)
	assert make_tracker([0.4, 0.4, 0.4, 0.4]).trend() == 0.0


def test_trend_damped_for_long_windows():
	scores = [i / 19.0 for i in range(20)]
	# Slope 1/19 per sample, divided by n / 10 = 2
	assert make_tracker(scores).trend() == pytest.approx(1.0 / 38.0)


def test_variance_is_population_variance():
	assert make_tracker([0.0, 1.0]).variance() == pytest.approx(0.25)


def test_blender_passes_through_short_history():
	blender = make_blender()
	assert blender.blend(0.7, make_tracker([0.1, 0.1])) == 0.7
	assert blender.blend(1.4, make_tracker([])) == 1.0


def test_blender_mixes_score_average_and_trend():
	blender = make_blender()
	expected = 0.9 * CURRENT_PERFORMANCE_WEIGHT + 0.5 * HISTORY_INFLUENCE_WEIGHT
	assert blender.blend(0.9, make_tracker([0.5, 0.5, 0.5])) == pytest.approx(expected)


def test_blender_output_stays_in_unit_interval():
	blender = make_blender()
	assert blender.blend(1.0, make_tracker([0.0, 0.5, 1.0])) <= 1.0
	assert blender.blend(0.0, make_tracker([1.0, 0.5, 0.0])) >= 0.0


def test_rejects_non_positive_capacity():
	with pytest.raises(ValueError):
		HistoryTracker(0)
