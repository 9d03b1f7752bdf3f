import itertools

import pytest

from ADM_Algo import AdaptiveDifficultyManager
from ADM_Bases.Dimensions import AdaptationDirection, DifficultyDimension, DimensionVector, KPIVector
from ADM_Bases.History import PerformanceHistoryEntry
from ADM_Bases.KPI import RoundOutcome
from ADM_Bases.Telemetry import NullTelemetry
from ADM_Persistence import StateStore
from adm_config import DEFAULT_CONFIG, REACTION_TIME_BEST, REACTION_TIME_WORST, ADMConfig


class RecordingTelemetry:
	def __init__(self):
		self.events = []

	def log_event(self, event, payload):
		self.events.append((event, payload))


def perfect_round():
	return RoundOutcome(task_success=True, find_ratio=1.0, reaction_time=REACTION_TIME_BEST, response_duration=1.0, tap_error=0.0, target_count=5)


def failed_round():
	return RoundOutcome(task_success=False, find_ratio=0.0, reaction_time=REACTION_TIME_WORST, response_duration=30.0, tap_error=400.0, target_count=5)


def make_manager(config=DEFAULT_CONFIG, **kwargs):
	kwargs.setdefault("telemetry", NullTelemetry())
	kwargs.setdefault("clock", itertools.count(1).__next__)
	return AdaptiveDifficultyManager(config=config, **kwargs)


def test_fresh_manager_starts_at_defaults():
	adm = make_manager()
	assert adm.normalized_positions == DimensionVector.filled(0.5)
	assert adm.last_adaptation_direction is AdaptationDirection.NONE
	assert adm.direction_stable_count == 0
	assert adm.arousal_level == DEFAULT_CONFIG.initial_arousal
	metrics = adm.get_performance_metrics()
	assert (metrics.average, metrics.trend, metrics.variance) == (0.5, 0.0, 0.0)


def test_strong_round_hardens_every_dimension():
	adm = make_manager(initial_arousal=0.5)
	before = adm.normalized_positions
	result = adm.record_round(perfect_round())
	assert result.round_score == pytest.approx(1.0)
	assert result.direction is AdaptationDirection.HARDEN
	assert adm.direction_stable_count == 1
	for dimension in DifficultyDimension:
		assert adm.normalized_positions.get(dimension) > before.get(dimension)
	assert adm.absolute_values.mean_speed > adm.range_mapper.absolute(DifficultyDimension.MEAN_SPEED, 0.5, 0.5)


def test_weak_round_eases():
	adm = make_manager(initial_arousal=0.5)
	result = adm.record_round(failed_round())
	assert result.round_score == 0.0
	assert result.direction is AdaptationDirection.EASE
	assert result.initial_budget < 0.0
	for position in adm.normalized_positions.values():
		assert position < 0.5


def test_direction_count_increments_and_resets():
	adm = make_manager()
	adm.record_round(perfect_round())
	adm.record_round(perfect_round())
	assert adm.last_adaptation_direction is AdaptationDirection.HARDEN
	assert adm.direction_stable_count == 2
	adm.record_round(failed_round())
	assert adm.last_adaptation_direction is AdaptationDirection.EASE
	assert adm.direction_stable_count == 1


def test_dimension_without_range_is_left_alone():
	adm = make_manager(initial_arousal=1.0)
	adm.record_round(perfect_round())
	assert adm.normalized_positions.target_count == 0.5
	assert adm.absolute_value(DifficultyDimension.TARGET_COUNT) == 1
	assert adm.normalized_positions.discriminatory_load > 0.5


def test_history_records_values_in_effect_during_the_round():
	adm = make_manager()
	played_with = adm.absolute_values
	adm.record_round(perfect_round())
	entry = adm.history[0]
	assert entry.dimension_values == played_with
	assert entry.overall_score == pytest.approx(1.0)
	assert entry.arousal_level == adm.arousal_level
	assert adm.absolute_values != played_with


def test_history_disabled_skips_recording_and_blending():
	adm = make_manager(ADMConfig(use_performance_history=False))
	for _ in range(4):
		adm.record_round(perfect_round())
	assert adm.history == ()
	assert adm.calculate_adaptive_score(0.7) == 0.7


def test_adaptive_score_blends_once_history_is_long_enough():
	adm = make_manager()
	assert adm.calculate_adaptive_score(0.8) == 0.8
	for _ in range(3):
		adm.record_round(perfect_round())
	# Average 1.0 and flat trend pull the blended score above the raw score
	assert adm.calculate_adaptive_score(0.8) == pytest.approx(0.8 * 0.85 + 0.15)


def test_hysteresis_holds_direction_before_reversal():
	adm = make_manager(ADMConfig(enable_hysteresis=True, min_stable_rounds_before_direction_change=2))
	adm.record_round(perfect_round())
	held_positions = adm.normalized_positions

	held = adm.record_round(failed_round())
	assert held.initial_budget == 0.0
	assert held.direction is AdaptationDirection.NONE
	assert adm.last_adaptation_direction is AdaptationDirection.NONE
	assert adm.normalized_positions == held_positions

	reversed_round = adm.record_round(failed_round())
	assert reversed_round.direction is AdaptationDirection.EASE
	assert adm.direction_stable_count == 1


def test_reversal_is_immediate_without_hysteresis():
	adm = make_manager()
	adm.record_round(perfect_round())
	result = adm.record_round(failed_round())
	assert result.direction is AdaptationDirection.EASE


def test_update_arousal_clamps_and_regates_values():
	adm = make_manager(initial_arousal=0.2)
	low_speed = adm.absolute_value(DifficultyDimension.MEAN_SPEED)
	adm.update_arousal(1.7)
	assert adm.arousal_level == 1.0
	assert adm.absolute_value(DifficultyDimension.MEAN_SPEED) > low_speed
	adm.update_arousal(float("nan"))
	assert adm.arousal_level == 0.0


def test_record_round_rejects_non_outcome():
	adm = make_manager()
	with pytest.raises(TypeError):
		adm.record_round({"task_success": True})


def test_profiles_collect_one_sample_per_round():
	adm = make_manager()
	adm.record_round(perfect_round())
	adm.record_round(failed_round())
	for _, profile in adm.performance_profiles.items():
		assert len(profile.samples) == 2
	assert adm.performance_profiles.mean_speed.samples[0].performance == pytest.approx(1.0)


def test_round_emits_telemetry():
	telemetry = RecordingTelemetry()
	adm = make_manager(telemetry=telemetry)
	adm.record_round(perfect_round())
	events = [event for event, _ in telemetry.events]
	assert "adm_round" in events
	payload = dict(telemetry.events)["adm_round"]
	assert payload["direction"] == "harden"
	assert set(payload["absolute_values"]) == {d.value for d in DifficultyDimension}


def test_reset_restores_defaults():
	adm = make_manager()
	adm.record_round(perfect_round())
	adm.reset()
	assert adm.history == ()
	assert adm.normalized_positions == DimensionVector.filled(0.5)
	assert adm.last_adaptation_direction is AdaptationDirection.NONE


def test_state_survives_save_and_reload(tmp_path):
	store = StateStore(tmp_path)
	adm = make_manager(user_id="player1", store=store)
	adm.record_round(perfect_round())
	adm.record_round(failed_round())
	assert adm.save_state() is True

	restored = make_manager(user_id="player1", store=store)
	assert restored.normalized_positions == adm.normalized_positions
	assert restored.history == adm.history
	assert restored.last_adaptation_direction is AdaptationDirection.EASE
	assert restored.direction_stable_count == 1
	assert restored.performance_profiles == adm.performance_profiles


def test_clear_past_session_data_discards_stored_state(tmp_path):
	store = StateStore(tmp_path)
	adm = make_manager(user_id="player2", store=store)
	adm.record_round(perfect_round())
	adm.save_state()

	fresh = make_manager(ADMConfig(clear_past_session_data=True), user_id="player2", store=store)
	assert fresh.history == ()
	assert not store.path_for("player2").exists()


def test_save_without_store_is_a_no_op():
	adm = make_manager()
	assert adm.save_state() is False
	assert adm.load_state() is False


def make_two_kpi_config(**overrides):
	weights = KPIVector(task_success=0.5, find_ratio=0.5)
	return ADMConfig(kpi_weights_low_mid=weights, kpi_weights_high=weights, use_performance_history=False, **overrides)


def neutral_round():
	return RoundOutcome(task_success=True, find_ratio=0.0, reaction_time=REACTION_TIME_WORST, response_duration=30.0, tap_error=400.0, target_count=5)


def test_reversal_stays_gated_across_a_neutral_round():
	adm = make_manager(make_two_kpi_config(enable_hysteresis=True, min_stable_rounds_before_direction_change=2))
	assert adm.record_round(perfect_round()).direction is AdaptationDirection.HARDEN

	neutral = adm.record_round(neutral_round())
	assert neutral.round_score == pytest.approx(0.5)
	assert neutral.direction is AdaptationDirection.NONE
	after_neutral = adm.normalized_positions

	gated = adm.record_round(failed_round())
	assert gated.initial_budget == 0.0
	assert gated.direction is AdaptationDirection.NONE
	assert adm.normalized_positions == after_neutral

	assert adm.record_round(failed_round()).direction is AdaptationDirection.EASE


def test_neutral_rounds_count_as_a_repeated_direction():
	adm = make_manager(make_two_kpi_config(enable_hysteresis=True))
	adm.record_round(perfect_round())
	adm.record_round(neutral_round())
	adm.record_round(neutral_round())
	assert adm.last_adaptation_direction is AdaptationDirection.NONE
	assert adm.direction_stable_count == 2


def test_restored_direction_keeps_gating_reversals(tmp_path):
	store = StateStore(tmp_path)
	config = ADMConfig(enable_hysteresis=True, min_stable_rounds_before_direction_change=3)
	adm = make_manager(config, user_id="gated", store=store)
	adm.record_round(perfect_round())
	adm.save_state()

	restored = make_manager(config, user_id="gated", store=store)
	assert restored.record_round(failed_round()).initial_budget == 0.0


def test_hysteresis_damps_scores_inside_the_thresholds():
	mild = RoundOutcome(task_success=True, find_ratio=0.1, reaction_time=REACTION_TIME_WORST, response_duration=30.0, tap_error=400.0, target_count=5)
	plain = make_manager(make_two_kpi_config()).record_round(mild)
	damped = make_manager(make_two_kpi_config(enable_hysteresis=True)).record_round(mild)
	# Empty history gives confidence 0.5, a 0.6 budget multiplier
	assert plain.initial_budget == pytest.approx(0.1 * 1.5 * 0.6)
	assert damped.initial_budget == pytest.approx(0.05 * 1.5 * 0.6)


def test_low_confidence_shrinks_the_first_budget():
	scaled = make_manager().record_round(perfect_round())
	# One fresh entry: variance 1.0, direction 0.0, history 0.1
	assert scaled.confidence.total == pytest.approx(0.43)
	assert scaled.confidence_multiplier == pytest.approx(0.2 + 0.8 * 0.43)
	assert scaled.initial_budget == pytest.approx(1.5 * (0.2 + 0.8 * 0.43))

	unscaled = make_manager(ADMConfig(enable_confidence_scaling=False)).record_round(perfect_round())
	assert unscaled.confidence_multiplier == 1.0
	assert unscaled.initial_budget == 1.5


def test_confidence_starts_neutral_and_grows_with_consistent_rounds():
	adm = make_manager()
	assert adm.calculate_adaptation_confidence().total == 0.5
	for _ in range(6):
		adm.record_round(perfect_round())
	assert adm.calculate_adaptation_confidence().total > 0.8


def test_round_reports_per_dimension_performance_slopes():
	telemetry = RecordingTelemetry()
	adm = make_manager(initial_arousal=0.5, telemetry=telemetry)
	first = adm.record_round(perfect_round())
	assert first.performance_slopes == DimensionVector()

	second = adm.record_round(failed_round())
	for dimension in DifficultyDimension:
		assert second.performance_slopes.get(dimension) < 0.0
	assert second.performance_slopes == adm.performance_slopes()
	payload = telemetry.events[-1][1]
	assert set(payload["performance_slopes"]) == {d.value for d in DifficultyDimension}
	assert payload["confidence"] == round(second.confidence.total, 4)


def test_added_history_entries_feed_the_blend():
	adm = make_manager(ADMConfig(max_history_size=3))
	for i in range(4):
		adm.add_performance_entry(
			PerformanceHistoryEntry(
				timestamp=float(i),
				overall_score=1.0,
				normalized_kpis=KPIVector(),
				arousal_level=0.5,
				dimension_values=DimensionVector(),
			)
		)
	assert len(adm.history) == 3
	assert adm.get_performance_metrics().average == 1.0
	assert adm.calculate_adaptive_score(0.8) == pytest.approx(0.8 * 0.85 + 0.15)
