import random
from datetime import timedelta

import pytest

from helpers import T0
from lifestream.intervals import SLACK_FLOOR, IntervalPredictor, PredictorMode


def minutes(n):
    return timedelta(minutes=n)


@pytest.fixture
def predictor(clock):
    return IntervalPredictor(
        base_interval=minutes(6),
        initial_slack=timedelta(seconds=30),
        minimum_interval=minutes(4),
        maximum_interval=minutes(12),
        retry_interval=timedelta(seconds=90),
        max_retries=3,
        clock=clock,
    )


@pytest.mark.parametrize("spacing", [minutes(4), minutes(6), minutes(10), minutes(24)])
def test_average_converges_to_spacing(predictor, spacing):
    for i in range(4):
        predictor.record_success(T0 + spacing * i)
    assert len(predictor.samples) == 3
    assert predictor.average_observed_interval == spacing

    for i in range(4, 15):
        predictor.record_success(T0 + spacing * i)
    assert len(predictor.samples) == predictor.max_observations
    assert predictor.average_observed_interval == spacing


def test_average_is_base_interval_without_samples(predictor):
    assert predictor.average_observed_interval == minutes(6)
    predictor.record_success(T0)
    assert predictor.average_observed_interval == minutes(6)


@pytest.mark.parametrize("spacing", [minutes(1), minutes(25), timedelta(hours=3)])
def test_implausible_intervals_are_not_sampled(predictor, spacing):
    predictor.record_success(T0)
    predictor.record_success(T0 + spacing)
    assert predictor.samples == ()
    assert predictor.last_data_timestamp == T0 + spacing


def test_outlier_ceiling_is_configurable(clock):
    predictor = IntervalPredictor(
        base_interval=minutes(6),
        initial_slack=timedelta(seconds=30),
        minimum_interval=minutes(4),
        maximum_interval=minutes(12),
        retry_interval=timedelta(seconds=90),
        outlier_factor=3.0,
        clock=clock,
    )
    predictor.record_success(T0)
    predictor.record_success(T0 + minutes(30))
    assert predictor.samples == (minutes(30),)


def test_sample_set_is_bounded_fifo(clock):
    predictor = IntervalPredictor(
        base_interval=minutes(6),
        initial_slack=timedelta(seconds=30),
        minimum_interval=minutes(4),
        maximum_interval=minutes(12),
        retry_interval=timedelta(seconds=90),
        max_observations=3,
        clock=clock,
    )
    for offset in (0, 5, 10, 15, 25):
        predictor.record_success(T0 + minutes(offset))
    assert predictor.samples == (minutes(5), minutes(5), minutes(10))


def test_next_check_is_clamped_whatever_the_history(predictor):
    rng = random.Random(1234)
    last = T0
    for _ in range(500):
        op = rng.random()
        if op < 0.45:
            last = last + timedelta(seconds=rng.uniform(-600, 3600))
            predictor.record_success(last)
        elif op < 0.9:
            predictor.record_miss()
        elif op < 0.95:
            predictor.seed(last + timedelta(seconds=rng.uniform(-600, 600)))
        else:
            predictor.reset()

        now = T0 + timedelta(seconds=rng.uniform(-3600, 7200 * 10))
        nxt = predictor.next_check_time(now)
        if predictor.mode is PredictorMode.RETRYING:
            assert nxt == now + predictor.retry_interval
        else:
            assert now + predictor.minimum_interval <= nxt <= now + predictor.maximum_interval


def test_no_data_yet_polls_at_minimum_interval(predictor):
    assert predictor.next_check_time(T0) == T0 + minutes(4)


def test_uses_base_interval_until_three_samples(predictor):
    predictor.record_success(T0)
    predictor.record_success(T0 + minutes(8))
    predictor.record_success(T0 + minutes(16))
    # two samples: base interval plus initial slack
    last = T0 + minutes(16)
    assert predictor.next_check_time(last) == last + minutes(6) + timedelta(seconds=30)

    predictor.record_success(T0 + minutes(24))
    last = T0 + minutes(24)
    # three equal samples: mean interval, slack collapses to its floor
    assert predictor.current_slack == SLACK_FLOOR
    assert predictor.next_check_time(last) == last + minutes(8) + SLACK_FLOOR


def test_retry_mode_returns_exact_retry_interval(predictor):
    predictor.record_success(T0)
    predictor.record_miss()
    now = T0 + minutes(7)
    assert predictor.mode is PredictorMode.RETRYING
    assert predictor.next_check_time(now) == now + timedelta(seconds=90)
    # actual sleeping never goes below the minimum interval
    assert predictor.delay_until_next_check(now) == minutes(4)


def test_slack_unchanged_before_retry_budget_is_spent(predictor):
    predictor.record_miss()
    predictor.record_miss()
    assert predictor.current_slack == timedelta(seconds=30)
    assert predictor.should_retry


def test_slack_grows_once_retry_budget_is_spent(predictor):
    for _ in range(3):
        predictor.record_miss()
    assert predictor.current_slack == timedelta(seconds=36)
    assert predictor.mode is PredictorMode.NORMAL
    assert not predictor.should_retry


def test_slack_growth_is_capped_at_half_maximum(clock):
    predictor = IntervalPredictor(
        base_interval=minutes(6),
        initial_slack=timedelta(seconds=330),
        minimum_interval=minutes(4),
        maximum_interval=minutes(12),
        retry_interval=timedelta(seconds=90),
        max_retries=1,
        clock=clock,
    )
    predictor.record_miss()
    assert predictor.current_slack == minutes(6)
    predictor.record_miss()
    assert predictor.current_slack == minutes(6)


def test_stale_timestamp_adds_no_sample_but_clears_misses(predictor):
    predictor.record_success(T0)
    predictor.record_success(T0 + minutes(6))
    predictor.record_miss()
    assert predictor.consecutive_misses == 1

    predictor.record_success(T0 + minutes(3))
    assert predictor.samples == (minutes(6),)
    assert predictor.last_data_timestamp == T0 + minutes(3)
    assert predictor.consecutive_misses == 0
    assert predictor.mode is PredictorMode.NORMAL

    predictor.record_success(T0 + minutes(3))
    assert predictor.samples == (minutes(6),)


def test_should_retry_iff_misses_below_budget(predictor):
    assert not predictor.should_retry
    for misses in range(1, 7):
        predictor.record_miss()
        assert predictor.consecutive_misses == misses
        assert predictor.should_retry == (0 < misses < predictor.max_retries)
    predictor.record_success(T0)
    assert not predictor.should_retry


def test_six_minute_radar_scenario(predictor):
    predictor.seed(T0)
    for _ in range(3):
        predictor.record_miss()
    assert predictor.current_slack == timedelta(seconds=36)

    predictor.record_success(T0 + timedelta(minutes=6, seconds=5))
    assert predictor.consecutive_misses == 0
    assert predictor.samples == (timedelta(minutes=6, seconds=5),)


def test_seed_only_moves_forward(predictor):
    predictor.seed(T0)
    predictor.seed(T0 - minutes(10))
    assert predictor.last_data_timestamp == T0
    predictor.seed(T0 + minutes(6))
    assert predictor.last_data_timestamp == T0 + minutes(6)
    assert predictor.samples == ()


def test_reset_forgets_history_but_keeps_slack(predictor):
    for i in range(3):
        predictor.record_miss()
    predictor.record_success(T0)
    predictor.record_success(T0 + minutes(6))
    slack = predictor.current_slack

    predictor.reset()
    assert predictor.samples == ()
    assert predictor.last_data_timestamp is None
    assert predictor.consecutive_misses == 0
    assert predictor.current_slack == slack


def test_success_records_check_time(predictor, clock):
    clock.advance(minutes=3)
    predictor.record_success(T0)
    assert predictor.last_check_time == clock.now
    snap = predictor.snapshot()
    assert snap.last_data_timestamp == T0
    assert snap.sample_count == 0
