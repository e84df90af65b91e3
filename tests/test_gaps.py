from datetime import timedelta

import pytest

from helpers import T0
from lifestream.data_source import FatalError, Miss, NewData, UnchangedData
from lifestream.errors import FatalSourceError, TransientFetchError
from lifestream.gaps import GapReconciler, GapWindow

CADENCE = timedelta(minutes=10)


@pytest.fixture
def reconciler(clock):
    return GapReconciler(cadence=CADENCE, lookback=timedelta(minutes=60), attempt_cap=3, clock=clock)


@pytest.fixture
def instants(reconciler):
    return list(reconciler.window(T0).instants())


def test_window_instants_are_inclusive_and_aligned(clock):
    window = GapWindow.trailing(T0 + timedelta(minutes=7), timedelta(minutes=60), CADENCE)
    assert window.window_end == T0
    assert window.window_start == T0 - timedelta(minutes=60)
    got = list(window.instants())
    assert len(got) == 7
    assert got[0] == window.window_start and got[-1] == window.window_end
    assert T0 - timedelta(minutes=30) in window
    assert T0 + timedelta(minutes=10) not in window


def test_missing_returns_exactly_the_gaps(reconciler, instants):
    held = set(instants) - {instants[3], instants[4]}
    assert reconciler.missing(reconciler.window(T0), held.__contains__) == [instants[3], instants[4]]


def test_instant_given_up_after_attempt_cap(reconciler, instants):
    held = set(instants) - {instants[3], instants[4]}

    def backfill(instant):
        if instant == instants[3]:
            return Miss("not published")
        held.add(instant)
        return NewData({}, instant)

    first = reconciler.reconcile(backfill, held.__contains__, end=T0)
    assert (first.attempted, first.filled, first.absent) == (2, 1, 1)
    assert reconciler.missing(reconciler.window(T0), held.__contains__) == [instants[3]]

    for _ in range(2):
        reconciler.reconcile(backfill, held.__contains__, end=T0)
    assert reconciler.is_unavailable(instants[3])
    assert reconciler.missing(reconciler.window(T0), held.__contains__) == []

    last = reconciler.reconcile(backfill, held.__contains__, end=T0)
    assert last.attempted == 0


def test_transient_failures_are_not_counted_as_absence(reconciler, instants):
    def backfill(instant):
        raise TransientFetchError("rate limited")

    for _ in range(5):
        report = reconciler.reconcile(backfill, lambda i: i != instants[2], end=T0)
        assert report.failed == 1
        assert report.absent == 0
    assert not reconciler.is_unavailable(instants[2])


def test_unchanged_data_fills_the_gap(reconciler, instants):
    report = reconciler.reconcile(
        lambda i: UnchangedData(i), lambda i: i != instants[0], end=T0
    )
    assert report.filled == 1


def test_requests_per_pass_are_capped(clock):
    reconciler = GapReconciler(CADENCE, timedelta(hours=24), max_per_pass=5, clock=clock)
    calls = []

    def backfill(instant):
        calls.append(instant)
        return NewData({}, instant)

    report = reconciler.reconcile(backfill, lambda i: False, end=T0)
    assert report.attempted == 5
    assert calls == sorted(calls)
    assert calls[0] == T0 - timedelta(hours=24)


def test_fatal_outcome_raises(reconciler):
    with pytest.raises(FatalSourceError):
        reconciler.reconcile(lambda i: FatalError("bad key"), lambda i: False, end=T0)


def test_fatal_exception_propagates(reconciler):
    def backfill(instant):
        raise FatalSourceError("forbidden")

    with pytest.raises(FatalSourceError):
        reconciler.reconcile(backfill, lambda i: False, end=T0)


def test_pass_stops_when_asked(reconciler):
    calls = []
    pauses = []

    def backfill(instant):
        calls.append(instant)
        return NewData({}, instant)

    report = reconciler.reconcile(
        backfill, lambda i: False, end=T0,
        should_stop=lambda: len(calls) >= 2,
        pause=lambda: pauses.append(1),
    )
    assert report.aborted
    assert report.attempted == 2
    assert len(pauses) == 1


def test_pause_runs_between_requests(reconciler):
    pauses = []
    report = reconciler.reconcile(
        lambda i: NewData({}, i), lambda i: False, end=T0, pause=lambda: pauses.append(1)
    )
    assert report.attempted == 7
    assert len(pauses) == 6


def test_bookkeeping_is_pruned_to_the_window(reconciler, instants):
    for _ in range(3):
        reconciler.record_absent(instants[0])
    assert reconciler.unavailable == [instants[0]]

    reconciler.reconcile(lambda i: NewData({}, i), lambda i: True, end=T0 + timedelta(hours=2))
    assert reconciler.unavailable == []


def test_filled_instant_is_no_longer_unavailable(reconciler, instants):
    for _ in range(3):
        reconciler.record_absent(instants[1])
    reconciler.record_filled(instants[1])
    assert not reconciler.is_unavailable(instants[1])


def test_window_defaults_to_clock(reconciler, clock):
    clock.advance(minutes=25)
    assert reconciler.window().window_end == T0 + timedelta(minutes=20)


def test_rejects_non_positive_cadence():
    with pytest.raises(ValueError):
        GapReconciler(timedelta(0), timedelta(hours=1))
