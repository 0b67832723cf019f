import numpy as np
import pytest
from pydantic import ValidationError

from andar_bahar.engine.history import HistoryAggregator
from andar_bahar.engine.simulation import run_round
from andar_bahar.errors import ConfigurationError, InvariantViolation
from andar_bahar.models import SchedulerConfig
from andar_bahar.services.scheduler import MultiRoundScheduler


class FakeTimer:
    """Stands in for IntervalTimer; tests fire it by hand."""

    def __init__(self, callback, interval_s):
        self.callback = callback
        self.interval_s = interval_s
        self.running = False
        self.cancelled = False

    def start(self):
        self.running = True

    def resume(self):
        self.running = True

    def pause(self):
        self.running = False

    def set_interval(self, interval_s):
        self.interval_s = interval_s

    def cancel(self):
        self.cancelled = True
        self.running = False

    def fire(self):
        self.callback()


def make_scheduler(**config):
    history = HistoryAggregator()
    scheduler = MultiRoundScheduler(
        history,
        SchedulerConfig(**config),
        rng=np.random.default_rng(17),
        timer_factory=FakeTimer,
    )
    return scheduler, history


def test_starts_with_initial_slots_and_empty_history():
    scheduler, history = make_scheduler()
    status = scheduler.status()
    assert status.slot_count == 4
    assert status.running is False
    assert status.interval_ms == 500
    assert len({s.id for s in status.slots}) == 4
    assert history.total_rounds() == 0


def test_tick_records_one_round_per_slot_and_keeps_ids():
    scheduler, history = make_scheduler(initial_slots=6)
    ids = [s.id for s in scheduler.slots()]
    results = scheduler.tick()
    scheduler.tick()
    assert len(results) == 6
    assert [s.id for s in scheduler.slots()] == ids
    assert history.total_rounds() == 12
    assert sum(e.total for e in history.card_tally().values()) == 12
    assert scheduler.status().ticks == 2


def test_slot_holds_latest_result():
    scheduler, _ = make_scheduler(initial_slots=3)
    results = scheduler.tick()
    assert [s.latest_result for s in scheduler.slots()] == results


def test_remove_at_minimum_is_noop():
    scheduler, _ = make_scheduler(initial_slots=1, min_slots=1)
    assert scheduler.can_remove() is False
    assert scheduler.remove_slot() is None
    assert scheduler.status().slot_count == 1
    with pytest.raises(ConfigurationError):
        scheduler.remove_slot(strict=True)


def test_add_at_maximum_is_noop():
    scheduler, _ = make_scheduler(initial_slots=2, max_slots=3)
    assert scheduler.add_slot() is not None
    assert scheduler.can_add() is False
    assert scheduler.add_slot() is None
    assert scheduler.status().slot_count == 3
    with pytest.raises(ConfigurationError):
        scheduler.add_slot(strict=True)


def test_remove_drops_most_recent_slot():
    scheduler, _ = make_scheduler()
    added = scheduler.add_slot()
    removed = scheduler.remove_slot()
    assert removed.id == added.id
    assert scheduler.status().slot_count == 4


def test_removed_slot_is_a_copy():
    scheduler, _ = make_scheduler()
    last = scheduler._slots[-1]
    removed = scheduler.remove_slot()
    assert removed is not last
    assert removed == last


def test_failed_tick_changes_nothing():
    history = HistoryAggregator()
    state = {"calls": 0, "fail": False}

    def flaky_round(rng):
        state["calls"] += 1
        # third round of the tick blows up after two have been simulated
        if state["fail"] and state["calls"] == 8:
            raise InvariantViolation("broken deck")
        return run_round(rng)

    scheduler = MultiRoundScheduler(
        history, SchedulerConfig(initial_slots=5), rng=np.random.default_rng(3),
        timer_factory=FakeTimer, round_fn=flaky_round,
    )
    before = scheduler.slots()
    state["fail"] = True
    with pytest.raises(InvariantViolation):
        scheduler.tick()
    assert scheduler.slots() == before
    assert history.total_rounds() == 0
    assert scheduler.status().ticks == 0


def test_timer_firings_only_tick_while_running():
    scheduler, history = make_scheduler()
    timer = scheduler._timer
    timer.fire()
    assert history.total_rounds() == 0

    scheduler.start()
    assert timer.running is True
    timer.fire()
    assert history.total_rounds() == 4

    scheduler.pause()
    assert timer.running is False
    timer.fire()
    assert history.total_rounds() == 4

    scheduler.resume()
    timer.fire()
    assert history.total_rounds() == 8


def test_pause_keeps_slots_and_tallies():
    scheduler, history = make_scheduler()
    scheduler.start()
    scheduler._timer.fire()
    slots = scheduler.slots()
    scheduler.pause()
    assert scheduler.slots() == slots
    assert history.total_rounds() == 4


def test_set_interval_bounds():
    scheduler, _ = make_scheduler()
    scheduler.set_interval(50)
    scheduler.set_interval(2000)
    assert scheduler.interval_ms == 2000
    assert scheduler._timer.interval_s == 2.0
    for bad in (49, 2001, 0, -10):
        with pytest.raises(ConfigurationError):
            scheduler.set_interval(bad)
    assert scheduler.interval_ms == 2000


def test_shutdown_cancels_timer():
    scheduler, _ = make_scheduler()
    scheduler.start()
    scheduler.shutdown()
    assert scheduler._timer.cancelled is True
    assert scheduler.running is False


@pytest.mark.parametrize(
    "config",
    [
        {"initial_slots": 0},
        {"initial_slots": 31},
        {"initial_slots": 2, "min_slots": 3},
        {"interval_ms": 10},
        {"interval_ms": 5000},
    ],
)
def test_invalid_config_rejected(config):
    with pytest.raises(ValidationError):
        SchedulerConfig(**config)
