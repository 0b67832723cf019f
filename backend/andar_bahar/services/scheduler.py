import logging
import threading
import uuid
from typing import Callable, List, Optional

import numpy as np

from andar_bahar.engine.cards import pretty
from andar_bahar.engine.history import HistoryAggregator
from andar_bahar.engine.simulation import run_round
from andar_bahar.errors import ConfigurationError
from andar_bahar.logging_utils import get_logger
from andar_bahar.models import RoundResult, RoundSlot, SchedulerConfig, SchedulerStatus
from andar_bahar.services.timer import IntervalTimer

logger = get_logger(__name__)

RoundFn = Callable[[np.random.Generator], RoundResult]
TimerFactory = Callable[[Callable[[], None], float], IntervalTimer]


class MultiRoundScheduler:
    """
    A pool of round slots re-simulated together on every tick.

    All pool and tally mutation happens under one lock, so a tick either
    lands completely or not at all and never overlaps another tick.
    """

    def __init__(
        self,
        aggregator: HistoryAggregator,
        config: Optional[SchedulerConfig] = None,
        rng: Optional[np.random.Generator] = None,
        timer_factory: TimerFactory = IntervalTimer,
        round_fn: RoundFn = run_round,
    ) -> None:
        self.config = config or SchedulerConfig()
        self._aggregator = aggregator
        self._rng = rng if rng is not None else np.random.default_rng(self.config.seed)
        self._round_fn = round_fn
        self._lock = threading.RLock()
        self._interval_ms = self.config.interval_ms
        self._running = False
        self._ticks = 0
        self._slots: List[RoundSlot] = [self._new_slot() for _ in range(self.config.initial_slots)]
        self._timer = timer_factory(self._on_timer, self._interval_ms / 1000)

    def _new_slot(self) -> RoundSlot:
        return RoundSlot(id=str(uuid.uuid4()), latest_result=self._round_fn(self._rng))

    def can_add(self) -> bool:
        with self._lock:
            return len(self._slots) < self.config.max_slots

    def can_remove(self) -> bool:
        with self._lock:
            return len(self._slots) > self.config.min_slots

    def add_slot(self, strict: bool = False) -> Optional[RoundSlot]:
        with self._lock:
            if not self.can_add():
                if strict:
                    raise ConfigurationError(f"Pool already holds the maximum of {self.config.max_slots} slots")
                logger.warning("add_slot ignored: pool at maximum (%d)", self.config.max_slots)
                return None
            slot = self._new_slot()
            self._slots.append(slot)
            logger.info("Added slot %s (%d running)", slot.id, len(self._slots))
            return slot.model_copy(deep=True)

    def remove_slot(self, strict: bool = False) -> Optional[RoundSlot]:
        with self._lock:
            if not self.can_remove():
                if strict:
                    raise ConfigurationError(f"Pool already at the minimum of {self.config.min_slots} slots")
                logger.warning("remove_slot ignored: pool at minimum (%d)", self.config.min_slots)
                return None
            slot = self._slots.pop()
            logger.info("Removed slot %s (%d running)", slot.id, len(self._slots))
            return slot.model_copy(deep=True)

    def tick(self) -> List[RoundResult]:
        with self._lock:
            # Simulate everything first; a failure leaves slots and tallies untouched.
            results = [self._round_fn(self._rng) for _ in self._slots]
            for slot, result in zip(self._slots, results):
                slot.latest_result = result
            self._aggregator.record_many(results)
            self._ticks += 1
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(
                    "Tick %d: %s",
                    self._ticks,
                    ", ".join(f"{pretty(r.marker)}->{r.winner.value}" for r in results),
                )
            return results

    def _on_timer(self) -> None:
        with self._lock:
            if not self._running:
                return
            self.tick()

    def set_interval(self, interval_ms: int) -> None:
        low, high = self.config.min_interval_ms, self.config.max_interval_ms
        if not low <= interval_ms <= high:
            raise ConfigurationError(f"interval_ms must be between {low} and {high}, got {interval_ms}")
        with self._lock:
            self._interval_ms = interval_ms
            self._timer.set_interval(interval_ms / 1000)
        logger.info("Tick interval set to %d ms", interval_ms)

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._timer.start()
        logger.info("Scheduler running every %d ms with %d slots", self._interval_ms, len(self._slots))

    def resume(self) -> None:
        self.start()

    def pause(self) -> None:
        # Holding the lock waits out any tick in flight.
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._timer.pause()
        logger.info("Scheduler paused after %d ticks", self._ticks)

    def shutdown(self) -> None:
        with self._lock:
            self._running = False
        self._timer.cancel()

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def interval_ms(self) -> int:
        with self._lock:
            return self._interval_ms

    def slots(self) -> List[RoundSlot]:
        with self._lock:
            return [slot.model_copy(deep=True) for slot in self._slots]

    def status(self) -> SchedulerStatus:
        with self._lock:
            slots = self.slots()
            return SchedulerStatus(
                running=self._running,
                interval_ms=self._interval_ms,
                slots=slots,
                slot_count=len(slots),
                min_slots=self.config.min_slots,
                max_slots=self.config.max_slots,
                can_add=self.can_add(),
                can_remove=self.can_remove(),
                ticks=self._ticks,
            )
