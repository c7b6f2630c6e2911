"""Long-running archival sweep worker."""

from __future__ import annotations

import logging
import time
from typing import Callable

from trivia_stats.errors import TransientStorageError

from .observability import SweepReport
from .scheduler import ArchivalScheduler


logger = logging.getLogger("trivia_stats.archival.worker")


class SweepWorker:
    def __init__(
        self,
        scheduler: ArchivalScheduler,
        *,
        poll_sleep_seconds: float,
        age_threshold_days: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.scheduler = scheduler
        self.poll_sleep_seconds = float(poll_sleep_seconds)
        self.age_threshold_days = age_threshold_days
        self._sleep = sleep

    def run_once(self) -> SweepReport | None:
        try:
            return self.scheduler.run_sweep(self.age_threshold_days)
        except TransientStorageError:
            logger.exception("Archival sweep aborted: hot store unavailable; retrying after sleep")
            return None

    def run_forever(self, *, max_cycles: int | None = None) -> None:
        cycles = 0
        while max_cycles is None or cycles < max_cycles:
            self.run_once()
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            self._sleep(self.poll_sleep_seconds)
