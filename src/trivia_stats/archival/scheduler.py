"""Periodic archival sweep over aged-out challenges."""

from __future__ import annotations

from datetime import date, datetime, timedelta
import logging
from pathlib import Path
from typing import Callable
from zoneinfo import ZoneInfo

from trivia_stats.errors import StaleStateError
from trivia_stats.storage.hot_store import HotStore

from .finalizer import ARCHIVE_KIND_DELTA, ARCHIVE_KIND_EMPTY, ArchiveOutcome, Finalizer
from .observability import SweepMetrics, SweepReport


logger = logging.getLogger("trivia_stats.archival.scheduler")


class ArchivalScheduler:
    def __init__(
        self,
        *,
        hot_store: HotStore,
        finalizer: Finalizer,
        target_timezone: str = "America/New_York",
        default_age_days: int = 1,
        metrics_root: Path | None = None,
        today: Callable[[], date] | None = None,
    ) -> None:
        self.hot_store = hot_store
        self.finalizer = finalizer
        self.target_timezone = target_timezone
        self.default_age_days = int(default_age_days)
        self.metrics_root = metrics_root
        self._today = today or self._local_today

    def cutoff_date(self, age_threshold_days: int) -> date:
        return self._today() - timedelta(days=int(age_threshold_days))

    def run_sweep(self, age_threshold_days: int | None = None) -> SweepReport:
        """Finalize or delta-archive every challenge dated before the cutoff.

        A failure on one challenge is logged and counted; the sweep moves on to
        the next one and the failed challenge is retried on the next run.
        """
        days = self.default_age_days if age_threshold_days is None else int(age_threshold_days)
        if days < 0:
            raise ValueError("age_threshold_days must be >= 0")
        cutoff = self.cutoff_date(days)
        metrics = SweepMetrics(source="sweep")
        challenges = self.hot_store.list_challenges_before(cutoff)
        logger.info("Archival sweep: %s challenge(s) dated before %s", len(challenges), cutoff)

        for challenge in challenges:
            metrics.bump("seen_total")
            day = challenge.challenge_date
            try:
                if challenge.round_stats_finalized:
                    outcome = self.finalizer.archive_late_events(day, source="sweep")
                else:
                    outcome = self.finalizer.finalize(day, source="sweep")
            except StaleStateError:
                metrics.bump("stale_total")
                logger.info("Archival sweep: %s finalized concurrently; delta pass deferred", day)
                continue
            except Exception:
                metrics.record_failure(day.isoformat())
                logger.exception("Archival sweep failed for %s (%s); will retry next sweep", day, challenge.state)
                continue
            _count(metrics, outcome, was_finalized=challenge.round_stats_finalized)

        report = metrics.snapshot()
        if self.metrics_root is not None:
            report.export(self.metrics_root)
        logger.info("Archival sweep complete: %s", report.counters)
        return report

    def _local_today(self) -> date:
        return datetime.now(tz=ZoneInfo(self.target_timezone)).date()


def _count(metrics: SweepMetrics, outcome: ArchiveOutcome, *, was_finalized: bool) -> None:
    if not was_finalized:
        metrics.bump("finalized_total")
    if outcome.kind == ARCHIVE_KIND_DELTA:
        metrics.bump("delta_archived_total")
    if outcome.kind != ARCHIVE_KIND_EMPTY:
        metrics.bump("events_archived_total", outcome.archived)
        metrics.bump("events_deleted_total", outcome.deleted)
