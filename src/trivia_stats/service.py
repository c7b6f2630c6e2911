"""Entry points used by the request, gameplay and scheduling layers."""

from __future__ import annotations

from datetime import date
import logging
from pathlib import Path
from typing import Any

from trivia_stats.archival import ArchivalScheduler, ArchiveOutcome, EmergencyArchiver, Finalizer, SweepReport
from trivia_stats.config import TriviaStatsProfile
from trivia_stats.errors import TriviaStatsError
from trivia_stats.models import (
    Challenge,
    ChallengeStats,
    ProcessedDistribution,
    RawGuessEvent,
    RoundGuessDistribution,
    SubmissionResult,
    parse_challenge_date,
)
from trivia_stats.round_guesses import RoundGuessAggregator
from trivia_stats.score_stats import ScoreStatsAccumulator
from trivia_stats.storage import ColdStore, HotStore, build_cold_store


logger = logging.getLogger("trivia_stats.service")


class TriviaStatsService:
    def __init__(
        self,
        *,
        hot_store: HotStore,
        cold_store: ColdStore,
        archive_prefix: str = "round-guesses-archive",
        round_count: int = 5,
        max_score: int = 5000,
        curve_point_count: int = 15,
        default_age_days: int = 1,
        target_timezone: str = "America/New_York",
        emergency_completions_threshold: int | None = None,
        metrics_root: Path | None = None,
    ) -> None:
        self.hot_store = hot_store
        self.cold_store = cold_store
        self.emergency_completions_threshold = emergency_completions_threshold
        self.scores = ScoreStatsAccumulator(hot_store, max_score=max_score, point_count=curve_point_count)
        self.rounds = RoundGuessAggregator(hot_store, round_count=round_count)
        self.finalizer = Finalizer(
            hot_store=hot_store,
            cold_store=cold_store,
            aggregator=self.rounds,
            archive_prefix=archive_prefix,
        )
        self.scheduler = ArchivalScheduler(
            hot_store=hot_store,
            finalizer=self.finalizer,
            target_timezone=target_timezone,
            default_age_days=default_age_days,
            metrics_root=metrics_root,
        )
        self.emergency = EmergencyArchiver(hot_store=hot_store, finalizer=self.finalizer)

    @classmethod
    def from_profile(cls, profile: TriviaStatsProfile) -> "TriviaStatsService":
        return cls(
            hot_store=HotStore(locator=profile.hot_store_dsn),
            cold_store=build_cold_store(
                profile.cold_store_root,
                endpoint_url=profile.cold_store_endpoint,
                region=profile.cold_store_region,
            ),
            archive_prefix=profile.archive_prefix,
            round_count=profile.round_count,
            max_score=profile.max_score,
            curve_point_count=profile.curve_point_count,
            default_age_days=profile.process_challenges_older_than_days,
            target_timezone=profile.target_timezone,
            emergency_completions_threshold=profile.emergency_completions_threshold,
            metrics_root=Path(profile.metrics_root) if profile.metrics_root else None,
        )

    def schedule_challenge(self, date_value: Any, *, active: bool = True) -> Challenge:
        return self.hot_store.create_challenge(parse_challenge_date(date_value), active=active)

    def submit_score(self, date_value: Any, score: Any) -> SubmissionResult:
        result = self.scores.submit(date_value, score)
        threshold = self.emergency_completions_threshold
        if threshold is not None and result.completions >= threshold:
            self._maybe_archive_emergency(parse_challenge_date(date_value), result.completions)
        return result

    def get_distribution(
        self,
        date_value: Any,
        user_score: Any = None,
        point_count: Any = None,
    ) -> ProcessedDistribution:
        return self.scores.distribution(date_value, user_score=user_score, point_count=point_count)

    def rebuild_score_stats(self, date_value: Any, max_score: int | None = None) -> ChallengeStats:
        return self.scores.rebuild(date_value, max_score=max_score)

    def record_round_guess(self, date_value: Any, round_index: Any, guessed_year: Any) -> RawGuessEvent:
        return self.rounds.record_guess(date_value, round_index, guessed_year)

    def recompute_round_stats(self, date_value: Any) -> list[RoundGuessDistribution]:
        return self.rounds.recompute(date_value)

    def run_archival_sweep(self, age_threshold_days: int | None = None) -> SweepReport:
        return self.scheduler.run_sweep(age_threshold_days)

    def archive_emergency(self, date_value: Any, challenge_id: str) -> ArchiveOutcome | None:
        return self.emergency.archive(date_value, challenge_id)

    def _maybe_archive_emergency(self, challenge_date: date, completions: int) -> None:
        challenge = self.hot_store.get_challenge(challenge_date)
        if challenge is None or challenge.round_stats_finalized:
            return
        logger.warning(
            "Completions for %s reached %s (threshold %s); running emergency archival",
            challenge_date,
            completions,
            self.emergency_completions_threshold,
        )
        try:
            self.emergency.archive(challenge_date, challenge.challenge_id)
        except TriviaStatsError:
            logger.exception("Emergency archival for %s failed; deferred to next sweep", challenge_date)
