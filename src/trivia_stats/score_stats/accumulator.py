"""Online score histogram + derived stats for daily challenge submissions."""

from __future__ import annotations

import logging
import math
from typing import Any, Mapping

from trivia_stats.errors import NotFoundError, ValidationError
from trivia_stats.models import ChallengeStats, ProcessedDistribution, SubmissionResult, parse_challenge_date
from trivia_stats.storage.hot_store import HotStore

from .curve import (
    DEFAULT_POINT_COUNT,
    DOMAIN_MAX_SCORE,
    MAX_POINT_COUNT,
    MIN_POINT_COUNT,
    synthesize,
)


logger = logging.getLogger("trivia_stats.score_stats.accumulator")


class ScoreStatsAccumulator:
    """Applies submissions to the hot store and refreshes the derived cache.

    Only the counters (``completions`` and the per-score buckets) are
    correctness-critical and they are updated atomically by the store. The
    average and processed distribution are recomputed afterwards without a
    lock, so under concurrent submissions the cached view reflects whichever
    recompute wrote last.
    """

    def __init__(
        self,
        hot_store: HotStore,
        *,
        max_score: int = DOMAIN_MAX_SCORE,
        point_count: int = DEFAULT_POINT_COUNT,
    ) -> None:
        self.hot_store = hot_store
        self.max_score = int(max_score)
        self.point_count = int(point_count)

    def submit(self, date_value: Any, raw_score: Any) -> SubmissionResult:
        challenge_date = parse_challenge_date(date_value)
        score = validate_score(raw_score, max_score=self.max_score)

        if not self.hot_store.record_score(challenge_date, score):
            logger.warning("Score submission for %s rejected: no active challenge", challenge_date)
            raise NotFoundError(f"no active challenge for {challenge_date.isoformat()}")

        completions, histogram = self.hot_store.read_score_state(challenge_date)
        average_score = _average(histogram, completions)
        processed = synthesize(
            histogram,
            user_score=score,
            point_count=self.point_count,
            domain_max=self.max_score,
        )
        self.hot_store.write_score_cache(challenge_date, average_score=average_score, processed=processed)
        logger.info(
            "Score %s recorded for %s completions=%s average=%.2f",
            score,
            challenge_date,
            completions,
            average_score,
        )
        return SubmissionResult(
            average_score=average_score,
            completions=completions,
            processed_distribution=processed,
        )

    def distribution(
        self,
        date_value: Any,
        *,
        user_score: Any = None,
        point_count: Any = None,
    ) -> ProcessedDistribution:
        challenge_date = parse_challenge_date(date_value)
        score = validate_score(user_score, max_score=self.max_score) if user_score is not None else None
        points = _validate_point_count(point_count) if point_count is not None else self.point_count
        challenge = self.hot_store.get_challenge(challenge_date)
        if challenge is None or not challenge.active:
            raise NotFoundError(f"no active challenge for {challenge_date.isoformat()}")
        return synthesize(
            challenge.stats.histogram(),
            user_score=score,
            point_count=points,
            domain_max=self.max_score,
        )

    def rebuild(self, date_value: Any, *, max_score: int | None = None) -> ChallengeStats:
        """Drop buckets above ``max_score`` and recompute every derived field.

        Completions are re-derived from the surviving buckets.
        """
        challenge_date = parse_challenge_date(date_value)
        ceiling = self.max_score if max_score is None else int(max_score)
        if self.hot_store.get_challenge(challenge_date) is None:
            raise NotFoundError(f"no challenge for {challenge_date.isoformat()}")
        purged = self.hot_store.purge_scores_above(challenge_date, ceiling)
        _, histogram = self.hot_store.read_score_state(challenge_date)
        completions = sum(histogram.values())
        average_score = _average(histogram, completions)
        processed = synthesize(histogram, point_count=self.point_count, domain_max=self.max_score)
        self.hot_store.write_score_cache(
            challenge_date,
            average_score=average_score,
            processed=processed,
            completions=completions,
        )
        logger.info(
            "Rebuilt score stats for %s purged_buckets=%s completions=%s",
            challenge_date,
            purged,
            completions,
        )
        refreshed = self.hot_store.get_challenge(challenge_date)
        assert refreshed is not None
        return refreshed.stats


def validate_score(value: Any, *, max_score: int = DOMAIN_MAX_SCORE) -> int:
    """Return ``value`` as an int score in ``[0, max_score]`` or raise ValidationError.

    Scores are whole points because histogram buckets are keyed by integer
    score; fractional values such as 250.5 are rejected, never rounded.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"invalid score: {value!r}")
    if isinstance(value, int):
        numeric: float = float(value)
    elif isinstance(value, float):
        numeric = value
    elif isinstance(value, str):
        try:
            numeric = float(value.strip())
        except ValueError as exc:
            raise ValidationError(f"invalid score: {value!r}") from exc
    else:
        raise ValidationError(f"invalid score: {value!r}")
    if not math.isfinite(numeric) or not numeric.is_integer():
        raise ValidationError(f"invalid score: {value!r}")
    if numeric < 0 or numeric > max_score:
        raise ValidationError(f"score must be between 0 and {max_score}, got {value!r}")
    return int(numeric)


def _validate_point_count(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"invalid point count: {value!r}")
    try:
        count = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"invalid point count: {value!r}") from exc
    if count < MIN_POINT_COUNT or count > MAX_POINT_COUNT:
        raise ValidationError(f"point count must be between {MIN_POINT_COUNT} and {MAX_POINT_COUNT}")
    return count


def _average(histogram: Mapping[int, int], completions: int) -> float:
    if completions <= 0:
        return 0.0
    return sum(score * count for score, count in histogram.items()) / completions

