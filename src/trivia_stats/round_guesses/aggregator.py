"""Per-round guessed-year distributions rebuilt from raw guess events."""

from __future__ import annotations

from collections import Counter
from datetime import date, datetime, timezone
import logging
from typing import Any, Iterable, Sequence
import uuid

from trivia_stats.errors import NotFoundError, ValidationError
from trivia_stats.models import RawGuessEvent, RoundGuessDistribution, YearDensityPoint, parse_challenge_date
from trivia_stats.storage.hot_store import HotStore


logger = logging.getLogger("trivia_stats.round_guesses.aggregator")

DEFAULT_ROUND_COUNT = 5


class RoundGuessAggregator:
    def __init__(self, hot_store: HotStore, *, round_count: int = DEFAULT_ROUND_COUNT) -> None:
        self.hot_store = hot_store
        self.round_count = int(round_count)

    def record_guess(self, date_value: Any, round_index: Any, guessed_year: Any) -> RawGuessEvent:
        """Append one raw guess event to the hot store."""
        challenge_date = parse_challenge_date(date_value)
        index = _strict_int(round_index, "round_index")
        if index < 0 or index >= self.round_count:
            raise ValidationError(f"round_index must be in [0, {self.round_count - 1}], got {index}")
        year = _strict_int(guessed_year, "guessed_year")
        event = RawGuessEvent(
            guess_id=uuid.uuid4().hex,
            challenge_date=challenge_date,
            round_index=index,
            guessed_year=year,
            created_at=datetime.now(tz=timezone.utc).isoformat(),
        )
        self.hot_store.append_guess(event)
        return event

    def recompute(self, date_value: Any) -> list[RoundGuessDistribution]:
        """Rebuild the stored per-round distributions of a COLLECTING challenge.

        Always starts from whatever raw events currently exist. Once the
        challenge is finalized its stored distributions are returned as-is.
        """
        challenge_date = parse_challenge_date(date_value)
        challenge = self.hot_store.get_challenge(challenge_date)
        if challenge is None:
            raise NotFoundError(f"no challenge for {challenge_date.isoformat()}")
        if challenge.round_stats_finalized:
            logger.info("Round stats for %s are finalized; keeping stored distributions", challenge_date)
            return list(challenge.stats.round_guess_distributions)
        return self.store_snapshot(challenge_date, self.hot_store.list_guesses(challenge_date))

    def store_snapshot(self, challenge_date: date, events: Sequence[RawGuessEvent]) -> list[RoundGuessDistribution]:
        """Build distributions from exactly ``events`` and store them.

        An empty snapshot writes nothing, so stats built before the raw events
        were archived are never replaced by an empty list.
        """
        if not events:
            logger.info("No raw guesses for %s; stored round distributions left unchanged", challenge_date)
            return []
        distributions = build_round_distributions(events, round_count=self.round_count)
        if not self.hot_store.write_round_distributions(challenge_date, distributions):
            logger.info("Round stats for %s not written: challenge missing or already finalized", challenge_date)
            return distributions
        logger.info(
            "Round guess distributions stored for %s events=%s rounds=%s",
            challenge_date,
            len(events),
            len(distributions),
        )
        return distributions


def build_round_distributions(
    events: Iterable[RawGuessEvent],
    *,
    round_count: int = DEFAULT_ROUND_COUNT,
) -> list[RoundGuessDistribution]:
    by_round: dict[int, list[int]] = {}
    for event in events:
        if 0 <= event.round_index < round_count:
            by_round.setdefault(event.round_index, []).append(int(event.guessed_year))

    distributions: list[RoundGuessDistribution] = []
    for round_index in range(round_count):
        years = sorted(by_round.get(round_index, []))
        if not years:
            continue
        total = len(years)
        frequencies = Counter(years)
        distributions.append(
            RoundGuessDistribution(
                round_index=round_index,
                curve_points=tuple(
                    YearDensityPoint(guessed_year=year, density=count / total)
                    for year, count in sorted(frequencies.items())
                ),
                total_guesses=total,
                min_guess=years[0],
                max_guess=years[-1],
                median_guess=median_year(years),
            )
        )
    return distributions


def median_year(sorted_years: list[int]) -> int:
    """Median of an ascending list; even counts average the middle pair (half-up)."""
    mid = len(sorted_years) // 2
    if len(sorted_years) % 2 == 1:
        return sorted_years[mid]
    pair_sum = sorted_years[mid - 1] + sorted_years[mid]
    return (pair_sum + 1) // 2


def _strict_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError as exc:
            raise ValidationError(f"{field_name} must be an integer") from exc
    raise ValidationError(f"{field_name} must be an integer")

