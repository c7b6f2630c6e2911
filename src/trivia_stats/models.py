"""Challenge aggregate, raw guess events and derived distribution records."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
import json
from typing import Any, Mapping

from .errors import ValidationError


@dataclass(frozen=True)
class ScoreBucket:
    score: int
    count: int

    def as_dict(self) -> dict[str, int]:
        return {"score": int(self.score), "count": int(self.count)}


@dataclass(frozen=True)
class CurvePoint:
    score: int
    count: int
    percentile: int

    def as_dict(self) -> dict[str, int]:
        return {"score": int(self.score), "count": int(self.count), "percentile": int(self.percentile)}


@dataclass(frozen=True)
class ProcessedDistribution:
    """Derived view of a score histogram. Recomputed, never authoritative."""

    curve_points: tuple[CurvePoint, ...]
    total_participants: int
    min_score: int
    max_score: int
    median_score: int
    percentile_rank: int | None = None
    strategy: str = "bucketed"

    def with_percentile_rank(self, rank: int | None) -> "ProcessedDistribution":
        return replace(self, percentile_rank=rank)

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "strategy": self.strategy,
            "curvePoints": [point.as_dict() for point in self.curve_points],
            "totalParticipants": int(self.total_participants),
            "minScore": int(self.min_score),
            "maxScore": int(self.max_score),
            "medianScore": int(self.median_score),
        }
        if self.percentile_rank is not None:
            payload["percentileRank"] = int(self.percentile_rank)
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ProcessedDistribution":
        points = tuple(
            CurvePoint(score=int(item["score"]), count=int(item["count"]), percentile=int(item["percentile"]))
            for item in payload.get("curvePoints") or []
        )
        rank = payload.get("percentileRank")
        return cls(
            curve_points=points,
            total_participants=int(payload.get("totalParticipants") or 0),
            min_score=int(payload.get("minScore") or 0),
            max_score=int(payload.get("maxScore") or 0),
            median_score=int(payload.get("medianScore") or 0),
            percentile_rank=int(rank) if rank is not None else None,
            strategy=str(payload.get("strategy") or "bucketed"),
        )


@dataclass(frozen=True)
class YearDensityPoint:
    guessed_year: int
    density: float

    def as_dict(self) -> dict[str, Any]:
        return {"guessedYear": int(self.guessed_year), "density": float(self.density)}


@dataclass(frozen=True)
class RoundGuessDistribution:
    round_index: int
    curve_points: tuple[YearDensityPoint, ...]
    total_guesses: int
    min_guess: int
    max_guess: int
    median_guess: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "roundIndex": int(self.round_index),
            "curvePoints": [point.as_dict() for point in self.curve_points],
            "totalGuesses": int(self.total_guesses),
            "minGuess": int(self.min_guess),
            "maxGuess": int(self.max_guess),
            "medianGuess": int(self.median_guess),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RoundGuessDistribution":
        return cls(
            round_index=int(payload["roundIndex"]),
            curve_points=tuple(
                YearDensityPoint(guessed_year=int(item["guessedYear"]), density=float(item["density"]))
                for item in payload.get("curvePoints") or []
            ),
            total_guesses=int(payload["totalGuesses"]),
            min_guess=int(payload["minGuess"]),
            max_guess=int(payload["maxGuess"]),
            median_guess=int(payload["medianGuess"]),
        )


@dataclass(frozen=True)
class RawGuessEvent:
    guess_id: str
    challenge_date: date
    round_index: int
    guessed_year: int
    created_at: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "guessId": self.guess_id,
            "challengeDate": self.challenge_date.isoformat(),
            "roundIndex": int(self.round_index),
            "guessedYear": int(self.guessed_year),
            "createdAt": self.created_at,
        }

    def archive_line(self) -> str:
        return json.dumps(self.as_dict(), sort_keys=True, ensure_ascii=True, separators=(",", ":"))


@dataclass(frozen=True)
class ChallengeStats:
    completions: int = 0
    average_score: float = 0.0
    distributions: tuple[ScoreBucket, ...] = ()
    processed_distribution: ProcessedDistribution | None = None
    round_guess_distributions: tuple[RoundGuessDistribution, ...] = ()

    def histogram(self) -> dict[int, int]:
        return {bucket.score: bucket.count for bucket in self.distributions}


@dataclass(frozen=True)
class Challenge:
    challenge_id: str
    challenge_date: date
    active: bool
    round_stats_finalized: bool
    stats: ChallengeStats = field(default_factory=ChallengeStats)

    @property
    def state(self) -> str:
        return "FINALIZED" if self.round_stats_finalized else "COLLECTING"


@dataclass(frozen=True)
class SubmissionResult:
    average_score: float
    completions: int
    processed_distribution: ProcessedDistribution

    def as_dict(self) -> dict[str, Any]:
        return {
            "averageScore": float(self.average_score),
            "completions": int(self.completions),
            "processedDistribution": self.processed_distribution.as_dict(),
        }


def parse_challenge_date(value: Any) -> date:
    """Coerce a ``YYYY-MM-DD`` string, ``date`` or ``datetime`` into a calendar date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    if not text:
        raise ValidationError("challenge date is required")
    head = text.split("T", 1)[0].split(" ", 1)[0]
    try:
        return date.fromisoformat(head)
    except ValueError as exc:
        raise ValidationError(f"invalid challenge date: {text!r}") from exc
