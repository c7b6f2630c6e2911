"""Hot store: live challenge aggregates + pending raw guess events.

Backed by sqlite (local/dev) or Postgres. Counter updates are delegated to the
database (``UPDATE … SET x = x + 1`` and ``INSERT … ON CONFLICT DO UPDATE``) so
they stay correct under arbitrary interleaving of request workers.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime, timezone
import json
import re
import sqlite3
from typing import Any, Iterator, Sequence
import uuid

import psycopg

from trivia_stats.errors import TransientStorageError
from trivia_stats.models import (
    Challenge,
    ChallengeStats,
    ProcessedDistribution,
    RawGuessEvent,
    RoundGuessDistribution,
    ScoreBucket,
)

from .postgres_runtime import close_threadlocal_connections, is_postgres_dsn, threadlocal_connection


_SQLITE_BUSY_TIMEOUT_SECONDS = 30.0
_DELETE_CHUNK = 400

_CHALLENGE_COLUMNS = (
    "challenge_id, challenge_date, active, round_stats_finalized, completions, "
    "average_score, processed_distribution, round_guess_distributions"
)


class HotStore:
    """Challenge + raw-guess persistence over sqlite or Postgres."""

    def __init__(self, *, locator: str) -> None:
        self.locator = str(locator or "").strip()
        if not self.locator:
            raise ValueError("hot store locator is required")
        self.backend = "postgres" if is_postgres_dsn(self.locator) else "sqlite"
        self._ensure_schema()

    def close(self) -> None:
        if self.backend == "postgres":
            close_threadlocal_connections()

    # -- challenges ---------------------------------------------------------

    def create_challenge(
        self,
        challenge_date: date,
        *,
        active: bool = True,
        challenge_id: str | None = None,
    ) -> Challenge:
        now = _utc_now()
        with self._session() as conn:
            conn.execute(
                *self._sql_with_params(
                    """
                    INSERT INTO trivia_challenges (
                        challenge_id, challenge_date, active, round_stats_finalized,
                        completions, average_score, created_at_utc, updated_at_utc
                    ) VALUES ({p1}, {p2}, {p3}, 0, 0, 0, {p4}, {p4})
                    ON CONFLICT (challenge_date) DO NOTHING
                    """,
                    (challenge_id or uuid.uuid4().hex, challenge_date.isoformat(), int(bool(active)), now),
                )
            )
        challenge = self.get_challenge(challenge_date)
        assert challenge is not None
        return challenge

    def get_challenge(self, challenge_date: date) -> Challenge | None:
        with self._session() as conn:
            row = conn.execute(
                *self._sql_with_params(
                    f"SELECT {_CHALLENGE_COLUMNS} FROM trivia_challenges WHERE challenge_date = {{p1}}",
                    (challenge_date.isoformat(),),
                )
            ).fetchone()
            if row is None:
                return None
            buckets = self._buckets(conn, challenge_date)
        return _challenge_from_row(row, buckets)

    def get_challenge_by_id(self, challenge_id: str) -> Challenge | None:
        with self._session() as conn:
            row = conn.execute(
                *self._sql_with_params(
                    f"SELECT {_CHALLENGE_COLUMNS} FROM trivia_challenges WHERE challenge_id = {{p1}}",
                    (str(challenge_id),),
                )
            ).fetchone()
            if row is None:
                return None
            buckets = self._buckets(conn, date.fromisoformat(str(row[1])))
        return _challenge_from_row(row, buckets)

    def list_challenges_before(self, cutoff: date) -> list[Challenge]:
        """Challenges dated strictly before ``cutoff``, oldest first."""
        with self._session() as conn:
            rows = conn.execute(
                *self._sql_with_params(
                    f"""
                    SELECT {_CHALLENGE_COLUMNS}
                    FROM trivia_challenges
                    WHERE challenge_date < {{p1}}
                    ORDER BY challenge_date ASC
                    """,
                    (cutoff.isoformat(),),
                )
            ).fetchall()
        return [_challenge_from_row(row, ()) for row in rows]

    def mark_finalized(self, challenge_date: date) -> bool:
        """Flip COLLECTING -> FINALIZED. False when another writer already did."""
        with self._session() as conn:
            return self._flip_finalized(conn, challenge_date)

    # -- score histogram ----------------------------------------------------

    def record_score(self, challenge_date: date, score: int) -> bool:
        """Atomically bump completions and the score's bucket.

        Returns False (and changes nothing) when no active challenge exists.
        """
        with self._session() as conn:
            cursor = conn.execute(
                *self._sql_with_params(
                    """
                    UPDATE trivia_challenges
                       SET completions = completions + 1
                     WHERE challenge_date = {p1}
                       AND active = 1
                    """,
                    (challenge_date.isoformat(),),
                )
            )
            if int(cursor.rowcount or 0) == 0:
                return False
            conn.execute(
                *self._sql_with_params(
                    """
                    INSERT INTO trivia_score_buckets (challenge_date, score, count)
                    VALUES ({p1}, {p2}, 1)
                    ON CONFLICT (challenge_date, score) DO UPDATE SET
                        count = trivia_score_buckets.count + 1
                    """,
                    (challenge_date.isoformat(), int(score)),
                )
            )
        return True

    def read_score_state(self, challenge_date: date) -> tuple[int, dict[int, int]]:
        """Return ``(completions, {score: count})`` read in one session."""
        with self._session() as conn:
            row = conn.execute(
                *self._sql_with_params(
                    "SELECT completions FROM trivia_challenges WHERE challenge_date = {p1}",
                    (challenge_date.isoformat(),),
                )
            ).fetchone()
            buckets = self._buckets(conn, challenge_date)
        completions = int(row[0]) if row else 0
        return completions, {bucket.score: bucket.count for bucket in buckets}

    def write_score_cache(
        self,
        challenge_date: date,
        *,
        average_score: float,
        processed: ProcessedDistribution,
        completions: int | None = None,
    ) -> None:
        body = _canonical_json(processed.with_percentile_rank(None).as_dict())
        with self._session() as conn:
            if completions is None:
                conn.execute(
                    *self._sql_with_params(
                        """
                        UPDATE trivia_challenges
                           SET average_score = {p2},
                               processed_distribution = {p3},
                               updated_at_utc = {p4}
                         WHERE challenge_date = {p1}
                        """,
                        (challenge_date.isoformat(), float(average_score), body, _utc_now()),
                    )
                )
                return
            conn.execute(
                *self._sql_with_params(
                    """
                    UPDATE trivia_challenges
                       SET average_score = {p2},
                           processed_distribution = {p3},
                           updated_at_utc = {p4},
                           completions = {p5}
                     WHERE challenge_date = {p1}
                    """,
                    (challenge_date.isoformat(), float(average_score), body, _utc_now(), int(completions)),
                )
            )

    def purge_scores_above(self, challenge_date: date, max_score: int) -> int:
        with self._session() as conn:
            cursor = conn.execute(
                *self._sql_with_params(
                    "DELETE FROM trivia_score_buckets WHERE challenge_date = {p1} AND score > {p2}",
                    (challenge_date.isoformat(), int(max_score)),
                )
            )
            return int(cursor.rowcount or 0)

    # -- round guesses ------------------------------------------------------

    def append_guess(self, event: RawGuessEvent) -> None:
        with self._session() as conn:
            conn.execute(
                *self._sql_with_params(
                    """
                    INSERT INTO trivia_round_guesses (
                        guess_id, challenge_date, round_index, guessed_year, created_at_utc
                    ) VALUES ({p1}, {p2}, {p3}, {p4}, {p5})
                    """,
                    (
                        event.guess_id,
                        event.challenge_date.isoformat(),
                        int(event.round_index),
                        int(event.guessed_year),
                        event.created_at,
                    ),
                )
            )

    def list_guesses(self, challenge_date: date) -> list[RawGuessEvent]:
        with self._session() as conn:
            rows = conn.execute(
                *self._sql_with_params(
                    """
                    SELECT guess_id, challenge_date, round_index, guessed_year, created_at_utc
                    FROM trivia_round_guesses
                    WHERE challenge_date = {p1}
                    ORDER BY created_at_utc ASC, guess_id ASC
                    """,
                    (challenge_date.isoformat(),),
                )
            ).fetchall()
        return [
            RawGuessEvent(
                guess_id=str(row[0]),
                challenge_date=date.fromisoformat(str(row[1])),
                round_index=int(row[2]),
                guessed_year=int(row[3]),
                created_at=str(row[4]),
            )
            for row in rows
        ]

    def delete_guesses(self, guess_ids: Sequence[str]) -> int:
        """Delete raw events by identity. Never by date range."""
        with self._session() as conn:
            return self._delete_ids(conn, guess_ids)

    def finalize_snapshot(self, challenge_date: date, guess_ids: Sequence[str]) -> tuple[int, bool]:
        """Delete an archived snapshot and flip FINALIZED in one transaction.

        Returns ``(deleted, flipped)``; ``flipped`` is False when another
        writer finalized first.
        """
        with self._session() as conn:
            deleted = self._delete_ids(conn, guess_ids)
            flipped = self._flip_finalized(conn, challenge_date)
        return deleted, flipped

    def write_round_distributions(
        self,
        challenge_date: date,
        distributions: Sequence[RoundGuessDistribution],
    ) -> bool:
        """Store per-round distributions while the challenge is still COLLECTING.

        Returns False when the challenge is missing or already finalized;
        finalized round stats are never overwritten.
        """
        body = _canonical_json([item.as_dict() for item in distributions])
        with self._session() as conn:
            cursor = conn.execute(
                *self._sql_with_params(
                    """
                    UPDATE trivia_challenges
                       SET round_guess_distributions = {p2},
                           updated_at_utc = {p3}
                     WHERE challenge_date = {p1}
                       AND round_stats_finalized = 0
                    """,
                    (challenge_date.isoformat(), body, _utc_now()),
                )
            )
            return int(cursor.rowcount or 0) > 0

    # -- plumbing -----------------------------------------------------------

    def _flip_finalized(self, conn: Any, challenge_date: date) -> bool:
        cursor = conn.execute(
            *self._sql_with_params(
                """
                UPDATE trivia_challenges
                   SET round_stats_finalized = 1,
                       updated_at_utc = {p2}
                 WHERE challenge_date = {p1}
                   AND round_stats_finalized = 0
                """,
                (challenge_date.isoformat(), _utc_now()),
            )
        )
        return int(cursor.rowcount or 0) > 0

    def _delete_ids(self, conn: Any, guess_ids: Sequence[str]) -> int:
        ids = [str(item) for item in guess_ids]
        deleted = 0
        for start in range(0, len(ids), _DELETE_CHUNK):
            chunk = ids[start : start + _DELETE_CHUNK]
            placeholders = ", ".join(f"{{p{idx}}}" for idx in range(1, len(chunk) + 1))
            cursor = conn.execute(
                *self._sql_with_params(
                    f"DELETE FROM trivia_round_guesses WHERE guess_id IN ({placeholders})",
                    tuple(chunk),
                )
            )
            deleted += int(cursor.rowcount or 0)
        return deleted

    def _buckets(self, conn: Any, challenge_date: date) -> tuple[ScoreBucket, ...]:
        rows = conn.execute(
            *self._sql_with_params(
                """
                SELECT score, count
                FROM trivia_score_buckets
                WHERE challenge_date = {p1}
                ORDER BY score ASC
                """,
                (challenge_date.isoformat(),),
            )
        ).fetchall()
        return tuple(ScoreBucket(score=int(row[0]), count=int(row[1])) for row in rows)

    @contextmanager
    def _session(self) -> Iterator[Any]:
        try:
            if self.backend == "postgres":
                with threadlocal_connection(self.locator) as conn:
                    yield conn
                return
            conn = sqlite3.connect(_sqlite_path(self.locator), timeout=_SQLITE_BUSY_TIMEOUT_SECONDS)
            try:
                with conn:
                    yield conn
            finally:
                conn.close()
        except (sqlite3.Error, psycopg.Error) as exc:
            raise TransientStorageError(f"hot store {self.backend} call failed: {exc}") from exc

    def _ensure_schema(self) -> None:
        with self._session() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS trivia_challenges (
                    challenge_date TEXT PRIMARY KEY,
                    challenge_id TEXT NOT NULL UNIQUE,
                    active INTEGER NOT NULL DEFAULT 1,
                    round_stats_finalized INTEGER NOT NULL DEFAULT 0,
                    completions INTEGER NOT NULL DEFAULT 0,
                    average_score DOUBLE PRECISION NOT NULL DEFAULT 0,
                    processed_distribution TEXT,
                    round_guess_distributions TEXT,
                    created_at_utc TEXT NOT NULL,
                    updated_at_utc TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS trivia_score_buckets (
                    challenge_date TEXT NOT NULL,
                    score INTEGER NOT NULL,
                    count INTEGER NOT NULL,
                    PRIMARY KEY (challenge_date, score)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS trivia_round_guesses (
                    guess_id TEXT PRIMARY KEY,
                    challenge_date TEXT NOT NULL,
                    round_index INTEGER NOT NULL,
                    guessed_year INTEGER NOT NULL,
                    created_at_utc TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS trivia_round_guesses_by_date
                ON trivia_round_guesses (challenge_date)
                """
            )

    def _sql_with_params(self, sql: str, params: tuple[Any, ...]) -> tuple[str, tuple[Any, ...]]:
        return _sql(sql, self.backend), _ordered_params(sql, params)


_PLACEHOLDER_PATTERN = re.compile(r"\{p(\d+)\}")


def _sql(sql: str, backend: str) -> str:
    if backend == "sqlite":
        return _PLACEHOLDER_PATTERN.sub("?", sql)
    if backend == "postgres":
        return _PLACEHOLDER_PATTERN.sub("%s", sql)
    raise ValueError(f"unsupported backend: {backend}")


def _ordered_params(sql: str, params: tuple[Any, ...]) -> tuple[Any, ...]:
    ordered: list[Any] = []
    for token in _PLACEHOLDER_PATTERN.findall(sql):
        idx = int(token) - 1
        if idx < 0 or idx >= len(params):
            raise ValueError(f"placeholder index out of range: p{token}")
        ordered.append(params[idx])
    return tuple(ordered)


def _challenge_from_row(row: Sequence[Any], buckets: tuple[ScoreBucket, ...]) -> Challenge:
    processed_raw = row[6]
    rounds_raw = row[7]
    processed = ProcessedDistribution.from_dict(json.loads(processed_raw)) if processed_raw else None
    rounds = tuple(RoundGuessDistribution.from_dict(item) for item in json.loads(rounds_raw)) if rounds_raw else ()
    return Challenge(
        challenge_id=str(row[0]),
        challenge_date=date.fromisoformat(str(row[1])),
        active=bool(row[2]),
        round_stats_finalized=bool(row[3]),
        stats=ChallengeStats(
            completions=int(row[4]),
            average_score=float(row[5]),
            distributions=buckets,
            processed_distribution=processed,
            round_guess_distributions=rounds,
        ),
    )


def _canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, ensure_ascii=True, separators=(",", ":"))


def _sqlite_path(locator: str) -> str:
    text = str(locator or "").strip()
    if text.startswith("sqlite:///"):
        return text[len("sqlite:///") :]
    if text.startswith("sqlite://"):
        return text[len("sqlite://") :]
    return text


def _utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()
