"""Challenge finalization: COLLECTING -> FINALIZED, plus late-event deltas.

Shared by the periodic sweep and the emergency path. Raw guess events are
deleted from the hot store only after the cold store confirmed a durable
copy of exactly those events, and always by ``guess_id``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
import logging
from typing import Callable, Sequence

from trivia_stats.errors import NotFoundError, StaleStateError, TransientStorageError
from trivia_stats.models import RawGuessEvent
from trivia_stats.round_guesses.aggregator import RoundGuessAggregator
from trivia_stats.storage.cold_store import ArchiveRef, ColdStore
from trivia_stats.storage.hot_store import HotStore


logger = logging.getLogger("trivia_stats.archival.finalizer")

ARCHIVE_KIND_INITIAL = "initial"
ARCHIVE_KIND_DELTA = "delta"
ARCHIVE_KIND_EMPTY = "empty"
ARCHIVE_KIND_NONE = "none"


@dataclass(frozen=True)
class ArchiveOutcome:
    challenge_date: date
    kind: str
    archive_ref: str | None
    archived: int
    deleted: int
    finalized: bool


class Finalizer:
    def __init__(
        self,
        *,
        hot_store: HotStore,
        cold_store: ColdStore,
        aggregator: RoundGuessAggregator,
        archive_prefix: str = "round-guesses-archive",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.hot_store = hot_store
        self.cold_store = cold_store
        self.aggregator = aggregator
        self.archive_prefix = archive_prefix.strip().rstrip("/")
        self._clock = clock or _utc_now

    def initial_key(self, challenge_date: date) -> str:
        day = challenge_date.isoformat()
        return f"{self.archive_prefix}/{day}/{day}-initial.jsonl"

    def delta_key(self, challenge_date: date) -> str:
        stamp = self._clock().astimezone(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        return f"{self.archive_prefix}/{challenge_date.isoformat()}/delta_{stamp}.jsonl"

    def finalize(self, challenge_date: date, *, source: str) -> ArchiveOutcome:
        """Run the COLLECTING -> FINALIZED transition for one challenge.

        Raises StaleStateError when the challenge is already finalized and
        TransientStorageError when any store call fails; in both cases no raw
        event has been deleted without a confirmed archive copy. Guesses that
        arrive after the snapshot stay in the hot store for a later delta.
        """
        fresh = self.hot_store.get_challenge(challenge_date)
        if fresh is None:
            raise NotFoundError(f"no challenge for {challenge_date.isoformat()}")
        if fresh.round_stats_finalized:
            raise StaleStateError(f"challenge {challenge_date.isoformat()} already finalized")

        # One snapshot feeds the round stats, the archive batch and the delete.
        events = self.hot_store.list_guesses(challenge_date)
        if not events:
            finalized = self.hot_store.mark_finalized(challenge_date)
            logger.info(
                "[%s] No raw guesses for %s; marked finalized=%s",
                source,
                challenge_date,
                finalized,
            )
            return ArchiveOutcome(challenge_date, ARCHIVE_KIND_EMPTY, None, 0, 0, finalized)

        self.aggregator.store_snapshot(challenge_date, events)
        kind = ARCHIVE_KIND_INITIAL
        try:
            ref = self._put_batch(self.initial_key(challenge_date), events)
        except FileExistsError:
            # Another writer archived an initial batch first; keep this snapshot too.
            logger.warning(
                "[%s] Initial archive for %s already exists; writing snapshot as delta",
                source,
                challenge_date,
            )
            kind = ARCHIVE_KIND_DELTA
            ref = self._put_delta(challenge_date, events)

        deleted, finalized = self.hot_store.finalize_snapshot(challenge_date, [event.guess_id for event in events])
        if not finalized:
            logger.info("[%s] %s was finalized concurrently by another process", source, challenge_date)
        logger.info(
            "[%s] Archived %s guesses for %s to %s (deleted=%s)",
            source,
            len(events),
            challenge_date,
            ref.path,
            deleted,
        )
        return ArchiveOutcome(challenge_date, kind, ref.path, len(events), deleted, True)

    def archive_late_events(self, challenge_date: date, *, source: str) -> ArchiveOutcome:
        """Move guesses that arrived after finalization into a delta batch."""
        events = self.hot_store.list_guesses(challenge_date)
        if not events:
            logger.info("[%s] No late guesses for finalized %s", source, challenge_date)
            return ArchiveOutcome(challenge_date, ARCHIVE_KIND_NONE, None, 0, 0, True)
        ref = self._put_delta(challenge_date, events)
        deleted = self.hot_store.delete_guesses([event.guess_id for event in events])
        logger.info(
            "[%s] Archived %s late guesses for %s to %s (deleted=%s)",
            source,
            len(events),
            challenge_date,
            ref.path,
            deleted,
        )
        return ArchiveOutcome(challenge_date, ARCHIVE_KIND_DELTA, ref.path, len(events), deleted, True)

    def _put_delta(self, challenge_date: date, events: Sequence[RawGuessEvent]) -> ArchiveRef:
        key = self.delta_key(challenge_date)
        try:
            return self._put_batch(key, events)
        except FileExistsError as exc:
            raise TransientStorageError(f"delta archive key collision: {key}") from exc

    def _put_batch(self, key: str, events: Sequence[RawGuessEvent]) -> ArchiveRef:
        body = "".join(event.archive_line() + "\n" for event in events)
        return self.cold_store.put_if_absent(key, body)


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)
