from __future__ import annotations

from datetime import date, datetime, timezone
import json
from pathlib import Path
from typing import Sequence
import uuid

import pytest

from trivia_stats.archival import ARCHIVE_KIND_DELTA, ARCHIVE_KIND_EMPTY, ARCHIVE_KIND_INITIAL, Finalizer
from trivia_stats.errors import StaleStateError, TransientStorageError
from trivia_stats.models import Challenge, RawGuessEvent
from trivia_stats.round_guesses import RoundGuessAggregator
from trivia_stats.storage import ArchiveRef, HotStore, LocalColdStore


CHALLENGE_DAY = date(2024, 1, 5)
FIXED_NOW = datetime(2024, 1, 7, 3, 4, 5, 123456, tzinfo=timezone.utc)


class FailingColdStore:
    def __init__(self) -> None:
        self.attempts: list[str] = []

    def put_if_absent(self, key: str, body: str) -> ArchiveRef:
        self.attempts.append(key)
        raise TransientStorageError("cold store unavailable")

    def read_text(self, key: str) -> str:
        raise FileNotFoundError(key)

    def list_keys(self, prefix: str) -> list[str]:
        return []


class LateArrivalHotStore(HotStore):
    """Inserts one more raw event right after the next snapshot is taken."""

    def __init__(self, *, locator: str) -> None:
        super().__init__(locator=locator)
        self.pending_late: RawGuessEvent | None = None

    def list_guesses(self, challenge_date: date) -> list[RawGuessEvent]:
        events = super().list_guesses(challenge_date)
        if self.pending_late is not None:
            late, self.pending_late = self.pending_late, None
            self.append_guess(late)
        return events


class FlakyFinalizeHotStore(HotStore):
    """Fails the delete + flag transaction once, then behaves normally."""

    def __init__(self, *, locator: str) -> None:
        super().__init__(locator=locator)
        self.failures_left = 1

    def finalize_snapshot(self, challenge_date: date, guess_ids: Sequence[str]) -> tuple[int, bool]:
        if self.failures_left:
            self.failures_left -= 1
            raise TransientStorageError("hot store write timed out")
        return super().finalize_snapshot(challenge_date, guess_ids)


class StaleReadHotStore(HotStore):
    """Serves one stale challenge row, as a racing process would have read it."""

    def __init__(self, *, locator: str) -> None:
        super().__init__(locator=locator)
        self.stale: Challenge | None = None

    def get_challenge(self, challenge_date: date) -> Challenge | None:
        if self.stale is not None:
            stale, self.stale = self.stale, None
            return stale
        return super().get_challenge(challenge_date)


def _guess(day: date, round_index: int, year: int, created_at: str) -> RawGuessEvent:
    return RawGuessEvent(uuid.uuid4().hex, day, round_index, year, created_at)


def _finalizer(hot_store: HotStore, cold_store) -> Finalizer:
    return Finalizer(
        hot_store=hot_store,
        cold_store=cold_store,
        aggregator=RoundGuessAggregator(hot_store),
        archive_prefix="round-guesses-archive/",
        clock=lambda: FIXED_NOW,
    )


def _seed(hot_store: HotStore, count: int, *, day: date = CHALLENGE_DAY) -> list[RawGuessEvent]:
    hot_store.create_challenge(day)
    events = [_guess(day, idx % 5, 1900 + idx, f"2024-01-05T10:00:{idx:02d}+00:00") for idx in range(count)]
    for event in events:
        hot_store.append_guess(event)
    return events


def test_finalize_archives_then_deletes_and_marks_finalized(tmp_path) -> None:
    hot_store = HotStore(locator=str(tmp_path / "hot_store.sqlite"))
    cold_store = LocalColdStore(tmp_path / "archive")
    events = _seed(hot_store, 3)

    outcome = _finalizer(hot_store, cold_store).finalize(CHALLENGE_DAY, source="sweep")

    assert outcome.kind == ARCHIVE_KIND_INITIAL
    assert outcome.archived == 3
    assert outcome.deleted == 3
    assert outcome.finalized is True
    archive_path = Path(tmp_path / "archive" / "round-guesses-archive" / "2024-01-05" / "2024-01-05-initial.jsonl")
    assert outcome.archive_ref == str(archive_path)
    lines = archive_path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["guessId"] for line in lines] == [event.guess_id for event in events]
    assert json.loads(lines[0]) == {
        "challengeDate": "2024-01-05",
        "createdAt": "2024-01-05T10:00:00+00:00",
        "guessId": events[0].guess_id,
        "guessedYear": 1900,
        "roundIndex": 0,
    }

    challenge = hot_store.get_challenge(CHALLENGE_DAY)
    assert challenge is not None
    assert challenge.state == "FINALIZED"
    assert len(challenge.stats.round_guess_distributions) == 3
    assert hot_store.list_guesses(CHALLENGE_DAY) == []


def test_finalize_cold_store_failure_keeps_raw_events(tmp_path) -> None:
    hot_store = HotStore(locator=str(tmp_path / "hot_store.sqlite"))
    _seed(hot_store, 3)
    cold_store = FailingColdStore()

    with pytest.raises(TransientStorageError):
        _finalizer(hot_store, cold_store).finalize(CHALLENGE_DAY, source="sweep")

    assert cold_store.attempts == ["round-guesses-archive/2024-01-05/2024-01-05-initial.jsonl"]
    challenge = hot_store.get_challenge(CHALLENGE_DAY)
    assert challenge is not None
    assert challenge.state == "COLLECTING"
    assert len(hot_store.list_guesses(CHALLENGE_DAY)) == 3


def test_finalize_without_events_marks_finalized_without_archive(tmp_path) -> None:
    hot_store = HotStore(locator=str(tmp_path / "hot_store.sqlite"))
    hot_store.create_challenge(CHALLENGE_DAY)
    cold_store = LocalColdStore(tmp_path / "archive")

    outcome = _finalizer(hot_store, cold_store).finalize(CHALLENGE_DAY, source="sweep")

    assert outcome.kind == ARCHIVE_KIND_EMPTY
    assert outcome.archive_ref is None
    assert outcome.finalized is True
    assert cold_store.list_keys("round-guesses-archive") == []
    challenge = hot_store.get_challenge(CHALLENGE_DAY)
    assert challenge is not None
    assert challenge.state == "FINALIZED"
    assert challenge.stats.round_guess_distributions == ()


def test_finalize_already_finalized_is_stale(tmp_path) -> None:
    hot_store = HotStore(locator=str(tmp_path / "hot_store.sqlite"))
    _seed(hot_store, 2)
    hot_store.mark_finalized(CHALLENGE_DAY)

    with pytest.raises(StaleStateError):
        _finalizer(hot_store, LocalColdStore(tmp_path / "archive")).finalize(CHALLENGE_DAY, source="emergency")
    assert len(hot_store.list_guesses(CHALLENGE_DAY)) == 2


def test_finalize_writes_delta_when_initial_key_exists(tmp_path) -> None:
    hot_store = HotStore(locator=str(tmp_path / "hot_store.sqlite"))
    cold_store = LocalColdStore(tmp_path / "archive")
    _seed(hot_store, 2)
    cold_store.put_if_absent("round-guesses-archive/2024-01-05/2024-01-05-initial.jsonl", "{}\n")

    outcome = _finalizer(hot_store, cold_store).finalize(CHALLENGE_DAY, source="sweep")

    assert outcome.kind == ARCHIVE_KIND_DELTA
    assert cold_store.list_keys("round-guesses-archive/2024-01-05") == [
        "round-guesses-archive/2024-01-05/2024-01-05-initial.jsonl",
        "round-guesses-archive/2024-01-05/delta_2024-01-07T03-04-05-123456Z.jsonl",
    ]
    assert hot_store.list_guesses(CHALLENGE_DAY) == []


def test_late_events_archived_as_delta_and_only_snapshot_deleted(tmp_path) -> None:
    hot_store = LateArrivalHotStore(locator=str(tmp_path / "hot_store.sqlite"))
    cold_store = LocalColdStore(tmp_path / "archive")
    hot_store.create_challenge(CHALLENGE_DAY)
    hot_store.mark_finalized(CHALLENGE_DAY)
    late = [_guess(CHALLENGE_DAY, 1, 1800 + idx, f"2024-01-06T00:00:0{idx}+00:00") for idx in range(3)]
    for event in late:
        hot_store.append_guess(event)
    straggler = _guess(CHALLENGE_DAY, 2, 1999, "2024-01-06T00:00:09+00:00")
    hot_store.pending_late = straggler

    outcome = _finalizer(hot_store, cold_store).archive_late_events(CHALLENGE_DAY, source="sweep")

    assert outcome.kind == ARCHIVE_KIND_DELTA
    assert outcome.archived == 3
    assert outcome.deleted == 3
    delta_key = "round-guesses-archive/2024-01-05/delta_2024-01-07T03-04-05-123456Z.jsonl"
    archived_ids = [json.loads(line)["guessId"] for line in cold_store.read_text(delta_key).splitlines()]
    assert archived_ids == [event.guess_id for event in late]
    assert [event.guess_id for event in hot_store.list_guesses(CHALLENGE_DAY)] == [straggler.guess_id]


def test_delta_key_collision_is_transient(tmp_path) -> None:
    hot_store = HotStore(locator=str(tmp_path / "hot_store.sqlite"))
    cold_store = LocalColdStore(tmp_path / "archive")
    _seed(hot_store, 1)
    hot_store.mark_finalized(CHALLENGE_DAY)
    finalizer = _finalizer(hot_store, cold_store)
    cold_store.put_if_absent(finalizer.delta_key(CHALLENGE_DAY), "{}\n")

    with pytest.raises(TransientStorageError):
        finalizer.archive_late_events(CHALLENGE_DAY, source="sweep")
    assert len(hot_store.list_guesses(CHALLENGE_DAY)) == 1


def _total_round_guesses(hot_store: HotStore) -> int:
    challenge = hot_store.get_challenge(CHALLENGE_DAY)
    assert challenge is not None
    return sum(item.total_guesses for item in challenge.stats.round_guess_distributions)


def test_retry_after_events_deleted_keeps_round_stats(tmp_path) -> None:
    hot_store = HotStore(locator=str(tmp_path / "hot_store.sqlite"))
    events = _seed(hot_store, 3)
    RoundGuessAggregator(hot_store).recompute(CHALLENGE_DAY)
    hot_store.delete_guesses([event.guess_id for event in events])

    outcome = _finalizer(hot_store, LocalColdStore(tmp_path / "archive")).finalize(CHALLENGE_DAY, source="sweep")

    assert outcome.kind == ARCHIVE_KIND_EMPTY
    challenge = hot_store.get_challenge(CHALLENGE_DAY)
    assert challenge is not None
    assert challenge.state == "FINALIZED"
    assert _total_round_guesses(hot_store) == 3


def test_flag_failure_then_retry_keeps_events_and_stats(tmp_path) -> None:
    hot_store = FlakyFinalizeHotStore(locator=str(tmp_path / "hot_store.sqlite"))
    cold_store = LocalColdStore(tmp_path / "archive")
    _seed(hot_store, 3)
    finalizer = _finalizer(hot_store, cold_store)

    with pytest.raises(TransientStorageError):
        finalizer.finalize(CHALLENGE_DAY, source="sweep")

    assert len(hot_store.list_guesses(CHALLENGE_DAY)) == 3
    assert _total_round_guesses(hot_store) == 3
    challenge = hot_store.get_challenge(CHALLENGE_DAY)
    assert challenge is not None
    assert challenge.state == "COLLECTING"

    outcome = finalizer.finalize(CHALLENGE_DAY, source="sweep")

    assert outcome.kind == ARCHIVE_KIND_DELTA
    assert outcome.deleted == 3
    assert hot_store.list_guesses(CHALLENGE_DAY) == []
    assert _total_round_guesses(hot_store) == 3
    challenge = hot_store.get_challenge(CHALLENGE_DAY)
    assert challenge is not None
    assert challenge.state == "FINALIZED"


def test_racing_finalizer_with_stale_read_keeps_round_stats(tmp_path) -> None:
    hot_store = StaleReadHotStore(locator=str(tmp_path / "hot_store.sqlite"))
    cold_store = LocalColdStore(tmp_path / "archive")
    _seed(hot_store, 3)
    stale = hot_store.get_challenge(CHALLENGE_DAY)

    _finalizer(hot_store, cold_store).finalize(CHALLENGE_DAY, source="sweep")
    hot_store.stale = stale
    outcome = _finalizer(hot_store, cold_store).finalize(CHALLENGE_DAY, source="emergency")

    assert outcome.kind == ARCHIVE_KIND_EMPTY
    assert outcome.archived == 0
    challenge = hot_store.get_challenge(CHALLENGE_DAY)
    assert challenge is not None
    assert challenge.state == "FINALIZED"
    assert _total_round_guesses(hot_store) == 3


def test_racing_finalizer_archives_late_event_without_touching_stats(tmp_path) -> None:
    hot_store = StaleReadHotStore(locator=str(tmp_path / "hot_store.sqlite"))
    cold_store = LocalColdStore(tmp_path / "archive")
    _seed(hot_store, 3)
    stale = hot_store.get_challenge(CHALLENGE_DAY)

    _finalizer(hot_store, cold_store).finalize(CHALLENGE_DAY, source="sweep")
    late = _guess(CHALLENGE_DAY, 0, 1066, "2024-01-06T00:00:00+00:00")
    hot_store.append_guess(late)
    hot_store.stale = stale
    outcome = _finalizer(hot_store, cold_store).finalize(CHALLENGE_DAY, source="emergency")

    assert outcome.kind == ARCHIVE_KIND_DELTA
    assert outcome.archived == 1
    assert outcome.deleted == 1
    assert hot_store.list_guesses(CHALLENGE_DAY) == []
    assert _total_round_guesses(hot_store) == 3
    delta_key = "round-guesses-archive/2024-01-05/delta_2024-01-07T03-04-05-123456Z.jsonl"
    assert [json.loads(line)["guessId"] for line in cold_store.read_text(delta_key).splitlines()] == [late.guess_id]


def test_round_stats_match_archived_snapshot_under_concurrent_insert(tmp_path) -> None:
    hot_store = LateArrivalHotStore(locator=str(tmp_path / "hot_store.sqlite"))
    cold_store = LocalColdStore(tmp_path / "archive")
    events = _seed(hot_store, 2)
    straggler = _guess(CHALLENGE_DAY, 3, 1969, "2024-01-05T23:59:59+00:00")
    hot_store.pending_late = straggler

    outcome = _finalizer(hot_store, cold_store).finalize(CHALLENGE_DAY, source="sweep")

    assert outcome.kind == ARCHIVE_KIND_INITIAL
    assert outcome.archived == 2
    assert outcome.deleted == 2
    initial_key = "round-guesses-archive/2024-01-05/2024-01-05-initial.jsonl"
    archived_ids = [json.loads(line)["guessId"] for line in cold_store.read_text(initial_key).splitlines()]
    assert archived_ids == [event.guess_id for event in events]
    assert _total_round_guesses(hot_store) == outcome.archived
    assert [event.guess_id for event in hot_store.list_guesses(CHALLENGE_DAY)] == [straggler.guess_id]
    challenge = hot_store.get_challenge(CHALLENGE_DAY)
    assert challenge is not None
    assert challenge.state == "FINALIZED"
