from __future__ import annotations

from datetime import date

from trivia_stats import TriviaStatsService
from trivia_stats.archival import ARCHIVE_KIND_INITIAL
from trivia_stats.errors import TransientStorageError
from trivia_stats.storage import ArchiveRef, HotStore, LocalColdStore


CHALLENGE_DAY = date(2024, 2, 29)


class RecordingColdStore(LocalColdStore):
    def __init__(self, root, *, fail: bool = False) -> None:
        super().__init__(root)
        self.fail = fail
        self.keys: list[str] = []

    def put_if_absent(self, key: str, body: str) -> ArchiveRef:
        self.keys.append(key)
        if self.fail:
            raise TransientStorageError("cold store unavailable")
        return super().put_if_absent(key, body)


def _service(tmp_path, *, threshold: int | None = None, fail: bool = False) -> TriviaStatsService:
    return TriviaStatsService(
        hot_store=HotStore(locator=str(tmp_path / "hot_store.sqlite")),
        cold_store=RecordingColdStore(tmp_path / "archive", fail=fail),
        emergency_completions_threshold=threshold,
    )


def test_emergency_archive_finalizes_matching_challenge(tmp_path) -> None:
    service = _service(tmp_path)
    challenge = service.schedule_challenge(CHALLENGE_DAY)
    service.record_round_guess(CHALLENGE_DAY, 0, 1969)
    service.record_round_guess(CHALLENGE_DAY, 1, 1989)

    outcome = service.archive_emergency("2024-02-29", challenge.challenge_id)

    assert outcome is not None
    assert outcome.kind == ARCHIVE_KIND_INITIAL
    assert outcome.archived == 2
    assert service.hot_store.get_challenge(CHALLENGE_DAY).state == "FINALIZED"
    assert service.hot_store.list_guesses(CHALLENGE_DAY) == []


def test_emergency_archive_aborts_when_already_finalized(tmp_path) -> None:
    service = _service(tmp_path)
    challenge = service.schedule_challenge(CHALLENGE_DAY)
    service.record_round_guess(CHALLENGE_DAY, 0, 1969)
    service.hot_store.mark_finalized(CHALLENGE_DAY)

    assert service.archive_emergency(CHALLENGE_DAY, challenge.challenge_id) is None
    assert service.cold_store.keys == []
    assert len(service.hot_store.list_guesses(CHALLENGE_DAY)) == 1


def test_emergency_archive_aborts_on_unknown_or_mismatched_id(tmp_path) -> None:
    service = _service(tmp_path)
    challenge = service.schedule_challenge(CHALLENGE_DAY)
    service.schedule_challenge(date(2024, 3, 1))

    assert service.archive_emergency(CHALLENGE_DAY, "missing-id") is None
    assert service.archive_emergency(date(2024, 3, 1), challenge.challenge_id) is None
    assert service.hot_store.get_challenge(CHALLENGE_DAY).state == "COLLECTING"


def test_submit_triggers_emergency_archival_at_threshold(tmp_path) -> None:
    service = _service(tmp_path, threshold=3)
    service.schedule_challenge(CHALLENGE_DAY)
    service.record_round_guess(CHALLENGE_DAY, 2, 1815)

    service.submit_score(CHALLENGE_DAY, 1200)
    service.submit_score(CHALLENGE_DAY, 2400)
    assert service.hot_store.get_challenge(CHALLENGE_DAY).state == "COLLECTING"

    result = service.submit_score(CHALLENGE_DAY, 3600)
    assert result.completions == 3
    assert service.hot_store.get_challenge(CHALLENGE_DAY).state == "FINALIZED"
    assert service.cold_store.keys == ["round-guesses-archive/2024-02-29/2024-02-29-initial.jsonl"]

    service.submit_score(CHALLENGE_DAY, 4800)
    assert len(service.cold_store.keys) == 1


def test_submit_survives_failed_emergency_archival(tmp_path) -> None:
    service = _service(tmp_path, threshold=1, fail=True)
    service.schedule_challenge(CHALLENGE_DAY)
    service.record_round_guess(CHALLENGE_DAY, 0, 1492)

    result = service.submit_score(CHALLENGE_DAY, 500)

    assert result.completions == 1
    assert service.hot_store.get_challenge(CHALLENGE_DAY).state == "COLLECTING"
    assert len(service.hot_store.list_guesses(CHALLENGE_DAY)) == 1
