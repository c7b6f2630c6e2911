"""Synchronous finalization invoked inline from the submission path."""

from __future__ import annotations

import logging
from typing import Any

from trivia_stats.errors import StaleStateError
from trivia_stats.models import parse_challenge_date
from trivia_stats.storage.hot_store import HotStore

from .finalizer import ArchiveOutcome, Finalizer


logger = logging.getLogger("trivia_stats.archival.emergency")


class EmergencyArchiver:
    def __init__(self, *, hot_store: HotStore, finalizer: Finalizer) -> None:
        self.hot_store = hot_store
        self.finalizer = finalizer

    def archive(self, date_value: Any, challenge_id: str) -> ArchiveOutcome | None:
        """Finalize one challenge now. Returns None when there was nothing to do.

        Storage failures propagate so the caller can log them; the challenge
        stays COLLECTING and the next sweep retries it.
        """
        challenge_date = parse_challenge_date(date_value)
        logger.info("[emergency] Starting archival for %s id=%s", challenge_date, challenge_id)
        challenge = self.hot_store.get_challenge_by_id(challenge_id)
        if challenge is None or challenge.challenge_date != challenge_date:
            logger.warning("[emergency] Challenge id=%s for %s not found; aborting", challenge_id, challenge_date)
            return None
        if challenge.round_stats_finalized:
            logger.info("[emergency] %s already finalized by another process; nothing to do", challenge_date)
            return None
        try:
            return self.finalizer.finalize(challenge_date, source="emergency")
        except StaleStateError:
            logger.info("[emergency] %s finalized concurrently; aborting redundant archival", challenge_date)
            return None
