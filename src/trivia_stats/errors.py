"""Error taxonomy for the stats + archival core."""

from __future__ import annotations


class TriviaStatsError(Exception):
    """Base class for errors raised by trivia_stats."""


class ValidationError(TriviaStatsError, ValueError):
    """Raised when caller input is invalid. No state is mutated."""


class NotFoundError(TriviaStatsError, LookupError):
    """Raised when no (active) challenge exists for the requested date."""


class TransientStorageError(TriviaStatsError):
    """Raised when a hot-store or cold-store call fails.

    Never masked as success: the submission path surfaces it, the sweep
    retries it on its next run.
    """


class StaleStateError(TriviaStatsError):
    """Raised when a freshness re-check finds the challenge already finalized."""
