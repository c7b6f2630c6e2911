"""Daily challenge score statistics and round-guess archival."""

from .errors import NotFoundError, StaleStateError, TransientStorageError, TriviaStatsError, ValidationError
from .service import TriviaStatsService

__all__ = [
    "NotFoundError",
    "StaleStateError",
    "TransientStorageError",
    "TriviaStatsError",
    "TriviaStatsService",
    "ValidationError",
]
