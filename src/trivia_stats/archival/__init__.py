"""Round-guess archival: finalization state machine, sweep and emergency path."""

from .emergency import EmergencyArchiver
from .finalizer import (
    ARCHIVE_KIND_DELTA,
    ARCHIVE_KIND_EMPTY,
    ARCHIVE_KIND_INITIAL,
    ARCHIVE_KIND_NONE,
    ArchiveOutcome,
    Finalizer,
)
from .observability import SweepMetrics, SweepReport
from .scheduler import ArchivalScheduler

__all__ = [
    "ARCHIVE_KIND_DELTA",
    "ARCHIVE_KIND_EMPTY",
    "ARCHIVE_KIND_INITIAL",
    "ARCHIVE_KIND_NONE",
    "ArchivalScheduler",
    "ArchiveOutcome",
    "EmergencyArchiver",
    "Finalizer",
    "SweepMetrics",
    "SweepReport",
]
