"""Hot (mutable) and cold (immutable) storage adapters."""

from .cold_store import ArchiveRef, ColdStore, LocalColdStore, S3ColdStore, build_cold_store
from .hot_store import HotStore

__all__ = [
    "ArchiveRef",
    "ColdStore",
    "HotStore",
    "LocalColdStore",
    "S3ColdStore",
    "build_cold_store",
]
