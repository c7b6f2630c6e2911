"""Archival sweep counters + optional JSON export."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
from pathlib import Path
from typing import Any


@dataclass
class SweepMetrics:
    source: str
    counters: dict[str, int] = field(default_factory=dict)
    failed_dates: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        for key in _REQUIRED_COUNTERS:
            self.counters.setdefault(key, 0)

    def bump(self, key: str, delta: int = 1) -> None:
        if key not in self.counters:
            raise ValueError(f"unsupported metric counter: {key}")
        self.counters[key] = int(self.counters.get(key, 0)) + int(delta)

    def record_failure(self, challenge_date: str) -> None:
        self.bump("error_total")
        self.failed_dates.append(challenge_date)

    def snapshot(self) -> "SweepReport":
        return SweepReport(
            generated_at_utc=_utc_now(),
            source=self.source,
            counters=dict(self.counters),
            failed_dates=tuple(self.failed_dates),
        )


@dataclass(frozen=True)
class SweepReport:
    generated_at_utc: str
    source: str
    counters: dict[str, int]
    failed_dates: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return int(self.counters.get("error_total", 0)) == 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "generated_at_utc": self.generated_at_utc,
            "source": self.source,
            "health_state": "GREEN" if self.ok else "AMBER",
            "metrics": dict(self.counters),
            "failed_dates": list(self.failed_dates),
        }

    def export(self, metrics_root: Path) -> Path:
        path = metrics_root / "archival" / "last_sweep.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.as_dict(), sort_keys=True, ensure_ascii=True, indent=2) + "\n", encoding="utf-8")
        return path


def _utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


_REQUIRED_COUNTERS: tuple[str, ...] = (
    "seen_total",
    "finalized_total",
    "delta_archived_total",
    "events_archived_total",
    "events_deleted_total",
    "stale_total",
    "error_total",
)
