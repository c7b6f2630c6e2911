"""Profile loader for the stats + archival core."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


class TriviaStatsProfile(BaseModel):
    profile_id: str = "local"
    hot_store_dsn: str
    cold_store_root: str
    cold_store_endpoint: str | None = None
    cold_store_region: str | None = None
    archive_prefix: str = "round-guesses-archive"
    process_challenges_older_than_days: int = Field(default=1, ge=0)
    target_timezone: str = "America/New_York"
    round_count: int = Field(default=5, ge=1)
    max_score: int = Field(default=5000, ge=0)
    curve_point_count: int = Field(default=15, ge=2, le=100)
    emergency_completions_threshold: int | None = Field(default=None, ge=1)
    poll_sleep_seconds: float = Field(default=3600.0, gt=0)
    metrics_root: str | None = None

    @field_validator("archive_prefix")
    @classmethod
    def _strip_prefix(cls, value: str) -> str:
        prefix = str(value or "").strip().strip("/")
        if not prefix:
            raise ValueError("archive_prefix must not be empty")
        return prefix

    @classmethod
    def load(cls, path: Path) -> "TriviaStatsProfile":
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise RuntimeError("TRIVIA_STATS_PROFILE_INVALID")
        payload = data.get("trivia_stats") if isinstance(data.get("trivia_stats"), dict) else data
        expanded = _expand_payload(payload)
        if isinstance(data.get("profile_id"), str) and "profile_id" not in expanded:
            expanded["profile_id"] = data["profile_id"]
        return cls(**_apply_env_defaults(expanded))


def _apply_env_defaults(payload: dict[str, Any]) -> dict[str, Any]:
    """Fill keys the profile leaves unset from the deployment environment."""
    merged = {key: value for key, value in payload.items() if value not in (None, "")}
    if "hot_store_dsn" not in merged and os.getenv("TRIVIA_STATS_HOT_STORE_DSN"):
        merged["hot_store_dsn"] = os.environ["TRIVIA_STATS_HOT_STORE_DSN"]
    if "cold_store_root" not in merged and os.getenv("ARCHIVE_S3_BUCKET_NAME"):
        merged["cold_store_root"] = f"s3://{os.environ['ARCHIVE_S3_BUCKET_NAME'].strip()}"
    if "archive_prefix" not in merged and os.getenv("ARCHIVE_S3_PREFIX"):
        merged["archive_prefix"] = os.environ["ARCHIVE_S3_PREFIX"]
    if "process_challenges_older_than_days" not in merged and os.getenv("PROCESS_CHALLENGES_OLDER_THAN_DAYS"):
        merged["process_challenges_older_than_days"] = os.environ["PROCESS_CHALLENGES_OLDER_THAN_DAYS"]
    if "target_timezone" not in merged and os.getenv("TARGET_TIMEZONE"):
        merged["target_timezone"] = os.environ["TARGET_TIMEZONE"]
    for key in ("hot_store_dsn", "cold_store_root"):
        if key not in merged:
            raise RuntimeError(f"TRIVIA_STATS_{key.upper()}_MISSING")
    return merged


def _expand_str(value: str) -> str:
    def replacer(match: re.Match[str]) -> str:
        token = match.group(1)
        if ":-" in token:
            key, default = token.split(":-", 1)
            actual = os.getenv(key, "")
            return actual if actual.strip() else default
        actual = os.getenv(token, "")
        if not actual.strip():
            raise ValueError(f"missing environment variable: {token}")
        return actual

    return _VAR_PATTERN.sub(replacer, value)


def _expand_payload(value: Any) -> Any:
    if isinstance(value, str):
        return _expand_str(value)
    if isinstance(value, list):
        return [_expand_payload(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _expand_payload(item) for key, item in value.items()}
    return value
