"""Cold store: create-only writes of immutable archive batches (local + S3)."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import urlparse

from trivia_stats.errors import TransientStorageError


ARCHIVE_CONTENT_TYPE = "application/jsonl"


@dataclass(frozen=True)
class ArchiveRef:
    path: str


class ColdStore(Protocol):
    def put_if_absent(self, key: str, body: str) -> ArchiveRef:
        """Create ``key`` with ``body``; raise FileExistsError if it exists."""
        ...

    def read_text(self, key: str) -> str:
        ...

    def list_keys(self, prefix: str) -> list[str]:
        ...


class LocalColdStore:
    def __init__(self, root: Path) -> None:
        self.root = root

    def _full_path(self, key: str) -> Path:
        return self.root / key.lstrip("/")

    def put_if_absent(self, key: str, body: str) -> ArchiveRef:
        path = self._full_path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("x", encoding="utf-8") as handle:
                handle.write(body)
        except FileExistsError:
            raise
        except OSError as exc:
            raise TransientStorageError(f"cold store write failed: {path}") from exc
        return ArchiveRef(path=str(path))

    def read_text(self, key: str) -> str:
        return self._full_path(key).read_text(encoding="utf-8")

    def list_keys(self, prefix: str) -> list[str]:
        base = self._full_path(prefix)
        if not base.exists():
            return []
        return sorted(path.relative_to(self.root).as_posix() for path in base.rglob("*") if path.is_file())


class S3ColdStore:
    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        *,
        endpoint_url: str | None = None,
        region: str | None = None,
    ) -> None:
        import boto3

        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self._client: Any = boto3.client("s3", endpoint_url=endpoint_url, region_name=region)

    def _key(self, key: str) -> str:
        relative = key.lstrip("/")
        if not self.prefix:
            return relative
        return f"{self.prefix}/{relative}"

    def put_if_absent(self, key: str, body: str) -> ArchiveRef:
        from botocore.exceptions import BotoCoreError, ClientError

        full_key = self._key(key)
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=full_key,
                Body=body.encode("utf-8"),
                ContentType=ARCHIVE_CONTENT_TYPE,
                IfNoneMatch="*",
            )
        except ClientError as exc:
            error_code = exc.response.get("Error", {}).get("Code")
            if error_code in {"PreconditionFailed", "412"}:
                raise FileExistsError(full_key) from exc
            raise TransientStorageError(f"s3 put failed: s3://{self.bucket}/{full_key}") from exc
        except BotoCoreError as exc:
            raise TransientStorageError(f"s3 put failed: s3://{self.bucket}/{full_key}") from exc
        return ArchiveRef(path=f"s3://{self.bucket}/{full_key}")

    def read_text(self, key: str) -> str:
        response = self._client.get_object(Bucket=self.bucket, Key=self._key(key))
        return response["Body"].read().decode("utf-8")

    def list_keys(self, prefix: str) -> list[str]:
        full_prefix = self._key(prefix).rstrip("/") + "/"
        paginator = self._client.get_paginator("list_objects_v2")
        keys: list[str] = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=full_prefix):
            for item in page.get("Contents", []):
                keys.append(str(item["Key"]))
        return sorted(keys)


def build_cold_store(
    root: str,
    *,
    endpoint_url: str | None = None,
    region: str | None = None,
) -> ColdStore:
    if root.startswith("s3://"):
        parsed = urlparse(root)
        bucket = parsed.netloc
        if not bucket:
            raise ValueError("S3 cold_store_root missing bucket")
        return S3ColdStore(bucket=bucket, prefix=parsed.path.lstrip("/"), endpoint_url=endpoint_url, region=region)
    return LocalColdStore(Path(root))
