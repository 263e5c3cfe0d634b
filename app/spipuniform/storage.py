from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO

PROVIDERS = ("local", "s3")


class StorageError(RuntimeError):
    pass


class Storage:
    provider = "base"

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def test_connection(self) -> None:
        """Round-trip a small object; raises StorageError on failure."""
        key = ".spipuniform-connection-test"
        payload = b"ok"
        try:
            self.put_bytes(key, payload, content_type="text/plain")
            with self.open(key) as fh:
                data = fh.read()
            self.delete(key)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"{self.provider} storage test failed: {e}") from e
        if data != payload:
            raise StorageError(f"{self.provider} storage test failed: read-back mismatch")


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path
    provider = "local"

    def _path(self, key: str) -> Path:
        safe_key = key.lstrip("/").replace("\\", "/")
        p = (self.root / safe_key).resolve()
        if self.root.resolve() not in p.parents and p != self.root.resolve():
            raise StorageError(f"Key escapes storage root: {key}")
        return p

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)

    def open(self, key: str) -> BinaryIO:
        p = self._path(key)
        if not p.exists():
            raise StorageError(f"Object not found: {key}")
        return p.open("rb")

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def delete(self, key: str) -> None:
        p = self._path(key)
        if p.exists():
            p.unlink()


@dataclass(frozen=True)
class S3Storage(Storage):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    provider = "s3"

    def _client(self):
        import boto3

        endpoint_url = None
        if self.endpoint:
            endpoint_url = self.endpoint if self.endpoint.startswith("http") else f"https://{self.endpoint}"
        return boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
        )

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        extra: dict[str, object] = {}
        if content_type:
            extra["ContentType"] = content_type
        self._client().put_object(Bucket=self.bucket, Key=key, Body=data, **extra)

    def open(self, key: str) -> BinaryIO:
        obj = self._client().get_object(Bucket=self.bucket, Key=key)
        return obj["Body"]  # type: ignore[return-value]

    def exists(self, key: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            self._client().head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError:
            return False

    def delete(self, key: str) -> None:
        self._client().delete_object(Bucket=self.bucket, Key=key)


def _local_root(config: dict) -> Path:
    root = (config.get("LOCAL_STORAGE_ROOT") or "").strip()
    return Path(root) if root else Path(os.getcwd()) / "storage"


def build_storage(provider: str, settings: dict[str, Any] | None, config: dict) -> Storage:
    """
    Build a backend from a storage settings row (provider + config JSON),
    falling back to environment values for anything the row leaves empty.
    """
    provider = (provider or "local").strip().lower()
    if provider not in PROVIDERS:
        raise StorageError(f"Unsupported storage provider: {provider}")
    settings = settings or {}
    if provider == "s3":
        storage = S3Storage(
            endpoint=(settings.get("endpoint") or config.get("S3_ENDPOINT") or "").strip(),
            region=(settings.get("region") or config.get("S3_REGION") or "").strip(),
            bucket=(settings.get("bucket") or config.get("S3_BUCKET") or "").strip(),
            access_key_id=(settings.get("access_key_id") or config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(settings.get("secret_access_key") or config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
        )
        if not storage.bucket:
            raise StorageError("S3 storage requires a bucket.")
        return storage
    base = (settings.get("base_path") or "").strip()
    return LocalStorage(root=Path(base) if base else _local_root(config))


def storage_from_config(config: dict) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    return build_storage(backend, None, config)
