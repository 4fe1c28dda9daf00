from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from linksy.runtime_profile import require_backend

logger = logging.getLogger(__name__)

URI_SCHEME = "object://"
DEFAULT_SIGNED_URL_SECONDS = 3600


def _segment(value: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "_", value.strip()).strip("._")
    return cleaned or "object"


@dataclass(frozen=True)
class BlobRef:
    """Location of a stored blob, serialised as ``object://backend/bucket/key``."""

    backend: str
    bucket: str
    key: str

    @property
    def uri(self) -> str:
        return f"{URI_SCHEME}{self.backend}/{self.bucket}/{self.key}"

    @classmethod
    def parse(cls, uri: str) -> "BlobRef":
        if not uri.startswith(URI_SCHEME):
            raise ValueError("invalid storage uri")
        parts = uri[len(URI_SCHEME) :].split("/", 2)
        if len(parts) != 3 or not all(parts):
            raise ValueError("invalid storage uri")
        return cls(backend=parts[0], bucket=parts[1], key=parts[2])


@dataclass(frozen=True)
class ObjectStorageConfig:
    backend: str
    bucket: str
    root: str
    prefix: str
    endpoint: str
    region: str
    access_key: str
    secret_key: str
    force_path_style: bool

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "ObjectStorageConfig":
        path_style = env.get("OBJECT_STORAGE_FORCE_PATH_STYLE", "").strip().lower()
        return cls(
            backend=env.get("LINKSY_OBJECT_STORAGE_BACKEND", "local").strip().lower() or "local",
            bucket=env.get("OBJECT_STORAGE_BUCKET", "").strip() or "linksy",
            root=env.get("OBJECT_STORAGE_ROOT", "").strip() or "/tmp/linksy-object-storage",
            prefix=env.get("OBJECT_STORAGE_PREFIX", "").strip().strip("/"),
            endpoint=env.get("OBJECT_STORAGE_ENDPOINT", "").strip(),
            region=env.get("OBJECT_STORAGE_REGION", "").strip(),
            access_key=env.get("OBJECT_STORAGE_ACCESS_KEY", "").strip(),
            secret_key=env.get("OBJECT_STORAGE_SECRET_KEY", "").strip(),
            force_path_style=path_style not in {"0", "false", "no", "off"},
        )


class ObjectStorageBackend:
    """Tenant-scoped blob store for uploaded files and note attachments.

    Subclasses implement the raw ``_write`` / ``_read`` / ``_remove`` calls;
    key layout, URI handling and backend checks live here.
    """

    backend_name = "base"

    def __init__(self, *, config: ObjectStorageConfig) -> None:
        self.bucket = config.bucket
        self.prefix = config.prefix

    def object_key(self, *, tenant_id: str, object_type: str, object_id: str, filename: str) -> str:
        segments = ["tenants", tenant_id, object_type, object_id, filename]
        key = "/".join(_segment(x) for x in segments)
        return f"{self.prefix}/{key}" if self.prefix else key

    def put_object(
        self,
        *,
        tenant_id: str,
        object_type: str,
        object_id: str,
        filename: str,
        content_bytes: bytes,
        content_type: str | None = None,
    ) -> str:
        ref = BlobRef(
            backend=self.backend_name,
            bucket=self.bucket,
            key=self.object_key(tenant_id=tenant_id, object_type=object_type, object_id=object_id, filename=filename),
        )
        self._write(ref, content_bytes, content_type or "application/octet-stream")
        return ref.uri

    def get_object(self, *, storage_uri: str) -> bytes:
        return self._read(self._ref(storage_uri))

    def delete_object(self, *, storage_uri: str) -> bool:
        return self._remove(self._ref(storage_uri))

    def signed_url(self, *, storage_uri: str, expires_in: int = DEFAULT_SIGNED_URL_SECONDS) -> str | None:
        """Time-limited direct download URL, or None when the backend cannot sign."""
        return None

    def _ref(self, storage_uri: str) -> BlobRef:
        ref = BlobRef.parse(storage_uri)
        if ref.backend != self.backend_name:
            raise ValueError("storage backend mismatch")
        return ref

    def _write(self, ref: BlobRef, content: bytes, content_type: str) -> None:
        raise NotImplementedError

    def _read(self, ref: BlobRef) -> bytes:
        raise NotImplementedError

    def _remove(self, ref: BlobRef) -> bool:
        raise NotImplementedError


class LocalObjectStorage(ObjectStorageBackend):
    backend_name = "local"

    def __init__(self, *, config: ObjectStorageConfig) -> None:
        super().__init__(config=config)
        self._root = Path(config.root)
        self._root.mkdir(parents=True, exist_ok=True)

    def stat(self, *, storage_uri: str) -> dict[str, Any] | None:
        sidecar = self._sidecar(self._path(self._ref(storage_uri)))
        if not sidecar.exists():
            return None
        return json.loads(sidecar.read_text(encoding="utf-8"))

    def reset(self) -> None:
        if not self._root.exists():
            return
        for path in sorted(self._root.rglob("*"), reverse=True):
            if path.is_dir():
                path.rmdir()
            else:
                path.unlink()

    def _path(self, ref: BlobRef) -> Path:
        return self._root / ref.bucket / ref.key

    @staticmethod
    def _sidecar(path: Path) -> Path:
        return path.with_name(f"{path.name}.meta.json")

    def _write(self, ref: BlobRef, content: bytes, content_type: str) -> None:
        path = self._path(ref)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        meta = {"content_type": content_type, "size": len(content), "stored_at": datetime.now(tz=UTC).isoformat()}
        self._sidecar(path).write_text(json.dumps(meta, sort_keys=True), encoding="utf-8")

    def _read(self, ref: BlobRef) -> bytes:
        path = self._path(ref)
        if not path.is_file():
            raise FileNotFoundError(ref.uri)
        return path.read_bytes()

    def _remove(self, ref: BlobRef) -> bool:
        path = self._path(ref)
        if not path.is_file():
            return False
        path.unlink()
        self._sidecar(path).unlink(missing_ok=True)
        return True


class S3ObjectStorage(ObjectStorageBackend):
    backend_name = "s3"

    def __init__(self, *, config: ObjectStorageConfig) -> None:
        try:
            import boto3  # type: ignore
            from botocore.config import Config  # type: ignore
            from botocore.exceptions import ClientError  # type: ignore
        except ImportError as exc:
            raise RuntimeError("boto3 is required for s3 object storage backend") from exc
        super().__init__(config=config)
        self._client_error = ClientError
        session = boto3.session.Session(
            aws_access_key_id=config.access_key or None,
            aws_secret_access_key=config.secret_key or None,
            region_name=config.region or None,
        )
        self._client = session.client(
            "s3",
            endpoint_url=config.endpoint or None,
            config=Config(s3={"addressing_style": "path" if config.force_path_style else "auto"}),
        )

    def signed_url(self, *, storage_uri: str, expires_in: int = DEFAULT_SIGNED_URL_SECONDS) -> str | None:
        ref = self._ref(storage_uri)
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": ref.bucket, "Key": ref.key},
            ExpiresIn=int(expires_in),
        )

    def _write(self, ref: BlobRef, content: bytes, content_type: str) -> None:
        self._client.put_object(Bucket=ref.bucket, Key=ref.key, Body=content, ContentType=content_type)

    def _read(self, ref: BlobRef) -> bytes:
        try:
            response = self._client.get_object(Bucket=ref.bucket, Key=ref.key)
        except self._client_error as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in {"NoSuchKey", "404"}:
                raise FileNotFoundError(ref.uri) from exc
            raise
        return response["Body"].read()

    def _remove(self, ref: BlobRef) -> bool:
        self._client.delete_object(Bucket=ref.bucket, Key=ref.key)
        return True


def create_object_storage_from_env(environ: Mapping[str, str] | None = None) -> ObjectStorageBackend:
    config = ObjectStorageConfig.from_env(os.environ if environ is None else environ)
    require_backend("LINKSY_OBJECT_STORAGE_BACKEND", actual=config.backend, required="s3", environ=environ)
    if config.backend == "s3":
        return S3ObjectStorage(config=config)
    if config.backend != "local":
        logger.warning("unknown object storage backend %r, falling back to local", config.backend)
    return LocalObjectStorage(config=config)
