from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote, unquote

import anyio
import httpx

from upload_orchestrator import UploadFile

logger = logging.getLogger("fieldkit.uploads")


@dataclass
class StorageError(Exception):
    code: str
    message: str

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return f"{self.code}: {self.message}"


def _supabase_url() -> str:
    return (os.getenv("SUPABASE_URL") or "").strip().rstrip("/")


def _supabase_service_role_key() -> str:
    return (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()


def using_supabase_storage() -> bool:
    return bool(_supabase_url() and _supabase_service_role_key())


def uploads_bucket() -> str:
    return (os.getenv("SUPABASE_STORAGE_BUCKET_UPLOADS") or "uploads").strip()


def _storage_root() -> Path:
    return Path(os.getenv("FIELDKIT_STORAGE_DIR", "storage"))


def _public_base_url() -> str:
    return (os.getenv("FIELDKIT_PUBLIC_BASE_URL") or "/files").strip().rstrip("/")


def _safe_key(path: str) -> str:
    parts = [p for p in path.replace("\\", "/").split("/") if p and p not in (".", "..")]
    if not parts:
        raise StorageError("STORAGE_PATH_INVALID", "storage path is empty")
    return "/".join(parts)


class SupabaseStorage:
    """Supabase storage REST client: upsert uploads, public URLs, tolerant deletes."""

    def __init__(
        self,
        base_url: str | None = None,
        service_key: str | None = None,
        bucket: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = (base_url or _supabase_url()).rstrip("/")
        self._key = service_key or _supabase_service_role_key()
        self.bucket = bucket or uploads_bucket()
        self._transport = transport
        self._timeout = timeout

    def _headers(self, content_type: str | None = None) -> dict:
        headers = {
            "Authorization": f"Bearer {self._key}",
            "apikey": self._key,
            "x-upsert": "true",
        }
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def object_url(self, key: str) -> str:
        return f"{self.base_url}/storage/v1/object/{self.bucket}/{quote(key, safe='/')}"

    def public_url(self, key: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{quote(key, safe='/')}"

    def key_from_url(self, url: str) -> str | None:
        prefix = f"{self.base_url}/storage/v1/object/public/{self.bucket}/"
        if not url.startswith(prefix):
            return None
        return unquote(url[len(prefix) :])

    async def upload(self, file: UploadFile, path: str) -> str:
        key = _safe_key(path)
        try:
            async with self._client() as client:
                res = await client.post(
                    self.object_url(key),
                    headers=self._headers(file.content_type or "application/octet-stream"),
                    content=file.content,
                )
        except httpx.HTTPError as exc:
            raise StorageError("STORAGE_UNAVAILABLE", f"storage request failed: {exc.__class__.__name__}") from exc
        if res.status_code >= 400:
            logger.warning("supabase_upload_failed status=%s key=%s", res.status_code, key)
            raise StorageError("STORAGE_UPLOAD_FAILED", f"upload rejected with status {res.status_code}")
        return self.public_url(key)

    async def delete(self, url: str) -> None:
        key = self.key_from_url(url)
        if key is None:
            return
        async with self._client() as client:
            res = await client.delete(self.object_url(key), headers=self._headers())
        # 404s are fine during cleanup.
        if res.status_code >= 400 and res.status_code != 404:
            raise StorageError("STORAGE_DELETE_FAILED", f"delete rejected with status {res.status_code}")


class LocalStorage:
    """Files under ``FIELDKIT_STORAGE_DIR`` served from ``FIELDKIT_PUBLIC_BASE_URL``."""

    def __init__(self, root: Path | str | None = None, public_base_url: str | None = None) -> None:
        self.root = Path(root) if root is not None else _storage_root()
        self.public_base_url = (public_base_url if public_base_url is not None else _public_base_url()).rstrip("/")

    def resolve_path(self, key: str) -> Path:
        return self.root / _safe_key(key)

    def _write(self, target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    async def upload(self, file: UploadFile, path: str) -> str:
        key = _safe_key(path)
        try:
            await anyio.to_thread.run_sync(self._write, self.resolve_path(key), file.content)
        except OSError as exc:
            raise StorageError("STORAGE_UPLOAD_FAILED", f"could not write file: {exc.strerror or exc}") from exc
        return f"{self.public_base_url}/{quote(key, safe='/')}"

    async def delete(self, url: str) -> None:
        prefix = f"{self.public_base_url}/"
        if not url.startswith(prefix):
            return
        target = self.resolve_path(unquote(url[len(prefix) :]))
        await anyio.to_thread.run_sync(lambda: target.unlink(missing_ok=True))


def get_storage() -> SupabaseStorage | LocalStorage:
    if using_supabase_storage():
        return SupabaseStorage()
    return LocalStorage()
