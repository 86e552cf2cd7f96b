"""Per-form asset upload state with optimistic local previews.

Each (form, field) pair carries a monotonically increasing request token.
Only the upload holding the current token may write the field's value; any
other result is stale and discarded. Every preview handle is released exactly
once: on success, failure, removal, supersession or form teardown.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import os
import re
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Protocol

from field_types import FieldType, parse_field_type
from namespaces import EntityKind

logger = logging.getLogger("fieldkit.uploads")

DEFAULT_MAX_IMAGE_BYTES = 5 * 1024 * 1024
_EXT_RE = re.compile(r"[^a-z0-9]")


class UploadStatus(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class UploadState:
    status: UploadStatus = UploadStatus.IDLE
    url: str | None = None
    error: str | None = None
    token: int = 0


IDLE = UploadState()


@dataclass(frozen=True)
class UploadFile:
    filename: str
    content: bytes
    content_type: str | None = None

    @property
    def size(self) -> int:
        return len(self.content)


class PreviewHandle(Protocol):
    url: str

    def release(self) -> None: ...


class StorageBackend(Protocol):
    async def upload(self, file: UploadFile, path: str) -> str: ...

    async def delete(self, url: str) -> None: ...


class DataUrlPreview:
    """Local preview rendered from the file bytes; released once."""

    def __init__(self, file: UploadFile) -> None:
        mime = file.content_type or "application/octet-stream"
        encoded = base64.b64encode(file.content).decode("ascii")
        self.url = f"data:{mime};base64,{encoded}"
        self.released = False

    def release(self) -> None:
        if self.released:
            raise RuntimeError("preview handle already released")
        self.released = True
        self.url = ""


class NoPreview:
    """Placeholder handle for server-side uploads where nothing renders a preview."""

    url = ""

    def __init__(self, file: UploadFile) -> None:
        self.released = False

    def release(self) -> None:
        self.released = True


def _max_image_bytes() -> int:
    raw = os.getenv("FIELDKIT_MAX_IMAGE_BYTES", "").strip()
    return int(raw) if raw.isdigit() else DEFAULT_MAX_IMAGE_BYTES


def destination_path(entity_kind: EntityKind, field_name: str, filename: str, now: float | None = None) -> str:
    """Unique storage path scoped to the field: timestamp plus a random token."""
    stamp = int((time.time() if now is None else now) * 1000)
    ext = ""
    if "." in (filename or ""):
        ext = _EXT_RE.sub("", filename.rsplit(".", 1)[-1].lower())
    safe_field = re.sub(r"[^A-Za-z0-9_-]", "_", field_name)
    name = f"{stamp}_{uuid.uuid4().hex}" + (f".{ext}" if ext else "")
    return f"uploads/{entity_kind.value}s/dynamic-fields/{safe_field}/{name}"


class FormUploads:
    def __init__(
        self,
        storage: StorageBackend,
        entity_kind: EntityKind,
        preview_factory: Callable[[UploadFile], PreviewHandle] = DataUrlPreview,
        max_image_bytes: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._entity_kind = entity_kind
        self._preview_factory = preview_factory
        self._max_image_bytes = max_image_bytes if max_image_bytes is not None else _max_image_bytes()
        self._clock = clock
        self._tokens: Dict[str, int] = {}
        self._states: Dict[str, UploadState] = {}
        self._previews: Dict[str, PreviewHandle] = {}
        self._closed = False
        self.values: Dict[str, Any] = {}

    def state(self, field_name: str) -> UploadState:
        return self._states.get(field_name, IDLE)

    @property
    def errors(self) -> Dict[str, str]:
        return {name: s.error for name, s in self._states.items() if s.status == UploadStatus.FAILED and s.error}

    @property
    def held_previews(self) -> int:
        return len(self._previews)

    def _next_token(self, field_name: str) -> int:
        token = self._tokens.get(field_name, 0) + 1
        self._tokens[field_name] = token
        return token

    def _is_current(self, field_name: str, token: int) -> bool:
        return not self._closed and self._tokens.get(field_name) == token

    def _release(self, field_name: str) -> None:
        preview = self._previews.pop(field_name, None)
        if preview is not None:
            preview.release()

    def _fail(self, field_name: str, token: int, message: str) -> UploadState:
        self._release(field_name)
        self.values[field_name] = ""
        state = UploadState(UploadStatus.FAILED, error=message, token=token)
        self._states[field_name] = state
        return state

    def _preflight(self, file: UploadFile, field_type: FieldType, label: str) -> str | None:
        if field_type != FieldType.IMAGE:
            return None
        if not (file.content_type or "").startswith("image/"):
            return f"{label}: only image files are allowed"
        if file.size > self._max_image_bytes:
            return f"{label}: file is larger than {self._max_image_bytes // (1024 * 1024)}MB"
        return None

    async def upload(
        self,
        field_name: str,
        file: UploadFile,
        field_type: FieldType | str = FieldType.FILE,
        label: str | None = None,
    ) -> UploadState:
        """Upload ``file`` for ``field_name``; a newer call supersedes this one."""
        if self._closed:
            raise RuntimeError("form uploads are closed")
        field_type = parse_field_type(field_type)
        label = label or field_name
        token = self._next_token(field_name)
        # superseded preview (in-flight or not yet confirmed) goes now
        self._release(field_name)

        problem = self._preflight(file, field_type, label)
        if problem:
            logger.info("upload_rejected field=%s reason=%s", field_name, problem)
            return self._fail(field_name, token, problem)

        preview = self._preview_factory(file)
        self._previews[field_name] = preview
        self.values[field_name] = preview.url
        self._states[field_name] = UploadState(UploadStatus.UPLOADING, token=token)

        path = destination_path(self._entity_kind, field_name, file.filename, self._clock())
        try:
            url = await self._storage.upload(file, path)
        except asyncio.CancelledError:
            if self._is_current(field_name, token):
                self._release(field_name)
                self.values[field_name] = ""
                self._states[field_name] = UploadState(UploadStatus.IDLE, token=token)
            raise
        except Exception as exc:
            if not self._is_current(field_name, token):
                logger.info("upload_stale_failure field=%s token=%s error=%s", field_name, token, exc)
                return self.state(field_name)
            logger.warning("upload_failed field=%s path=%s error=%s", field_name, path, exc)
            return self._fail(field_name, token, f"{label}: upload failed, please try again")

        if not self._is_current(field_name, token):
            logger.info("upload_stale_result field=%s token=%s", field_name, token)
            await self._discard_orphan(url)
            return self.state(field_name)

        self.values[field_name] = url
        self._release(field_name)
        state = UploadState(UploadStatus.SUCCEEDED, url=url, token=token)
        self._states[field_name] = state
        logger.info("upload_succeeded field=%s path=%s", field_name, path)
        return state

    async def _discard_orphan(self, url: str) -> None:
        try:
            await self._storage.delete(url)
        except Exception as exc:
            logger.warning("upload_orphan_delete_failed url=%s error=%s", url, exc)

    def remove(self, field_name: str) -> None:
        """Clear the field locally; in-flight uploads for it become stale."""
        token = self._next_token(field_name)
        self._release(field_name)
        self.values[field_name] = ""
        self._states[field_name] = UploadState(UploadStatus.IDLE, token=token)

    def reset(self, field_name: str) -> None:
        """Acknowledge a finished upload (succeeded or failed) and return to idle."""
        state = self.state(field_name)
        if state.status in (UploadStatus.SUCCEEDED, UploadStatus.FAILED):
            self._states[field_name] = UploadState(UploadStatus.IDLE, url=state.url, token=state.token)

    def close(self) -> None:
        """Form teardown: release every held preview and invalidate in-flight uploads."""
        for field_name in list(self._tokens):
            self._next_token(field_name)
        for field_name in list(self._previews):
            self._release(field_name)
        self._closed = True
