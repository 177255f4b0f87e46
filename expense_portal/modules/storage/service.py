"""Receipt object storage backends."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Optional

from expense_portal.config import Settings
from expense_portal.logging_config import get_logger

logger = get_logger(__name__)


class InvalidStorageKeyError(ValueError):
    """Raised for keys that are blank, absolute or try to leave the storage root."""

    def __init__(self, key: str) -> None:
        super().__init__(f"invalid storage key: {key}")
        self.key = key


def sanitize_key(key: str) -> PurePosixPath:
    """Normalise a relative object key.

    ``.`` components are dropped. Blank keys, absolute paths, Windows drive
    prefixes and ``..`` components are rejected.
    """
    if not key or not key.strip():
        raise InvalidStorageKeyError(key)
    if key.startswith(("/", "\\")) or (len(key) > 1 and key[1] == ":"):
        raise InvalidStorageKeyError(key)

    parts: list[str] = []
    for part in key.replace("\\", "/").split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            raise InvalidStorageKeyError(key)
        parts.append(part)

    if not parts:
        raise InvalidStorageKeyError(key)
    return PurePosixPath(*parts)


class StorageBackend(ABC):
    """Where receipt bytes live. Keys are relative, slash-separated paths."""

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def presigned_url(self, key: str) -> Optional[str]:
        ...


class LocalStorage(StorageBackend):
    """Stores objects as files below a root directory."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _resolve(self, key: str) -> Path:
        path = (self._root / sanitize_key(key)).resolve()
        if not path.is_relative_to(self._root):
            raise InvalidStorageKeyError(key)
        return path

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        path = self._resolve(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.debug("storage_put", key=key, size=len(data), content_type=content_type)

    async def delete(self, key: str) -> None:
        path = self._resolve(key)
        await asyncio.to_thread(path.unlink, missing_ok=True)
        logger.debug("storage_delete", key=key)

    async def presigned_url(self, key: str) -> Optional[str]:
        return f"/receipts/{sanitize_key(key).as_posix()}"


class MemoryStorage(StorageBackend):
    """In-process object store for tests and throwaway environments."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        normalized = sanitize_key(key).as_posix()
        self.objects[normalized] = bytes(data)
        self.content_types[normalized] = content_type

    async def delete(self, key: str) -> None:
        normalized = sanitize_key(key).as_posix()
        self.objects.pop(normalized, None)
        self.content_types.pop(normalized, None)

    async def presigned_url(self, key: str) -> Optional[str]:
        return f"memory://{sanitize_key(key).as_posix()}"


def build_storage(settings: Settings) -> StorageBackend:
    """Create the backend selected by ``storage_provider``."""
    provider = settings.storage_provider
    if provider == "local":
        return LocalStorage(settings.storage_local_path or "uploads")
    if provider == "memory":
        return MemoryStorage()
    raise ValueError(f"unsupported storage provider: {provider}")
