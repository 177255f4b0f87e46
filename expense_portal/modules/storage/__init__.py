"""Receipt storage backends."""

from expense_portal.modules.storage.service import (
    InvalidStorageKeyError,
    LocalStorage,
    MemoryStorage,
    StorageBackend,
    build_storage,
    sanitize_key,
)

__all__ = [
    "InvalidStorageKeyError",
    "LocalStorage",
    "MemoryStorage",
    "StorageBackend",
    "build_storage",
    "sanitize_key",
]
