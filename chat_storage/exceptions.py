"""Errors raised by the storage layer itself.

Backend failures (connection loss, constraint violations) are not wrapped:
they surface as the SQLAlchemy exceptions raised by the engine.
"""


class StorageError(Exception):
    """Base class for storage configuration and usage errors."""


class UnknownBackendError(StorageError, ValueError):
    """STORAGE_BACKEND names no known implementation."""

    def __init__(self, backend: str):
        self.backend = backend
        super().__init__(f"Unknown storage backend: {backend!r}")
