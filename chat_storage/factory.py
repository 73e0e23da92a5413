"""
Selects the live `Storage` implementation.

Entry points build the store once (`get_storage()`, driven by
STORAGE_BACKEND) and hand it to whatever needs it. Tests and tools call
`create_storage()` directly for an independent instance.
"""

import logging
from functools import lru_cache

from sqlalchemy.engine import Engine

from chat_storage import config
from chat_storage.db import get_engine, init_db
from chat_storage.exceptions import UnknownBackendError
from chat_storage.memory import MemoryStorage
from chat_storage.repository import DatabaseStorage
from chat_storage.storage import Storage

logger = logging.getLogger(__name__)

MEMORY = "memory"
DATABASE = "database"

_ALIASES = {
    "memory": MEMORY,
    "database": DATABASE,
    "postgres": DATABASE,
}


def create_storage(backend: str | None = None, engine: Engine | None = None) -> Storage:
    name = (backend or config.STORAGE_BACKEND).strip().lower()
    kind = _ALIASES.get(name)
    if kind is None:
        raise UnknownBackendError(name)

    if kind == MEMORY:
        logger.info("Using in-memory storage")
        return MemoryStorage()

    engine = engine or get_engine()
    # Idempotent schema creation
    init_db(engine)
    logger.info("Using database storage")
    return DatabaseStorage(engine)


@lru_cache(maxsize=1)
def get_storage() -> Storage:
    """The process-wide store, built from configuration on first use."""
    return create_storage()


def reset_storage() -> None:
    get_storage.cache_clear()
