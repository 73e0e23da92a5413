import logging
from functools import lru_cache

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine, Session

from chat_storage import config
# Registers the tables on SQLModel.metadata.
from chat_storage import models  # noqa: F401

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    """Engine for the configured DATABASE_URL, created once per process."""
    return create_engine(config.DATABASE_URL, echo=config.SQL_ECHO)


def init_db(engine: Engine | None = None):
    """Create all tables if they don't exist."""
    engine = engine or get_engine()
    SQLModel.metadata.create_all(engine)
    logger.info("Schema ready on %s", engine.url.render_as_string(hide_password=True))


def get_session(engine: Engine | None = None) -> Session:
    """
    Provide a new SQLModel session.

    Objects stay readable after commit, since they are handed back to callers
    once the session is closed.
    """
    return Session(engine or get_engine(), expire_on_commit=False)
