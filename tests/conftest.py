import threading
from datetime import datetime, timedelta

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from chat_storage.db import init_db
from chat_storage.memory import MemoryStorage
from chat_storage.repository import DatabaseStorage

START = datetime(2025, 1, 1, 12, 0, 0)


class FakeClock:
    """Returns a strictly increasing time on every call, unless frozen."""

    def __init__(self, start=START, step=timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current

    def freeze(self):
        self.step = timedelta(0)


class ScriptedClock:
    """
    Hands out the given times in order. The call that receives `hold`
    blocks until `release` is set, after signalling `held`.
    """

    def __init__(self, times, hold=None):
        self.times = list(times)
        self.hold = hold
        self.held = threading.Event()
        self.release = threading.Event()
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            value = self.times.pop(0)
        if value == self.hold:
            self.held.set()
            self.release.wait(timeout=5)
        return value


def at(seconds: int) -> datetime:
    return START + timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture(params=["memory", "database"])
def make_storage(request):
    """Builds a store of the parametrised backend around the given clock."""
    if request.param == "memory":
        return lambda clock: MemoryStorage(clock=clock)
    engine = request.getfixturevalue("engine")
    return lambda clock: DatabaseStorage(engine, clock=clock)


@pytest.fixture
def storage(make_storage, clock):
    return make_storage(clock)
