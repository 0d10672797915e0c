import asyncio
import os
import sys
import pytest

# Ensure the project root (containing the top-level modules) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

# Must be set before app is imported so no Redis client is built
os.environ.setdefault("STORE_BACKEND", "memory")

from backend import MemoryBackend
from room_store import RoomStore


class StepClock:
    """Deterministic millisecond clock; advance() moves time forward."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int = 1):
        self.now += ms


async def settle():
    # Let subscription tasks drain their channels
    for _ in range(5):
        await asyncio.sleep(0.01)


@pytest.fixture()
def loop():
    event_loop = asyncio.new_event_loop()
    asyncio.set_event_loop(event_loop)
    yield event_loop
    event_loop.run_until_complete(event_loop.shutdown_asyncgens())
    event_loop.close()
    asyncio.set_event_loop(None)


@pytest.fixture()
def clock():
    return StepClock()


@pytest.fixture()
def backend():
    return MemoryBackend()


@pytest.fixture()
def store(backend, clock):
    return RoomStore(backend, clock=clock)


@pytest.fixture()
def client(store):
    from fastapi.testclient import TestClient
    from app import app

    previous = app.state.room_store
    app.state.room_store = store
    # Context manager keeps one event loop for requests and websockets
    with TestClient(app) as test_client:
        yield test_client
    app.state.room_store = previous
