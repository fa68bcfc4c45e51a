import os

# Modules read their configuration at import time
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import pytest
from fastapi.testclient import TestClient

from app import create_app
from auth import TokenAuthenticator
from backend import MemoryBackend
from message_store import MessageStore
from notifier import MemoryNotifier
from room_manager import RoomManager

ROOM_TTL = 600
PENDING_TTL = 3600


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def code_sequence(*codes):
    remaining = list(codes)

    def generate():
        return remaining.pop(0)
    return generate


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryBackend(clock=clock)


@pytest.fixture
def notifier():
    return MemoryNotifier()


@pytest.fixture
def authenticator(store):
    return TokenAuthenticator(store)


@pytest.fixture
def rooms(store, notifier, authenticator):
    return RoomManager(store, notifier, authenticator, room_ttl=ROOM_TTL, pending_ttl=PENDING_TTL, max_members=2)


@pytest.fixture
def messages(store, notifier, authenticator):
    return MessageStore(store, notifier, authenticator)


@pytest.fixture
def active_room(rooms):
    """A room with two members, returns (room_id, first_token, second_token)."""
    room_id = rooms.create()
    first = rooms.join(room_id, "alice").token
    second = rooms.join(room_id, "bob").token
    return room_id, first, second


@pytest.fixture
def app(store, notifier):
    return create_app(
        store=store,
        notifier=notifier,
        room_ttl=ROOM_TTL,
        pending_ttl=PENDING_TTL,
        max_members=2,
        code_generator=lambda: "AB12CD",
    )


@pytest.fixture
def make_client(app):
    """Every client has its own cookie jar, i.e. is a separate participant."""
    def make():
        return TestClient(app)
    return make
