"""Shared fixtures: a seeded memory store, a codec, a controllable clock."""
import time

import pytest

from oauth.identity import SessionIdentityProvider
from oauth.jwt_utils import TokenCodec
from oauth.models import CLIENTS_TABLE, USERS_TABLE
from oauth.service import OAuthService
from oauth.stores import MemoryStore

SECRET = "test-secret-0123456789-abcdefghijklmnopqrstuvwxyz"
CLIENT_ID = "abc"
CLIENT_SECRET = "s3cret"
REDIRECT_URI = "https://app.example/cb"
USER_ID = 7


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start if start is not None else time.time()

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def seed(store):
    store.insert(CLIENTS_TABLE, {
        "client_id": CLIENT_ID,
        "client_secret": CLIENT_SECRET,
        "name": "Example App",
        "redirect_uri": REDIRECT_URI,
        "created_at": int(time.time()),
    })
    store.insert(USERS_TABLE, {
        "id": USER_ID,
        "email": "user7@example.com",
        "name": "User Seven",
        "password_hash": "$2b$12$not-a-real-hash",
        "created_at": 1700000000,
        "updated_at": 1700000000,
    })
    return store


@pytest.fixture
def store():
    return seed(MemoryStore())


@pytest.fixture
def codec():
    return TokenCodec(SECRET)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(store, codec, clock):
    return OAuthService(store, codec, SessionIdentityProvider(codec, store), clock=clock)
