"""Shared fixtures: a fresh SQLite file per test, wired services and an in-process API client."""
import os

# must be set before chatapp.core.config builds the default settings
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["PUBLIC_IP_LOOKUP_URL"] = ""
os.environ["SMTP_HOST"] = ""

import itertools

import pytest
from fastapi.testclient import TestClient

from chatapp.core.config import Settings
from chatapp.crud.users import create_user
from chatapp.db.init_db import init_db
from chatapp.db.session import build_engine, build_sessionmaker
from chatapp.main import create_app
from chatapp.crypto.codec import MessageCodec
from chatapp.realtime.dispatcher import Dispatcher
from chatapp.realtime.presence import PresenceRegistry
from chatapp.security.csrf import CSRFTokenManager
from chatapp.security.rate_limit import RateLimiter
from chatapp.services.auth import SessionAuthority
from chatapp.services.client_ip import ClientIpResolver
from chatapp.services.groups import GroupDirectory
from chatapp.services.ledger import MessageLedger

PASSWORD = "SecurePass123!"


class RecordingNotifier:
    """Keeps every OTP instead of mailing it."""

    def __init__(self):
        self.sent = []

    def send_otp(self, email, otp, ttl_minutes):
        self.sent.append((email, otp))

    def last_otp(self, email):
        for sent_to, otp in reversed(self.sent):
            if sent_to == email:
                return otp
        raise AssertionError(f"no OTP sent to {email}")


class FakeConnection:
    """Pushable that records frames."""

    def __init__(self):
        self.frames = []
        self.closed = False

    def push(self, frame):
        self.frames.append(frame)

    def close(self):
        self.closed = True

    def events(self, name=None):
        return [f for f in self.frames if name is None or f["event"] == name]

    def last(self, name):
        matching = self.events(name)
        assert matching, f"no {name} frame received"
        return matching[-1]["data"]


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'chat.sqlite'}",
        JWT_SECRET="test-access-secret",
        JWT_REFRESH_SECRET="test-refresh-secret",
        CSRF_SECRET="test-csrf-secret",
        MESSAGE_ENCRYPTION_KEY="test-message-key",
        PUBLIC_IP_LOOKUP_URL="",
        SMTP_HOST="",
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def engine(settings):
    engine = build_engine(settings.database_url)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    with build_sessionmaker(engine)() as session:
        yield session


@pytest.fixture
def presence():
    return PresenceRegistry()


@pytest.fixture
def dispatcher(presence):
    return Dispatcher(presence)


@pytest.fixture
def groups(dispatcher):
    return GroupDirectory(dispatcher)


@pytest.fixture
def ledger(settings, groups, dispatcher):
    return MessageLedger(MessageCodec(settings.MESSAGE_ENCRYPTION_KEY), groups, dispatcher, settings)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def auth(settings, notifier):
    return SessionAuthority(
        settings,
        notifier,
        ClientIpResolver(""),
        CSRFTokenManager(settings.CSRF_SECRET),
        RateLimiter(max_attempts=5),
    )


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    def _make(name=None):
        n = next(counter)
        name = name or f"user{n}"
        return create_user(db, f"{name.lower()}@example.com", name.title(), PASSWORD)

    return _make


@pytest.fixture
def online(dispatcher):
    """Connect a user with a recording connection."""

    def _connect(user):
        conn = FakeConnection()
        dispatcher.connect(user.id, conn)
        return conn

    return _connect


@pytest.fixture
def app(settings, notifier):
    return create_app(settings, notifier=notifier, start_sweeper=False)


@pytest.fixture
def client(app):
    # https so the Secure cookies are stored and sent back
    with TestClient(app, base_url="https://testserver") as c:
        yield c
