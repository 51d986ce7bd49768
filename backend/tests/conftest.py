"""Pytest fixtures for the relay.

Provides:
- A manual clock shared by every component under test
- A fake VKS keyserver session (records each request)
- PGPy keys: valid, revoked and published without a user ID
- A database on a temporary SQLite file and a TestClient over create_app()
"""

from datetime import datetime, timedelta

import pgpy
import pytest
from fastapi.testclient import TestClient
from pgpy.constants import (
    CompressionAlgorithm,
    HashAlgorithm,
    KeyFlags,
    PubKeyAlgorithm,
    RevocationReason,
    SymmetricKeyAlgorithm,
)

from drop_relay.core.clock import unix_seconds
from drop_relay.core.config import Settings
from drop_relay.core.key_cache import KeyValidationCache, normalize_fingerprint
from drop_relay.core.message import MessageStore
from drop_relay.core.security import IdentityVerifier
from drop_relay.infra.database import Database
from drop_relay.main import create_app

START = datetime(2026, 1, 1, 12, 0, 0)


class ManualClock:
    """A clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta) -> datetime:
        self.current = self.current + timedelta(**delta)
        return self.current

    @property
    def unix(self) -> int:
        return unix_seconds(self.current)


class FakeResponse:
    def __init__(self, status_code: int, text: str = ""):
        self.status_code = status_code
        self.text = text
        self.reason = "OK" if status_code < 400 else "Error"

    @property
    def ok(self) -> bool:
        return self.status_code < 400


class FakeKeyserver:
    """Stands in for a requests.Session pointed at a VKS keyserver."""

    def __init__(self):
        self.keys = {}
        self.statuses = {}
        self.raise_error = None
        self.calls = []

    def publish(self, armored_key: str, fingerprint: str):
        self.keys[normalize_fingerprint(fingerprint)] = armored_key

    def get(self, url, timeout=None):
        self.calls.append({"url": url, "timeout": timeout})
        if self.raise_error is not None:
            raise self.raise_error
        fp = url.rsplit("/", 1)[-1]
        if fp in self.statuses:
            return FakeResponse(self.statuses[fp])
        if fp in self.keys:
            return FakeResponse(200, self.keys[fp])
        return FakeResponse(404, "Not Found")

    def calls_for(self, fingerprint: str) -> int:
        return sum(1 for c in self.calls if c["url"].endswith(normalize_fingerprint(fingerprint)))


def new_key(name: str) -> pgpy.PGPKey:
    key = pgpy.PGPKey.new(PubKeyAlgorithm.RSAEncryptOrSign, 2048)
    uid = pgpy.PGPUID.new(name, email=f"{name.lower()}@example.com")
    key.add_uid(
        uid,
        usage={KeyFlags.Sign, KeyFlags.Certify, KeyFlags.EncryptCommunications, KeyFlags.EncryptStorage},
        hashes=[HashAlgorithm.SHA256],
        ciphers=[SymmetricKeyAlgorithm.AES256],
        compression=[CompressionAlgorithm.ZLIB],
    )
    return key


def fingerprint_of(key: pgpy.PGPKey) -> str:
    return normalize_fingerprint(key.fingerprint)


def sign(key: pgpy.PGPKey, data: str) -> str:
    return str(key.sign(data))


@pytest.fixture(scope="session")
def alice_key():
    return new_key("Alice")


@pytest.fixture(scope="session")
def bob_key():
    return new_key("Bob")


@pytest.fixture(scope="session")
def revoked_key():
    """Private key plus the armored public key carrying its revocation."""
    key = new_key("Mallory")
    rsig = key.revoke(key.pubkey, reason=RevocationReason.Retired, comment="retired")
    pub = key.pubkey
    pub |= rsig
    return key, str(pub)


@pytest.fixture(scope="session")
def uidless_key():
    """Private key plus its armored public key with every user ID stripped."""
    key = new_key("Dave")
    pub, _ = pgpy.PGPKey.from_blob(str(key.pubkey))
    pub.del_uid("Dave")
    assert not pub.userids
    return key, str(pub)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def keyserver(alice_key, bob_key, revoked_key, uidless_key):
    server = FakeKeyserver()
    server.publish(str(alice_key.pubkey), fingerprint_of(alice_key))
    server.publish(str(bob_key.pubkey), fingerprint_of(bob_key))
    server.publish(revoked_key[1], fingerprint_of(revoked_key[0]))
    server.publish(uidless_key[1], fingerprint_of(uidless_key[0]))
    return server


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'relay.db'}")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def key_cache(database, keyserver, clock):
    return KeyValidationCache(
        database,
        keyserver_url="https://keys.example.org",
        ttl_seconds=600,
        timeout=5,
        session=keyserver,
        clock=clock,
    )


@pytest.fixture
def verifier(key_cache, clock):
    return IdentityVerifier(key_cache, skew_seconds=300, clock=clock)


@pytest.fixture
def store(database, clock):
    return MessageStore(database, clock=clock)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'api.db'}",
        KEYSERVER_URL="https://keys.example.org",
        SWEEPER_ENABLED=False,
        RATE_LIMIT_ENABLED=False,
    )


@pytest.fixture
def app(settings, keyserver, clock):
    return create_app(settings, keyserver_session=keyserver, clock=clock)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
