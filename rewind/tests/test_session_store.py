"""Tests for the encrypted session cookie store."""

import base64
import time
from datetime import datetime, timedelta

import pytest
from cryptography.fernet import Fernet

pytestmark = pytest.mark.integration

from rewind.core.auth.models import RevokedSession
from rewind.core.auth.session_store import SessionRecord, SessionRevocations, SessionStore, derive_fernet_key
from rewind.extensions import db

DID = "did:plc:alice"


@pytest.fixture
def store(app):
    return SessionStore("cookie-secret", max_age=3600)


def _tamper(token: str) -> str:
    # Flip one character in the payload section
    replacement = "A" if token[0] != "A" else "B"
    return replacement + token[1:]


def test_round_trip(store):
    record = SessionRecord.empty().with_identity(DID)

    loaded = store.load(store.save(record))

    assert loaded == record
    assert not loaded.is_empty


def test_identity_is_not_readable_from_the_cookie(store):
    token = store.save(SessionRecord.empty().with_identity(DID))

    assert DID not in token
    raw = base64.urlsafe_b64decode(token + "=" * (-len(token) % 4))
    assert DID.encode("ascii") not in raw
    assert b"alice" not in raw


def test_expired_cookie_loads_empty_but_can_still_be_destroyed(store):
    # Minted two hours ago with the same key; the store lives for one hour
    fernet = Fernet(derive_fernet_key("cookie-secret"))
    token = fernet.encrypt_at_time(b'{"sid": "old-sid", "identity": "did:plc:alice"}', int(time.time()) - 7200).decode("ascii")

    assert store.load(token).is_empty
    store.destroy(token)
    assert SessionRevocations().is_revoked("old-sid")


def test_anonymous_record_keeps_its_sid(store):
    record = SessionRecord.empty()
    loaded = store.load(store.save(record))
    assert loaded.is_empty
    assert loaded.sid == record.sid


@pytest.mark.parametrize("token", [None, "", "not-a-cookie", "a.b.c"])
def test_garbage_loads_empty(store, token):
    assert store.load(token).is_empty


def test_tampered_cookie_loads_empty(store):
    token = store.save(SessionRecord.empty().with_identity(DID))
    assert store.load(_tamper(token)).is_empty


def test_cookie_from_another_secret_loads_empty(store):
    other = SessionStore("another-secret", max_age=3600)
    token = other.save(SessionRecord.empty().with_identity(DID))
    assert store.load(token).is_empty


def test_destroy_invalidates_token(store):
    token = store.save(SessionRecord.empty().with_identity(DID))

    store.destroy(token)

    assert store.load(token).is_empty
    # Destroying twice is harmless
    store.destroy(token)


def test_destroy_ignores_garbage(store):
    store.destroy("not-a-cookie")
    store.destroy(None)
    assert db.session.query(RevokedSession).count() == 0


def test_each_record_gets_its_own_sid():
    assert SessionRecord.empty().sid != SessionRecord.empty().sid


def test_purge_revocations(app):
    revocations = SessionRevocations()
    revocations.add("old-sid")
    revocations.add("new-sid")
    row = db.session.get(RevokedSession, "old-sid")
    row.created_at = datetime.utcnow() - timedelta(days=30)
    db.session.commit()

    assert revocations.purge_older_than(86400) == 1
    assert not revocations.is_revoked("old-sid")
    assert revocations.is_revoked("new-sid")
