import json
import os
import sys
import threading
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests
import sqlalchemy as sa
from sqlalchemy.orm import scoped_session, sessionmaker
from alembic import command
from alembic.config import Config as AlembicConfig

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from rewind import create_app
from rewind.extensions import db
from rewind.core.auth import models as auth_models  # noqa: F401
from rewind.core.auth.token_cache import StateStore, TokenCache


# ==================== Pytest Markers ====================
def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (database, API)")
    config.addinivalue_line("markers", "slow: Slow running tests")


def _alembic_config() -> AlembicConfig:
    cfg = AlembicConfig(str(ROOT / "rewind" / "migrations" / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "rewind" / "migrations"))
    cfg.set_main_option("rewind_env", "testing")
    db_url = os.environ.get("TEST_DATABASE_URL")
    if not db_url:
        (ROOT / "instance").mkdir(parents=True, exist_ok=True)
        db_url = f"sqlite:///{ROOT / 'instance' / 'test.db'}"
    cfg.set_main_option("sqlalchemy.url", db_url)
    return cfg


@pytest.fixture(scope="session", autouse=True)
def migrated_db():
    """Apply migrations once per session to mirror production schema."""
    cfg = _alembic_config()
    command.upgrade(cfg, "head")
    yield
    try:
        command.downgrade(cfg, "base")
    except Exception:
        # Downgrade is optional for local/CI runs
        pass


@pytest.fixture()
def app(migrated_db):
    """
    Create a per-test app with an isolated database transaction.

    Each test runs in its own transaction + savepoint so committed token sets,
    states and revoked sessions roll back afterwards.
    """
    app = create_app("testing")
    ctx = app.app_context()
    ctx.push()

    if db.engine.dialect.name == "sqlite":
        # pysqlite never emits BEGIN itself, so the outer SAVEPOINT would
        # commit on release; hand transaction control to SQLAlchemy.
        @sa.event.listens_for(db.engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @sa.event.listens_for(db.engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN")

    connection = db.engine.connect()
    transaction = connection.begin()

    session_factory = scoped_session(sessionmaker(bind=connection))
    db.session = session_factory
    session = session_factory()
    session.begin_nested()

    @sa.event.listens_for(session, "after_transaction_end")
    def restart_savepoint(sess, trans):
        if trans.nested and not trans._parent.nested:
            sess.begin_nested()

    try:
        yield app
    finally:
        sa.event.remove(session, "after_transaction_end", restart_savepoint)
        session_factory.remove()
        transaction.rollback()
        connection.close()
        ctx.pop()


@pytest.fixture()
def client(app):
    return app.test_client()


def _response(status: int = 200, body=None, headers=None):
    resp = MagicMock()
    resp.status_code = status
    resp.headers = dict(headers or {})
    resp.ok = status < 400
    if body is None:
        resp.text = ""
        resp.json.side_effect = ValueError("no JSON body")
    else:
        resp.text = json.dumps(body)
        resp.json.return_value = body
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} error", response=resp)
    return resp


@pytest.fixture
def fake_response():
    """Factory for canned ``requests`` responses."""
    return _response


# ==================== In-memory OAuth stores ====================
class MemoryTokenCache(TokenCache):
    """Dict-backed token cache for exercising the OAuth client without a database."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries = {}

    def get(self, identity):
        with self._lock:
            return self._entries.get(identity)

    def set(self, token_set):
        with self._lock:
            self._entries[token_set.identity] = token_set

    def deactivate(self, identity, reason=None, *, expected_access_token=None):
        with self._lock:
            current = self._entries.get(identity)
            if current is None:
                return False
            if expected_access_token is not None and current.access_token != expected_access_token:
                return False
            self._entries[identity] = current.deactivated(reason)
            return True


class MemoryStateStore(StateStore):
    def __init__(self):
        self._lock = threading.Lock()
        self._states = {}

    def save(self, state):
        with self._lock:
            self._states[state.state] = replace(state, created_at=state.created_at or datetime.utcnow())

    def pop(self, state_key):
        with self._lock:
            return self._states.pop(state_key, None)


@pytest.fixture
def memory_token_cache():
    return MemoryTokenCache()


@pytest.fixture
def memory_state_store():
    return MemoryStateStore()
