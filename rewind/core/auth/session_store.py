"""Encrypted session cookie store.

The cookie carries ``{"sid": ..., "identity": ...}`` as a Fernet token (AES-CBC
plus HMAC) keyed from the app secret, so the account DID is never readable by
the browser. Tokens older than the session lifetime fail to decrypt.
Nothing about a session is cached in process; every request loads its own
record from the cookie. Destroyed sessions are remembered by ``sid`` so the
same cookie can never be replayed.
"""

from __future__ import annotations

import base64
import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from sqlalchemy.exc import IntegrityError

from rewind.core.auth.models import RevokedSession
from rewind.extensions import db

logger = logging.getLogger(__name__)

SESSION_SALT = "rewind-session"


def derive_fernet_key(secret_key: str, salt: str = SESSION_SALT) -> bytes:
    """Fernet key for ``secret_key``; ``salt`` separates it from other uses of the secret."""
    hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=salt.encode("utf-8"), info=b"session-cookie")
    return base64.urlsafe_b64encode(hkdf.derive(secret_key.encode("utf-8")))


def new_session_id() -> str:
    return secrets.token_urlsafe(16)


@dataclass(frozen=True)
class SessionRecord:
    """Who is signed in for one cookie. ``identity`` is None for anonymous sessions."""

    sid: str
    identity: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.identity is None

    @classmethod
    def empty(cls) -> "SessionRecord":
        return cls(sid=new_session_id())

    def with_identity(self, identity: Optional[str]) -> "SessionRecord":
        return SessionRecord(sid=self.sid, identity=identity)


class SessionRevocations:
    """Destroyed session ids, on the ``revoked_session`` table."""

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session or db.session

    def is_revoked(self, sid: str) -> bool:
        return self.session.get(RevokedSession, sid) is not None

    def add(self, sid: str) -> None:
        if self.is_revoked(sid):
            return
        self.session.add(RevokedSession(sid=sid))
        try:
            self.session.commit()
        except IntegrityError:
            # Already destroyed by a concurrent request.
            self.session.rollback()

    def purge_older_than(self, seconds: int) -> int:
        cutoff = datetime.utcnow() - timedelta(seconds=seconds)
        count = (
            self.session.query(RevokedSession)
            .filter(RevokedSession.created_at < cutoff)
            .delete(synchronize_session=False)
        )
        self.session.commit()
        return count


class SessionStore:
    """Turns cookie values into session records and back."""

    def __init__(
        self,
        secret_key: str,
        *,
        max_age: int,
        revocations: Optional[SessionRevocations] = None,
        salt: str = SESSION_SALT,
    ):
        self._fernet = Fernet(derive_fernet_key(secret_key, salt))
        self.max_age = max_age
        self.revocations = revocations or SessionRevocations()

    def load(self, token: Optional[str]) -> SessionRecord:
        """Return the record for ``token``; any problem yields a fresh empty record."""
        payload = self._decrypt(token, ttl=self.max_age)
        if payload is None:
            return SessionRecord.empty()

        sid = payload.get("sid")
        identity = payload.get("identity")
        if not isinstance(sid, str) or not sid:
            return SessionRecord.empty()
        if identity is not None and not isinstance(identity, str):
            return SessionRecord.empty()
        if self.revocations.is_revoked(sid):
            return SessionRecord.empty()
        return SessionRecord(sid=sid, identity=identity or None)

    def save(self, record: SessionRecord) -> str:
        """Encrypt ``record``; the result must be sent back to the client."""
        payload = {"sid": record.sid}
        if record.identity:
            payload["identity"] = record.identity
        return self._fernet.encrypt(json.dumps(payload).encode("utf-8")).decode("ascii")

    def destroy(self, token: Optional[str]) -> None:
        """Invalidate ``token`` so a later ``load`` of it returns an empty record."""
        # Expired tokens are destroyed too; only the MAC must hold.
        payload = self._decrypt(token, ttl=None)
        if payload is None:
            return
        sid = payload.get("sid")
        if isinstance(sid, str) and sid:
            self.revocations.add(sid)

    def _decrypt(self, token: Optional[str], *, ttl: Optional[int]) -> Optional[dict]:
        if not token:
            return None
        try:
            payload = json.loads(self._fernet.decrypt(token.encode("ascii"), ttl=ttl))
        except InvalidToken:
            logger.debug("Discarding invalid session cookie")
            return None
        except (ValueError, TypeError, UnicodeError):
            logger.debug("Discarding malformed session cookie")
            return None
        return payload if isinstance(payload, dict) else None
