"""Session lifecycle: resolve, complete login, logout."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from rewind.core.atproto.agent import PdsAgent
from rewind.core.auth.errors import OAuthError, RestoreError
from rewind.core.auth.oauth_client import AuthorizationClient
from rewind.core.auth.session_store import SessionRecord, SessionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionResult:
    """
    Outcome of a session operation.

    ``cookie`` is a new cookie value to send; ``clear_cookie`` asks the caller to
    drop the cookie. When neither is set the client's cookie is left alone.
    """

    agent: Optional[PdsAgent] = None
    identity: Optional[str] = None
    cookie: Optional[str] = None
    clear_cookie: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SessionManager:
    """Joins the cookie store with the OAuth client. Holds no per-request state."""

    def __init__(self, store: SessionStore, client: AuthorizationClient):
        self.store = store
        self.client = client

    def resolve(self, token: Optional[str]) -> SessionResult:
        """Return an agent for the signed-in account, or an anonymous result."""
        record = self.store.load(token)
        if record.is_empty:
            return SessionResult()

        try:
            agent = self.client.restore(record.identity)
        except RestoreError as err:
            logger.warning("oauth restore failed for %s: %s", record.identity, err)
            agent = None

        if agent is None:
            # Stale session: forget it so it never resurfaces.
            self.store.destroy(token)
            return SessionResult(clear_cookie=True)

        # Re-sign to slide the cookie's expiry forward.
        return SessionResult(agent=agent, identity=record.identity, cookie=self.store.save(record))

    def complete_login(self, token: Optional[str], params: Mapping[str, str]) -> SessionResult:
        """Finish an OAuth callback and sign the returned account in."""
        record = self.store.load(token)

        # If the user is already signed in, destroy the old credentials first.
        if not record.is_empty:
            try:
                self.client.revoke(record.identity)
            except Exception as err:
                logger.warning("revoking previous credentials for %s failed: %s", record.identity, err)

        try:
            result = self.client.callback(params)
        except OAuthError as err:
            logger.error("oauth callback failed: %s", err)
            return SessionResult(error=str(err) or "Login failed")

        if token:
            self.store.destroy(token)
        # Fresh session id on every login.
        new_record = SessionRecord.empty().with_identity(result.identity)
        return SessionResult(identity=result.identity, cookie=self.store.save(new_record))

    def logout(self, token: Optional[str]) -> SessionResult:
        """Revoke credentials (best effort) and always destroy the local session."""
        record = self.store.load(token)
        if not record.is_empty:
            try:
                self.client.revoke(record.identity)
            except Exception as err:
                logger.warning("Failed to revoke credentials for %s: %s", record.identity, err)
        self.store.destroy(token)
        return SessionResult(clear_cookie=True)
