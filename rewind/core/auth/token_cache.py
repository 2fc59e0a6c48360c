"""Token set cache and in-flight authorization state store.

The OAuth client only talks to the abstract ``TokenCache`` and ``StateStore``;
the app wires in the SQL implementations below.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError

from rewind.core.auth.models import OAuthAuthorizationState, OAuthTokenSet
from rewind.extensions import db

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenSet:
    """Credential material bound to one identity."""

    identity: str
    issuer: str
    pds_url: str
    token_endpoint: str
    access_token: str
    refresh_token: Optional[str] = None
    revocation_endpoint: Optional[str] = None
    token_type: str = "DPoP"
    scope: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True
    error_message: Optional[str] = None
    # PEM of the ES256 key the tokens are DPoP-bound to
    dpop_private_key: Optional[str] = None
    dpop_authserver_nonce: Optional[str] = None

    @property
    def is_expired(self) -> bool:
        """Check if the access token has expired."""
        if not self.expires_at:
            return False
        return datetime.utcnow() >= self.expires_at

    @property
    def can_refresh(self) -> bool:
        return bool(self.refresh_token)

    def deactivated(self, reason: Optional[str] = None) -> "TokenSet":
        """Tombstone copy: inactive, credential material cleared."""
        return replace(
            self,
            access_token="",
            refresh_token=None,
            expires_at=None,
            is_active=False,
            error_message=(reason or "")[:512] or None,
            dpop_private_key=None,
            dpop_authserver_nonce=None,
        )


@dataclass(frozen=True)
class AuthorizationState:
    """Everything ``callback`` needs to finish an authorization ``authorize`` started."""

    state: str
    code_verifier: str
    issuer: str
    token_endpoint: str
    revocation_endpoint: Optional[str] = None
    expected_identity: Optional[str] = None
    pds_url: Optional[str] = None
    dpop_private_key: Optional[str] = None
    dpop_authserver_nonce: Optional[str] = None
    created_at: Optional[datetime] = None

    def is_expired(self, ttl_seconds: int, now: Optional[datetime] = None) -> bool:
        if self.created_at is None:
            return True
        now = now or datetime.utcnow()
        return now - self.created_at > timedelta(seconds=ttl_seconds)


class TokenCache(ABC):
    """Persistent token sets keyed by identity.

    Writes replace the whole entry for one identity atomically. Entries for
    different identities never affect each other.
    """

    @abstractmethod
    def get(self, identity: str) -> Optional[TokenSet]:
        """Return the stored token set (active or tombstoned), or None."""

    @abstractmethod
    def set(self, token_set: TokenSet) -> None:
        """Store ``token_set``, replacing any entry for the same identity."""

    @abstractmethod
    def deactivate(
        self,
        identity: str,
        reason: Optional[str] = None,
        *,
        expected_access_token: Optional[str] = None,
    ) -> bool:
        """
        Clear credential material for ``identity`` and mark it inactive.

        With ``expected_access_token`` the entry is only touched while it still
        holds that access token, so a newer token set written in the meantime
        survives. Returns whether an entry was deactivated.
        """


class StateStore(ABC):
    """Short-lived storage for authorizations in flight."""

    @abstractmethod
    def save(self, state: AuthorizationState) -> None:
        """Persist a new authorization state."""

    @abstractmethod
    def pop(self, state_key: str) -> Optional[AuthorizationState]:
        """Remove and return the state. A second pop of the same key returns None."""


def _to_token_set(row: OAuthTokenSet) -> TokenSet:
    return TokenSet(
        identity=row.identity,
        issuer=row.issuer,
        pds_url=row.pds_url,
        token_endpoint=row.token_endpoint,
        revocation_endpoint=row.revocation_endpoint,
        access_token=row.access_token or "",
        refresh_token=row.refresh_token,
        token_type=row.token_type or "DPoP",
        scope=row.scope,
        expires_at=row.expires_at,
        is_active=bool(row.is_active),
        error_message=row.error_message,
        dpop_private_key=row.dpop_private_key,
        dpop_authserver_nonce=row.dpop_authserver_nonce,
    )


def _apply(row: OAuthTokenSet, token_set: TokenSet) -> None:
    row.issuer = token_set.issuer
    row.pds_url = token_set.pds_url
    row.token_endpoint = token_set.token_endpoint
    row.revocation_endpoint = token_set.revocation_endpoint
    row.access_token = token_set.access_token
    row.refresh_token = token_set.refresh_token
    row.token_type = token_set.token_type
    row.scope = token_set.scope
    row.expires_at = token_set.expires_at
    row.is_active = token_set.is_active
    row.error_message = token_set.error_message
    row.dpop_private_key = token_set.dpop_private_key
    row.dpop_authserver_nonce = token_set.dpop_authserver_nonce


class SqlTokenCache(TokenCache):
    """Token cache on the ``oauth_token_set`` table (one row per identity)."""

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session or db.session

    def get(self, identity: str) -> Optional[TokenSet]:
        row = self.session.query(OAuthTokenSet).filter_by(identity=identity).first()
        return _to_token_set(row) if row else None

    def set(self, token_set: TokenSet) -> None:
        session = self.session
        row = session.query(OAuthTokenSet).filter_by(identity=token_set.identity).first()
        if row is None:
            row = OAuthTokenSet(identity=token_set.identity)
            session.add(row)
        _apply(row, token_set)
        try:
            session.commit()
        except IntegrityError:
            # A concurrent callback inserted the row first; last writer wins.
            session.rollback()
            logger.info("token set for %s written concurrently; replacing", token_set.identity)
            row = session.query(OAuthTokenSet).filter_by(identity=token_set.identity).one()
            _apply(row, token_set)
            session.commit()

    def deactivate(
        self,
        identity: str,
        reason: Optional[str] = None,
        *,
        expected_access_token: Optional[str] = None,
    ) -> bool:
        session = self.session
        query = session.query(OAuthTokenSet).filter(OAuthTokenSet.identity == identity)
        if expected_access_token is not None:
            query = query.filter(OAuthTokenSet.access_token == expected_access_token)
        # Single conditional UPDATE so a concurrent writer is never overwritten
        count = query.update(
            {
                OAuthTokenSet.access_token: "",
                OAuthTokenSet.refresh_token: None,
                OAuthTokenSet.expires_at: None,
                OAuthTokenSet.is_active: False,
                OAuthTokenSet.error_message: (reason or "")[:512] or None,
                OAuthTokenSet.dpop_private_key: None,
                OAuthTokenSet.dpop_authserver_nonce: None,
                OAuthTokenSet.updated_at: datetime.utcnow(),
            },
            synchronize_session=False,
        )
        session.commit()
        session.expire_all()
        return bool(count)


class SqlStateStore(StateStore):
    """Authorization states on the ``oauth_authorization_state`` table."""

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session or db.session

    def save(self, state: AuthorizationState) -> None:
        self.session.add(
            OAuthAuthorizationState(
                state=state.state,
                code_verifier=state.code_verifier,
                issuer=state.issuer,
                token_endpoint=state.token_endpoint,
                revocation_endpoint=state.revocation_endpoint,
                expected_identity=state.expected_identity,
                pds_url=state.pds_url,
                dpop_private_key=state.dpop_private_key,
                dpop_authserver_nonce=state.dpop_authserver_nonce,
                created_at=state.created_at or datetime.utcnow(),
            )
        )
        self.session.commit()

    def pop(self, state_key: str) -> Optional[AuthorizationState]:
        session = self.session
        row = session.get(OAuthAuthorizationState, state_key)
        if row is None:
            return None
        found = AuthorizationState(
            state=row.state,
            code_verifier=row.code_verifier,
            issuer=row.issuer,
            token_endpoint=row.token_endpoint,
            revocation_endpoint=row.revocation_endpoint,
            expected_identity=row.expected_identity,
            pds_url=row.pds_url,
            dpop_private_key=row.dpop_private_key,
            dpop_authserver_nonce=row.dpop_authserver_nonce,
            created_at=row.created_at,
        )
        session.expunge(row)
        # Conditional delete: only the request that removes the row may use it.
        deleted = (
            session.query(OAuthAuthorizationState)
            .filter(OAuthAuthorizationState.state == state_key)
            .delete(synchronize_session=False)
        )
        session.commit()
        return found if deleted else None

    def purge_expired(self, ttl_seconds: int) -> int:
        cutoff = datetime.utcnow() - timedelta(seconds=ttl_seconds)
        count = (
            self.session.query(OAuthAuthorizationState)
            .filter(OAuthAuthorizationState.created_at < cutoff)
            .delete(synchronize_session=False)
        )
        self.session.commit()
        return count
