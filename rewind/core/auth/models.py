"""Persistence models for OAuth token sets, in-flight authorizations and sessions."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Mapped, mapped_column

from rewind.extensions import db


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow)


class OAuthTokenSet(db.Model, TimestampMixin):
    """
    Token set issued to one account (DID) by its authorization server.

    Each identity has at most one row. Revocation keeps the row as an inactive
    tombstone with the credential material cleared, so a later restore can tell
    "never signed in" apart from "signed out".
    """

    __tablename__ = "oauth_token_set"

    id: Mapped[int] = mapped_column(primary_key=True)
    identity: Mapped[str] = mapped_column(db.String(255), unique=True, nullable=False)

    # Where the tokens came from and where they are spent
    issuer: Mapped[str] = mapped_column(db.String(512), nullable=False)
    pds_url: Mapped[str] = mapped_column(db.String(512), nullable=False)
    token_endpoint: Mapped[str] = mapped_column(db.String(512), nullable=False)
    revocation_endpoint: Mapped[str | None] = mapped_column(db.String(512))

    access_token: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    refresh_token: Mapped[str | None] = mapped_column(db.Text)
    token_type: Mapped[str] = mapped_column(db.String(32), default="DPoP")
    scope: Mapped[str | None] = mapped_column(db.String(512))
    expires_at: Mapped[datetime | None] = mapped_column()

    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    error_message: Mapped[str | None] = mapped_column(db.String(512))

    # ES256 key the tokens are DPoP-bound to, and the last nonce the server issued
    dpop_private_key: Mapped[str | None] = mapped_column(db.Text)
    dpop_authserver_nonce: Mapped[str | None] = mapped_column(db.String(255))


class OAuthAuthorizationState(db.Model):
    """An authorization started by ``authorize`` and not yet completed by ``callback``."""

    __tablename__ = "oauth_authorization_state"

    state: Mapped[str] = mapped_column(db.String(128), primary_key=True)
    code_verifier: Mapped[str] = mapped_column(db.String(128), nullable=False)
    issuer: Mapped[str] = mapped_column(db.String(512), nullable=False)
    token_endpoint: Mapped[str] = mapped_column(db.String(512), nullable=False)
    revocation_endpoint: Mapped[str | None] = mapped_column(db.String(512))
    # Known when the login hint was a handle or DID; empty for PDS logins.
    expected_identity: Mapped[str | None] = mapped_column(db.String(255))
    pds_url: Mapped[str | None] = mapped_column(db.String(512))
    dpop_private_key: Mapped[str | None] = mapped_column(db.Text)
    dpop_authserver_nonce: Mapped[str | None] = mapped_column(db.String(255))
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False, index=True)


class RevokedSession(db.Model):
    """Session ids destroyed by logout or by a failed restore."""

    __tablename__ = "revoked_session"

    sid: Mapped[str] = mapped_column(db.String(64), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)
