"""Exceptions raised by the OAuth client and session layer."""

from __future__ import annotations


class OAuthError(Exception):
    """Base exception for authorization operations."""

    pass


class ResolutionError(OAuthError):
    """Raised when a login hint cannot be mapped to an account or service."""

    pass


class ProtocolError(OAuthError):
    """Raised when the authorization server rejects a request or does not answer."""

    pass


class CallbackError(OAuthError):
    """Raised when callback parameters are invalid, expired or replayed."""

    pass


class RestoreError(OAuthError):
    """Raised when a stored token set can no longer be used."""

    pass
