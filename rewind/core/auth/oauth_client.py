"""AT Protocol OAuth client: authorize, callback, restore and revoke.

Tokens are DPoP-bound: every token set gets its own ES256 key, and every call
to the authorization server carries a proof signed with it. Public deployments
authenticate with ``private_key_jwt``; loopback development clients stay public.
PKCE (S256) is always used, pushed authorization requests when offered.

Token sets are persisted through an injected ``TokenCache``; in-flight
authorizations through a ``StateStore``. No session state is touched here.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlencode

import requests
from cryptography.hazmat.primitives.asymmetric import ec
from pydantic import ValidationError

from rewind.core.atproto.agent import PdsAgent
from rewind.core.atproto.identity import IdentityResolver, is_did
from rewind.core.auth.dpop import dpop_request
from rewind.core.auth.errors import CallbackError, ProtocolError, ResolutionError, RestoreError
from rewind.core.auth.keys import ALGORITHM, CLIENT_ASSERTION_TYPE, ClientKey, generate_key, key_from_pem, key_to_pem
from rewind.core.auth.schemas import CallbackParams, TokenResponse
from rewind.core.auth.token_cache import AuthorizationState, StateStore, TokenCache, TokenSet

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/oauth/callback"
CLIENT_METADATA_PATH = "/oauth-client-metadata.json"
JWKS_PATH = "/.well-known/jwks.json"
PRIVATE_KEY_JWT = "private_key_jwt"


@dataclass(frozen=True)
class CallbackResult:
    identity: str
    token_set: TokenSet


def generate_pkce_pair() -> tuple[str, str]:
    """Return ``(code_verifier, code_challenge)`` for the S256 method."""
    verifier = secrets.token_urlsafe(48)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


def build_client_metadata(
    public_url: str,
    *,
    scope: str,
    client_name: str = "ATRewind",
    port: int = 8080,
    client_key: Optional[ClientKey] = None,
) -> Dict[str, Any]:
    """
    Client metadata document served at ``/oauth-client-metadata.json``.

    Without a public URL the app runs as a loopback development client, whose
    ``client_id`` encodes its redirect URI and scope. Loopback clients cannot
    hold a key, so only public deployments with ``client_key`` are confidential.
    """
    public_url = (public_url or "").rstrip("/")
    loopback = not public_url or "localhost" in public_url or "127.0.0.1" in public_url
    if not loopback:
        client_id = f"{public_url}{CLIENT_METADATA_PATH}"
        redirect_uri = f"{public_url}{CALLBACK_PATH}"
    else:
        redirect_uri = f"http://127.0.0.1:{port}{CALLBACK_PATH}"
        client_id = "http://localhost?" + urlencode({"redirect_uri": redirect_uri, "scope": scope})
        public_url = f"http://127.0.0.1:{port}"

    metadata = {
        "client_id": client_id,
        "client_name": client_name,
        "client_uri": public_url,
        "redirect_uris": [redirect_uri],
        "scope": scope,
        "grant_types": ["authorization_code", "refresh_token"],
        "response_types": ["code"],
        "application_type": "web",
        "token_endpoint_auth_method": "none",
        "dpop_bound_access_tokens": True,
    }
    if client_key is not None and not loopback:
        metadata["token_endpoint_auth_method"] = PRIVATE_KEY_JWT
        metadata["token_endpoint_auth_signing_alg"] = ALGORITHM
        metadata["jwks_uri"] = f"{public_url}{JWKS_PATH}"
    return metadata


class AuthorizationClient:
    """Three-legged delegated authorization against a user's authorization server."""

    def __init__(
        self,
        *,
        client_metadata: Dict[str, Any],
        resolver: IdentityResolver,
        token_cache: TokenCache,
        state_store: StateStore,
        http=None,
        timeout: float = 10.0,
        state_ttl_seconds: int = 600,
        pds_timeout: float = 10.0,
        appview_proxy: Optional[str] = None,
        client_key: Optional[ClientKey] = None,
    ):
        self.client_metadata = client_metadata
        self.resolver = resolver
        self.token_cache = token_cache
        self.state_store = state_store
        self.http = http or requests
        self.timeout = timeout
        self.state_ttl_seconds = state_ttl_seconds
        self.pds_timeout = pds_timeout
        self.appview_proxy = appview_proxy
        self.client_key = client_key

    @property
    def client_id(self) -> str:
        return self.client_metadata["client_id"]

    @property
    def redirect_uri(self) -> str:
        return self.client_metadata["redirect_uris"][0]

    @property
    def is_confidential(self) -> bool:
        return self.client_key is not None and self.client_metadata.get("token_endpoint_auth_method") == PRIVATE_KEY_JWT

    @property
    def jwks(self) -> Dict[str, Any]:
        """Public half of the client key; empty for public clients."""
        if not self.is_confidential:
            return {"keys": []}
        return {"keys": [self.client_key.jwk]}

    def _client_auth(self, issuer: str) -> Dict[str, str]:
        params = {"client_id": self.client_id}
        if self.is_confidential:
            params["client_assertion_type"] = CLIENT_ASSERTION_TYPE
            params["client_assertion"] = self.client_key.client_assertion(self.client_id, issuer)
        return params

    # ------------------------------------------------------------------ authorize

    def authorize(self, hint: str, scope: str) -> str:
        """
        Start an authorization and return the URL to redirect the user to.

        Args:
            hint: Handle, DID or service URL entered by the user
            scope: Space-separated scopes to request

        Raises:
            ResolutionError: If the hint cannot be mapped to a service
            ProtocolError: If the authorization server rejects the request
        """
        account = self.resolver.resolve(hint)
        server = account.server

        if server.scopes_supported:
            unsupported = set(scope.split()) - set(server.scopes_supported)
            if unsupported:
                raise ProtocolError(f"Scope not supported: {' '.join(sorted(unsupported))}")

        verifier, challenge = generate_pkce_pair()
        state = secrets.token_urlsafe(24)
        dpop_key = generate_key()
        nonce = None
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "code_challenge": challenge,
            "code_challenge_method": "S256",
            "state": state,
            "scope": scope,
        }
        login_hint = account.handle or account.identity
        if login_hint:
            params["login_hint"] = login_hint

        if server.pushed_authorization_request_endpoint:
            data, nonce = self._post(
                server.pushed_authorization_request_endpoint,
                {**params, **self._client_auth(server.issuer)},
                dpop_key,
            )
            request_uri = data.get("request_uri")
            if not isinstance(request_uri, str) or not request_uri:
                raise ProtocolError("Authorization server returned no request_uri")
            query = {"client_id": self.client_id, "request_uri": request_uri}
        else:
            query = params

        self.state_store.save(
            AuthorizationState(
                state=state,
                code_verifier=verifier,
                issuer=server.issuer,
                token_endpoint=server.token_endpoint,
                revocation_endpoint=server.revocation_endpoint,
                expected_identity=account.identity,
                pds_url=account.pds_url if account.identity else None,
                dpop_private_key=key_to_pem(dpop_key),
                dpop_authserver_nonce=nonce,
                created_at=datetime.utcnow(),
            )
        )
        return f"{server.authorization_endpoint}?{urlencode(query)}"

    # ------------------------------------------------------------------ callback

    def callback(self, params: Mapping[str, str]) -> CallbackResult:
        """
        Complete an authorization from the redirect's query parameters.

        The matching state is consumed before anything else, so a replayed
        callback fails even if the first attempt failed too.

        Raises:
            CallbackError: On missing/unknown/expired state, error responses or mismatches
            ProtocolError: If the token exchange is rejected or times out
        """
        try:
            parsed = CallbackParams.model_validate(dict(params))
        except ValidationError as exc:
            raise CallbackError("Invalid callback parameters") from exc

        if not parsed.state:
            raise CallbackError("Missing state parameter")
        stored = self.state_store.pop(parsed.state)
        if stored is None:
            raise CallbackError("Unknown or already used authorization state")
        if stored.is_expired(self.state_ttl_seconds):
            raise CallbackError("Authorization request expired")
        if parsed.error:
            raise CallbackError(parsed.error_description or parsed.error)
        if not parsed.code:
            raise CallbackError("Missing authorization code")
        if parsed.iss and parsed.iss.rstrip("/") != stored.issuer.rstrip("/"):
            raise CallbackError("Issuer mismatch")
        try:
            dpop_key = key_from_pem(stored.dpop_private_key or "")
        except ValueError as exc:
            raise CallbackError("Authorization state has no usable DPoP key") from exc

        tokens, nonce = self._token_request(
            stored.token_endpoint,
            {
                "grant_type": "authorization_code",
                "code": parsed.code,
                "code_verifier": stored.code_verifier,
                "redirect_uri": self.redirect_uri,
                **self._client_auth(stored.issuer),
            },
            dpop_key,
            stored.dpop_authserver_nonce,
        )
        identity = tokens.sub
        if not identity or not is_did(identity):
            raise ProtocolError("Token response did not identify the account")
        if stored.expected_identity and identity != stored.expected_identity:
            raise CallbackError("Signed in account does not match the requested account")

        pds_url = stored.pds_url if stored.expected_identity else None
        if not pds_url:
            # Logins started from a service URL learn the account only now.
            try:
                pds_url = self.resolver.resolve_pds(identity)
                server = self.resolver.resolve_authorization_server(pds_url)
            except ResolutionError as exc:
                raise CallbackError(f"Unable to verify account {identity}") from exc
            if server.issuer.rstrip("/") != stored.issuer.rstrip("/"):
                raise CallbackError("Issuer is not authoritative for this account")

        token_set = TokenSet(
            identity=identity,
            issuer=stored.issuer,
            pds_url=pds_url,
            token_endpoint=stored.token_endpoint,
            revocation_endpoint=stored.revocation_endpoint,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_type=tokens.token_type,
            scope=tokens.scope,
            expires_at=_expires_at(tokens.expires_in),
            dpop_private_key=stored.dpop_private_key,
            dpop_authserver_nonce=nonce,
        )

        prior = self.token_cache.get(identity)
        if prior is not None and prior.is_active:
            self._revoke_remote(prior)
        self.token_cache.set(token_set)
        logger.info("OAuth callback completed for %s", identity)
        return CallbackResult(identity=identity, token_set=token_set)

    # ------------------------------------------------------------------ restore

    def restore(self, identity: str) -> Optional[PdsAgent]:
        """
        Build a credential handle for ``identity`` from its stored token set.

        Returns:
            Agent bound to the token set, or None if none was ever stored

        Raises:
            RestoreError: If the token set is revoked, corrupt or rejected on refresh
        """
        token_set = self.token_cache.get(identity)
        if token_set is None:
            return None
        if not token_set.is_active:
            raise RestoreError(f"Token set for {identity} has been revoked")
        if not (
            token_set.access_token
            and token_set.pds_url
            and token_set.token_endpoint
            and token_set.dpop_private_key
        ):
            raise RestoreError(f"Token set for {identity} is incomplete")
        try:
            dpop_key = key_from_pem(token_set.dpop_private_key)
        except ValueError as exc:
            raise RestoreError(f"Token set for {identity} has a corrupt DPoP key") from exc

        if token_set.is_expired:
            token_set = self._refresh(token_set, dpop_key)
            dpop_key = key_from_pem(token_set.dpop_private_key)

        return PdsAgent(
            token_set,
            self.http,
            dpop_key=dpop_key,
            timeout=self.pds_timeout,
            appview_proxy=self.appview_proxy,
        )

    def _refresh(self, token_set: TokenSet, dpop_key: ec.EllipticCurvePrivateKey) -> TokenSet:
        if not token_set.can_refresh:
            self.token_cache.deactivate(
                token_set.identity,
                "expired without refresh token",
                expected_access_token=token_set.access_token,
            )
            raise RestoreError("No refresh token available")

        payload = {
            "grant_type": "refresh_token",
            "refresh_token": token_set.refresh_token,
            **self._client_auth(token_set.issuer),
        }
        try:
            resp, nonce = self._send(token_set.token_endpoint, payload, dpop_key, token_set.dpop_authserver_nonce)
        except requests.RequestException as e:
            # Slow and down look the same; leave the token set for a later attempt.
            logger.warning("Token refresh for %s failed: %s", token_set.identity, e)
            raise RestoreError(f"Failed to refresh token: {e}") from e

        if resp.status_code in (400, 401):
            # The server no longer honours this grant.
            logger.warning("Token refresh rejected for %s: %s", token_set.identity, resp.text[:200])
            return self._after_rejected_refresh(token_set, f"refresh rejected ({resp.status_code})")
        try:
            resp.raise_for_status()
            tokens = TokenResponse.model_validate(resp.json())
        except (requests.RequestException, ValueError, ValidationError) as e:
            logger.warning("Token refresh for %s failed: %s", token_set.identity, e)
            raise RestoreError(f"Failed to refresh token: {e}") from e

        if tokens.sub and tokens.sub != token_set.identity:
            self.token_cache.deactivate(
                token_set.identity,
                "refresh returned another account",
                expected_access_token=token_set.access_token,
            )
            raise RestoreError("Refreshed token belongs to another account")
        if tokens.token_type.lower() != "dpop":
            raise RestoreError("Refresh did not return a DPoP-bound token")

        refreshed = replace(
            token_set,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token or token_set.refresh_token,
            token_type=tokens.token_type,
            scope=tokens.scope or token_set.scope,
            expires_at=_expires_at(tokens.expires_in),
            dpop_authserver_nonce=nonce,
        )
        self.token_cache.set(refreshed)
        return refreshed

    def _after_rejected_refresh(self, token_set: TokenSet, reason: str) -> TokenSet:
        """
        Deactivate the rejected token set unless another request already replaced it.

        Concurrent requests may refresh the same grant; the loser's rejection must
        not wipe the winner's tokens, so the newer set is used instead.
        """
        if self.token_cache.deactivate(token_set.identity, reason, expected_access_token=token_set.access_token):
            raise RestoreError("Refresh token rejected")
        current = self.token_cache.get(token_set.identity)
        if current is None or not current.is_active or not current.dpop_private_key or current.is_expired:
            raise RestoreError("Refresh token rejected")
        logger.info("Token set for %s was replaced concurrently; using the newer one", token_set.identity)
        return current

    # ------------------------------------------------------------------ revoke

    def revoke(self, identity: str) -> None:
        """
        Sign ``identity`` out: revoke remotely (best effort) and invalidate locally.

        Never raises for remote failures; they are logged.
        """
        token_set = self.token_cache.get(identity)
        if token_set is None:
            return
        if token_set.is_active:
            self._revoke_remote(token_set)
        self.token_cache.deactivate(identity, "revoked")

    def _revoke_remote(self, token_set: TokenSet) -> None:
        if not token_set.revocation_endpoint:
            logger.info("No revocation endpoint for %s; dropping tokens locally", token_set.issuer)
            return
        try:
            dpop_key = key_from_pem(token_set.dpop_private_key) if token_set.dpop_private_key else None
        except ValueError:
            logger.warning("Token set for %s has a corrupt DPoP key; skipping remote revocation", token_set.identity)
            return
        nonce = token_set.dpop_authserver_nonce
        tokens = [
            (token_set.refresh_token, "refresh_token"),
            (token_set.access_token, "access_token"),
        ]
        for token, hint in tokens:
            if not token:
                continue
            payload = {"token": token, "token_type_hint": hint, **self._client_auth(token_set.issuer)}
            try:
                resp, nonce = self._send(token_set.revocation_endpoint, payload, dpop_key, nonce)
                resp.raise_for_status()
            except requests.RequestException as e:
                logger.warning("Failed to revoke %s for %s: %s", hint, token_set.identity, e)

    # ------------------------------------------------------------------ http

    def _send(
        self,
        url: str,
        data: Dict[str, Any],
        dpop_key: Optional[ec.EllipticCurvePrivateKey],
        nonce: Optional[str] = None,
    ) -> Tuple[Any, Optional[str]]:
        if dpop_key is None:
            return self.http.post(url, data=data, timeout=self.timeout), nonce
        return dpop_request(self.http, "POST", url, dpop_key, nonce=nonce, data=data, timeout=self.timeout)

    def _post(
        self,
        url: str,
        data: Dict[str, Any],
        dpop_key: ec.EllipticCurvePrivateKey,
        nonce: Optional[str] = None,
    ) -> Tuple[Dict[str, Any], Optional[str]]:
        try:
            resp, nonce = self._send(url, data, dpop_key, nonce)
        except requests.RequestException as e:
            logger.error("OAuth request to %s failed: %s", url, e)
            raise ProtocolError(f"Authorization server unavailable: {e}") from e
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not resp.ok:
            detail = ""
            if isinstance(body, dict):
                detail = body.get("error_description") or body.get("error") or ""
            logger.error("OAuth request to %s rejected (%s): %s", url, resp.status_code, detail)
            raise ProtocolError(detail or f"Authorization server error ({resp.status_code})")
        if not isinstance(body, dict):
            raise ProtocolError("Authorization server returned an invalid response")
        return body, nonce

    def _token_request(
        self,
        url: str,
        data: Dict[str, Any],
        dpop_key: ec.EllipticCurvePrivateKey,
        nonce: Optional[str],
    ) -> Tuple[TokenResponse, Optional[str]]:
        body, nonce = self._post(url, data, dpop_key, nonce)
        try:
            tokens = TokenResponse.model_validate(body)
        except ValidationError as exc:
            raise ProtocolError("Invalid token response") from exc
        if tokens.token_type.lower() != "dpop":
            raise ProtocolError("Authorization server did not issue a DPoP-bound token")
        return tokens, nonce


def _expires_at(expires_in: Optional[int]) -> Optional[datetime]:
    if expires_in is None:
        return None
    return datetime.utcnow() + timedelta(seconds=expires_in)
