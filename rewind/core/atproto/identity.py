"""Account and service resolution for AT Protocol logins.

A login hint is a handle (``alice.bsky.social``), a DID (``did:plc:...``) or
the URL of a PDS / entryway. Resolution turns it into the PDS that hosts the
account and the authorization server that protects that PDS.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote, urlparse

import requests
from pydantic import ValidationError

from rewind.core.auth.errors import ResolutionError
from rewind.core.auth.schemas import AuthorizationServerMetadata

logger = logging.getLogger(__name__)

HANDLE_RE = re.compile(
    r"^([a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$"
)
DID_RE = re.compile(r"^did:[a-z]+:[a-zA-Z0-9._:%-]+$")
PDS_SERVICE_ID = "#atproto_pds"


@dataclass(frozen=True)
class ResolvedAccount:
    """Result of resolving a login hint."""

    pds_url: str
    server: AuthorizationServerMetadata
    identity: Optional[str] = None
    handle: Optional[str] = None


def is_did(value: str) -> bool:
    return bool(DID_RE.match(value))


def is_service_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def normalize_handle(value: str) -> Optional[str]:
    handle = value.strip().lstrip("@").lower()
    return handle if HANDLE_RE.match(handle) else None


class IdentityResolver:
    """Resolves handles, DIDs and service URLs over HTTP."""

    def __init__(
        self,
        http=None,
        *,
        plc_directory_url: str = "https://plc.directory",
        handle_resolver_url: str = "https://bsky.social",
        timeout: float = 10.0,
    ):
        self.http = http or requests
        self.plc_directory_url = plc_directory_url.rstrip("/")
        self.handle_resolver_url = handle_resolver_url.rstrip("/")
        self.timeout = timeout

    def resolve(self, hint: str) -> ResolvedAccount:
        """
        Resolve a login hint.

        Raises:
            ResolutionError: If the hint is malformed or any lookup fails
        """
        hint = (hint or "").strip()
        if not hint:
            raise ResolutionError("Invalid input")

        if is_service_url(hint):
            pds_url = hint.rstrip("/")
            return ResolvedAccount(pds_url=pds_url, server=self.resolve_authorization_server(pds_url))

        handle: Optional[str] = None
        if is_did(hint):
            did = hint
        else:
            handle = normalize_handle(hint)
            if not handle:
                raise ResolutionError(f"Invalid handle or DID: {hint}")
            did = self.resolve_handle(handle)

        pds_url = self.resolve_pds(did)
        return ResolvedAccount(
            pds_url=pds_url,
            server=self.resolve_authorization_server(pds_url),
            identity=did,
            handle=handle,
        )

    def resolve_handle(self, handle: str) -> str:
        data = self._get_json(
            f"{self.handle_resolver_url}/xrpc/com.atproto.identity.resolveHandle",
            params={"handle": handle},
            what=f"handle {handle}",
        )
        did = data.get("did")
        if not isinstance(did, str) or not is_did(did):
            raise ResolutionError(f"Unable to resolve handle: {handle}")
        return did

    def resolve_did_document(self, did: str) -> Dict[str, Any]:
        if did.startswith("did:plc:"):
            url = f"{self.plc_directory_url}/{quote(did, safe=':')}"
        elif did.startswith("did:web:"):
            host = did[len("did:web:"):].replace("%3A", ":")
            url = f"https://{host}/.well-known/did.json"
        else:
            raise ResolutionError(f"Unsupported DID method: {did}")
        document = self._get_json(url, what=f"DID {did}")
        if document.get("id") != did:
            raise ResolutionError(f"DID document mismatch for {did}")
        return document

    def resolve_pds(self, did: str) -> str:
        document = self.resolve_did_document(did)
        for service in document.get("service") or []:
            if not isinstance(service, dict):
                continue
            service_id = service.get("id", "")
            if service_id == PDS_SERVICE_ID or service_id == f"{did}{PDS_SERVICE_ID}":
                endpoint = service.get("serviceEndpoint")
                if isinstance(endpoint, str) and is_service_url(endpoint):
                    return endpoint.rstrip("/")
        raise ResolutionError(f"No PDS found for {did}")

    def resolve_authorization_server(self, pds_url: str) -> AuthorizationServerMetadata:
        """Find the authorization server protecting ``pds_url`` and load its metadata."""
        issuer = pds_url
        try:
            resource = self._get_json(
                f"{pds_url}/.well-known/oauth-protected-resource",
                what=f"protected resource {pds_url}",
            )
            servers = resource.get("authorization_servers") or []
            if servers and isinstance(servers[0], str):
                issuer = servers[0].rstrip("/")
        except ResolutionError:
            # Entryways act as their own authorization server.
            logger.info("no protected resource metadata at %s; trying it as issuer", pds_url)

        data = self._get_json(
            f"{issuer}/.well-known/oauth-authorization-server",
            what=f"authorization server {issuer}",
        )
        try:
            metadata = AuthorizationServerMetadata.model_validate(data)
        except ValidationError as exc:
            raise ResolutionError(f"Invalid authorization server metadata at {issuer}") from exc
        if metadata.issuer.rstrip("/") != issuer:
            raise ResolutionError(f"Authorization server issuer mismatch at {issuer}")
        return metadata

    def _get_json(self, url: str, *, what: str, params: Optional[dict] = None) -> Dict[str, Any]:
        try:
            resp = self.http.get(url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Resolution of %s failed: %s", what, e)
            raise ResolutionError(f"Unable to resolve {what}") from e
        if not isinstance(data, dict):
            raise ResolutionError(f"Unable to resolve {what}")
        return data
