"""Authenticated XRPC calls against a user's PDS, with DPoP-bound access tokens."""

from __future__ import annotations

from typing import Any, Dict, Optional

import requests
from cryptography.hazmat.primitives.asymmetric import ec

from rewind.core.auth.dpop import dpop_request
from rewind.core.auth.token_cache import TokenSet


class XrpcError(Exception):
    """Raised when an XRPC call fails, times out or returns a non-JSON body."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class PdsAgent:
    """
    Request-scoped credential handle built from a restored token set.

    Never persisted; a new agent is built for every request.
    """

    def __init__(
        self,
        token_set: TokenSet,
        http=None,
        *,
        dpop_key: Optional[ec.EllipticCurvePrivateKey] = None,
        timeout: float = 10.0,
        appview_proxy: Optional[str] = None,
    ):
        self._token_set = token_set
        self.http = http or requests
        self.timeout = timeout
        self.appview_proxy = appview_proxy
        self._dpop_key = dpop_key
        # Resource servers hand out their own nonces, separate from the auth server's
        self._pds_nonce: Optional[str] = None

    @property
    def identity(self) -> str:
        return self._token_set.identity

    @property
    def pds_url(self) -> str:
        return self._token_set.pds_url

    @property
    def access_token(self) -> str:
        return self._token_set.access_token

    def xrpc_get(
        self,
        nsid: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        proxy: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        token = self._token_set.access_token
        scheme = "DPoP" if self._dpop_key is not None else self._token_set.token_type
        headers = {"Authorization": f"{scheme} {token}"}
        if proxy:
            headers["atproto-proxy"] = proxy

        query = {}
        for key, value in (params or {}).items():
            if value is None:
                continue
            # XRPC booleans are lowercase literals.
            query[key] = ("true" if value else "false") if isinstance(value, bool) else value

        try:
            resp = self._get(f"{self.pds_url}/xrpc/{nsid}", headers, query, timeout or self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise XrpcError(f"{nsid} failed: {e}", status=status) from e
        except (requests.RequestException, ValueError) as e:
            raise XrpcError(f"{nsid} failed: {e}") from e

        if not isinstance(data, dict):
            raise XrpcError(f"{nsid} returned an unexpected body")
        return data

    def list_records(
        self,
        collection: str,
        *,
        limit: int = 10,
        cursor: Optional[str] = None,
        reverse: bool = False,
        repo: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """``com.atproto.repo.listRecords`` for this account (or ``repo``)."""
        return self.xrpc_get(
            "com.atproto.repo.listRecords",
            {
                "repo": repo or self.identity,
                "collection": collection,
                "limit": limit,
                "cursor": cursor,
                "reverse": reverse,
            },
            timeout=timeout,
        )

    def get_profile(self, actor: Optional[str] = None) -> Dict[str, Any]:
        """``app.bsky.actor.getProfile``, proxied to the app view."""
        return self.xrpc_get(
            "app.bsky.actor.getProfile",
            {"actor": actor or self.identity},
            proxy=self.appview_proxy,
        )

    def _get(self, url: str, headers: Dict[str, str], params: Dict[str, Any], timeout: float):
        if self._dpop_key is None:
            return self.http.get(url, headers=headers, params=params, timeout=timeout)
        resp, self._pds_nonce = dpop_request(
            self.http,
            "GET",
            url,
            self._dpop_key,
            nonce=self._pds_nonce,
            access_token=self._token_set.access_token,
            headers=headers,
            params=params,
            timeout=timeout,
        )
        return resp
