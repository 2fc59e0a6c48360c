"""Pydantic schemas for the authorization flow."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LoginRequest(BaseModel):
    """Login form body: a handle, a DID or a service (PDS) URL."""

    input: str = Field(min_length=1, max_length=512)

    @field_validator("input")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Invalid input")
        return value


class AuthorizationServerMetadata(BaseModel):
    """Subset of RFC 8414 metadata the client relies on."""

    model_config = ConfigDict(extra="ignore")

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    pushed_authorization_request_endpoint: Optional[str] = None
    revocation_endpoint: Optional[str] = None
    scopes_supported: list[str] = []


class TokenResponse(BaseModel):
    """Token endpoint response; ``sub`` carries the account DID."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(min_length=1)
    token_type: str = "DPoP"
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None
    sub: Optional[str] = None


class CallbackParams(BaseModel):
    """Query string of the authorization redirect."""

    model_config = ConfigDict(extra="ignore")

    state: Optional[str] = None
    code: Optional[str] = None
    iss: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None
