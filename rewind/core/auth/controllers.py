"""Auth HTTP controllers: login, signup, OAuth callback, logout, client metadata."""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, make_response, redirect, render_template, request, url_for
from pydantic import ValidationError

from rewind.context import get_context
from rewind.core.auth.errors import OAuthError, ResolutionError
from rewind.core.auth.schemas import LoginRequest
from rewind.core.utils.http import apply_session_cookie, no_store, public_cache, read_session_cookie
from rewind.extensions import limiter

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__)


def _login_page(error: str | None = None, status: int = 200):
    resp = make_response(render_template("login.html", error=error), status)
    return no_store(resp) if error else public_cache(resp)


@auth_bp.get("/oauth-client-metadata.json")
def client_metadata():
    return public_cache(jsonify(get_context().oauth_client.client_metadata))


@auth_bp.get("/.well-known/jwks.json")
def jwks():
    return public_cache(jsonify(get_context().oauth_client.jwks))


@auth_bp.get("/oauth/callback")
@limiter.limit("30/minute")
def oauth_callback():
    """Complete the OAuth flow and sign the account in."""
    ctx = get_context()
    result = ctx.session_manager.complete_login(read_session_cookie(), request.args.to_dict())
    if not result.ok:
        target = url_for("auth.login_page", error=result.error)
    else:
        target = url_for("memory_pages.home")
    resp = no_store(redirect(target))
    return apply_session_cookie(resp, result)


@auth_bp.get("/login")
def login_page():
    error = request.args.get("error")
    return _login_page(error)


@auth_bp.post("/login")
@limiter.limit("10/minute")
def login():
    """Initiate the OAuth flow from a handle, a DID or a PDS URL."""
    try:
        data = LoginRequest.model_validate(request.form.to_dict())
    except ValidationError:
        return _login_page("Invalid input", 400)

    try:
        url = get_context().oauth_client.authorize(data.input, current_app.config["OAUTH_SCOPE"])
    except OAuthError as err:
        logger.error("oauth authorize failed: %s", err)
        return _login_page(str(err) or "unexpected error", 400)
    return no_store(redirect(url))


@auth_bp.get("/signup")
@limiter.limit("10/minute")
def signup():
    """Send new users to the configured PDS to create an account."""
    service = current_app.config["PDS_URL"]
    try:
        url = get_context().oauth_client.authorize(service, current_app.config["OAUTH_SCOPE"])
    except OAuthError as err:
        logger.error("oauth authorize failed: %s", err)
        message = str(err) if isinstance(err, ResolutionError) else "couldn't initiate login"
        return _login_page(message, 502)
    return no_store(redirect(url))


@auth_bp.post("/logout")
def logout():
    result = get_context().session_manager.logout(read_session_cookie())
    resp = no_store(redirect(url_for("memory_pages.home")))
    return apply_session_cookie(resp, result)
