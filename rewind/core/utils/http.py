"""Session cookie helpers for controllers."""

from __future__ import annotations

from typing import Optional

from flask import current_app, request

from rewind.core.auth.session_manager import SessionResult


def read_session_cookie() -> Optional[str]:
    return request.cookies.get(current_app.config["AUTH_COOKIE_NAME"])


def apply_session_cookie(response, result: SessionResult):
    """Propagate the session outcome onto ``response``."""
    config = current_app.config
    name = config["AUTH_COOKIE_NAME"]
    if result.clear_cookie:
        response.delete_cookie(
            name,
            httponly=config["SESSION_COOKIE_HTTPONLY"],
            secure=config["SESSION_COOKIE_SECURE"],
            samesite=config["SESSION_COOKIE_SAMESITE"],
        )
    elif result.cookie:
        response.set_cookie(
            name,
            result.cookie,
            max_age=config["SESSION_TTL_SECONDS"],
            httponly=config["SESSION_COOKIE_HTTPONLY"],
            secure=config["SESSION_COOKIE_SECURE"],
            samesite=config["SESSION_COOKIE_SAMESITE"],
        )
    return response


def public_cache(response):
    response.headers["Cache-Control"] = f"max-age={current_app.config['STATIC_MAX_AGE']}, public"
    return response


def no_store(response):
    response.headers["Cache-Control"] = "no-store"
    return response
