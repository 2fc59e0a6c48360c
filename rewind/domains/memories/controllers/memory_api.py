"""Memories JSON API."""

from __future__ import annotations

from flask import Blueprint, jsonify

from rewind.context import get_context
from rewind.core.utils.http import apply_session_cookie, read_session_cookie
from rewind.domains.memories.services import build_memory_view
from rewind.extensions import limiter

memory_api_bp = Blueprint("memory_api", __name__)


@memory_api_bp.get("/today")
@limiter.limit("120/minute")
def today():
    """
    Today's memory as JSON.

    Anonymous callers get ``401``; signed-in callers get
    ``{"ok": true, "selected_memory": ..., "profile": ...}`` where
    ``selected_memory`` is null when nothing was posted that day.
    """
    ctx = get_context()
    result = ctx.session_manager.resolve(read_session_cookie())
    if result.agent is None:
        resp = jsonify({"ok": False, "error": "unauthorized"})
        resp.status_code = 401
    else:
        view = build_memory_view(result.agent, ctx.clock(), **ctx.memory_options)
        resp = jsonify({"ok": True, **view.to_dict()})
        resp.headers["Cache-Control"] = "private, no-store"
    resp.headers["Vary"] = "Cookie"
    return apply_session_cookie(resp, result)
