"""Home page: today's memory for the signed-in account."""

from __future__ import annotations

from flask import Blueprint, current_app, make_response, render_template

from rewind.context import get_context
from rewind.core.utils.http import apply_session_cookie, read_session_cookie
from rewind.domains.memories.services import build_memory_view

memory_pages_bp = Blueprint("memory_pages", __name__)


@memory_pages_bp.get("/")
def home():
    ctx = get_context()
    # If the user is signed in, get an agent which talks to their PDS
    result = ctx.session_manager.resolve(read_session_cookie())
    view = build_memory_view(result.agent, ctx.clock(), **ctx.memory_options)

    resp = make_response(render_template("home.html", view=view, signed_in=result.agent is not None))
    resp.headers["Vary"] = "Cookie"
    if result.agent is not None:
        # Personalised; never cache publicly
        resp.headers["Cache-Control"] = f"max-age={current_app.config['STATIC_MAX_AGE']}, private"
    return apply_session_cookie(resp, result)
