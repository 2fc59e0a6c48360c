"""Rewind: this day last year, from your own Bluesky repository."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from flask import Flask

from rewind.config import config_by_name
from rewind.context import EXTENSION_KEY, create_context
from rewind.extensions import init_extensions

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
PACKAGE_ROOT = Path(__file__).resolve().parent


def create_app(config_name: Optional[str] = None) -> Flask:
    """Build the app for ``config_name`` (falls back to ``APP_ENV``, then development)."""
    name = (config_name or os.environ.get("APP_ENV") or "development").lower()
    instance_dir = PROJECT_ROOT / "instance"
    instance_dir.mkdir(parents=True, exist_ok=True)

    app = Flask(
        __name__,
        instance_path=str(instance_dir),
        instance_relative_config=True,
        template_folder=str(PACKAGE_ROOT / "templates"),
    )
    app.config.from_object(config_by_name.get(name, config_by_name["development"]))
    app.config["SQLALCHEMY_DATABASE_URI"] = _absolute_sqlite_uri(app.config["SQLALCHEMY_DATABASE_URI"])

    init_extensions(app)
    _register_blueprints(app)
    _register_error_handlers(app)
    app.extensions[EXTENSION_KEY] = create_context(app)

    @app.get("/health")
    def health():
        return {"ok": True}, 200

    from rewind.scripts.purge_oauth_state import register_commands

    register_commands(app)
    logger.debug("rewind app created with %s config", name)
    return app


def _absolute_sqlite_uri(uri: str) -> str:
    # Relative sqlite paths resolve against the project root, not the cwd
    if not uri.startswith("sqlite:///"):
        return uri
    path = Path(uri[len("sqlite:///"):])
    if not path.is_absolute():
        path = PROJECT_ROOT / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{path}"


def _register_blueprints(app: Flask) -> None:
    from rewind.core.auth.controllers import auth_bp
    from rewind.domains.memories.controllers import memory_api_bp, memory_pages_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(memory_pages_bp)
    app.register_blueprint(memory_api_bp, url_prefix="/api/memories")


def _register_error_handlers(app: Flask) -> None:
    """JSON bodies for HTTP errors and anything unhandled."""
    from werkzeug.exceptions import HTTPException

    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException):
        return {"ok": False, "error": exc.description}, exc.code

    @app.errorhandler(Exception)
    def _unhandled(exc: Exception):
        app.logger.exception("Unhandled error: %s", exc)
        message = str(exc) if (app.debug or app.testing) else "unexpected_error"
        return {"ok": False, "error": message}, 500
