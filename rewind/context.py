"""Per-app service wiring shared by the controllers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict
from zoneinfo import ZoneInfo

from flask import Flask, current_app

from rewind.core.atproto.identity import IdentityResolver
from rewind.core.auth.keys import load_client_key
from rewind.core.auth.oauth_client import AuthorizationClient, build_client_metadata
from rewind.core.auth.session_manager import SessionManager
from rewind.core.auth.session_store import SessionStore
from rewind.core.auth.token_cache import SqlStateStore, SqlTokenCache

EXTENSION_KEY = "rewind"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AppContext:
    oauth_client: AuthorizationClient
    session_store: SessionStore
    session_manager: SessionManager
    memory_options: Dict[str, Any] = field(default_factory=dict)
    clock: Callable[[], datetime] = utcnow


def create_context(app: Flask) -> AppContext:
    config = app.config
    http_timeout = config["OAUTH_HTTP_TIMEOUT"]
    client_key = load_client_key(config["OAUTH_PRIVATE_KEY"], config["OAUTH_KEY_ID"])

    resolver = IdentityResolver(
        plc_directory_url=config["PLC_DIRECTORY_URL"],
        handle_resolver_url=config["HANDLE_RESOLVER_URL"],
        timeout=http_timeout,
    )
    oauth_client = AuthorizationClient(
        client_metadata=build_client_metadata(
            config["PUBLIC_URL"],
            scope=config["OAUTH_SCOPE"],
            client_name=config["CLIENT_NAME"],
            port=config["PORT"],
            client_key=client_key,
        ),
        resolver=resolver,
        token_cache=SqlTokenCache(),
        state_store=SqlStateStore(),
        timeout=http_timeout,
        state_ttl_seconds=config["OAUTH_STATE_TTL_SECONDS"],
        pds_timeout=config["PDS_HTTP_TIMEOUT"],
        appview_proxy=config["APPVIEW_PROXY"],
        client_key=client_key,
    )
    session_store = SessionStore(config["SECRET_KEY"], max_age=config["SESSION_TTL_SECONDS"])
    return AppContext(
        oauth_client=oauth_client,
        session_store=session_store,
        session_manager=SessionManager(session_store, oauth_client),
        memory_options={
            "tz": ZoneInfo(config["MEMORY_TIMEZONE"]),
            "collection": config["MEMORY_COLLECTION"],
            "limit": config["MEMORY_PAGE_SIZE"],
            "max_pages": config["MEMORY_MAX_PAGES"],
            "timeout": config["PDS_HTTP_TIMEOUT"],
        },
    )


def get_context() -> AppContext:
    return current_app.extensions[EXTENSION_KEY]
