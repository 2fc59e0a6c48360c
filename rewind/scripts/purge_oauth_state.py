"""CLI command for pruning stale OAuth and session bookkeeping.

Usage:
    flask purge-oauth-state               # Expired authorizations + old revoked sessions
    flask purge-oauth-state --dry-run
"""

from __future__ import annotations

import click
from flask import current_app
from flask.cli import with_appcontext


@click.command("purge-oauth-state")
@click.option("--dry-run", is_flag=True, help="Only report what would be removed")
@with_appcontext
def purge_oauth_state_command(dry_run: bool):
    """Remove expired authorization states and revoked sessions past the cookie lifetime."""
    from datetime import datetime, timedelta

    from rewind.core.auth.models import OAuthAuthorizationState, RevokedSession
    from rewind.core.auth.session_store import SessionRevocations
    from rewind.core.auth.token_cache import SqlStateStore
    from rewind.extensions import db

    state_ttl = current_app.config["OAUTH_STATE_TTL_SECONDS"]
    session_ttl = current_app.config["SESSION_TTL_SECONDS"]

    if dry_run:
        now = datetime.utcnow()
        states = db.session.query(OAuthAuthorizationState).filter(
            OAuthAuthorizationState.created_at < now - timedelta(seconds=state_ttl)
        ).count()
        sessions = db.session.query(RevokedSession).filter(
            RevokedSession.created_at < now - timedelta(seconds=session_ttl)
        ).count()
        click.echo(f"Would remove {states} authorization states and {sessions} revoked sessions")
        return

    states = SqlStateStore().purge_expired(state_ttl)
    sessions = SessionRevocations().purge_older_than(session_ttl)
    click.echo(f"Removed {states} authorization states and {sessions} revoked sessions")


def register_commands(app):
    """Register CLI commands with the app."""
    from rewind.scripts.client_key import generate_client_key_command

    app.cli.add_command(purge_oauth_state_command)
    app.cli.add_command(generate_client_key_command)
