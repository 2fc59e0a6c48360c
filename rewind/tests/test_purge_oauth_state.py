from datetime import datetime, timedelta

import pytest

pytestmark = pytest.mark.integration

from rewind.core.auth.models import OAuthAuthorizationState, RevokedSession
from rewind.extensions import db


@pytest.fixture
def stale_rows(app):
    old = datetime.utcnow() - timedelta(days=30)
    db.session.add_all(
        [
            OAuthAuthorizationState(
                state="stale-state", code_verifier="v", issuer="https://a", token_endpoint="https://a/t", created_at=old
            ),
            OAuthAuthorizationState(state="live-state", code_verifier="v", issuer="https://a", token_endpoint="https://a/t"),
            RevokedSession(sid="stale-sid", created_at=old),
            RevokedSession(sid="live-sid"),
        ]
    )
    db.session.commit()


def test_dry_run_reports_without_deleting(app, stale_rows):
    result = app.test_cli_runner().invoke(args=["purge-oauth-state", "--dry-run"])

    assert result.exit_code == 0
    assert "Would remove 1 authorization states and 1 revoked sessions" in result.output
    assert db.session.query(OAuthAuthorizationState).count() == 2


def test_purge(app, stale_rows):
    result = app.test_cli_runner().invoke(args=["purge-oauth-state"])

    assert result.exit_code == 0
    assert "Removed 1 authorization states and 1 revoked sessions" in result.output
    assert db.session.query(OAuthAuthorizationState).count() == 1
    assert db.session.query(RevokedSession).count() == 1
