"""Add OAuth token set, authorization state and revoked session tables.

Revision ID: 20261018_oauth_session_tables
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_oauth_session_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "oauth_token_set",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("identity", sa.String(255), nullable=False),
        sa.Column("issuer", sa.String(512), nullable=False),
        sa.Column("pds_url", sa.String(512), nullable=False),
        sa.Column("token_endpoint", sa.String(512), nullable=False),
        sa.Column("revocation_endpoint", sa.String(512), nullable=True),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("token_type", sa.String(32), nullable=False, server_default="Bearer"),
        sa.Column("scope", sa.String(512), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("error_message", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("identity", name="uq_oauth_token_set_identity"),
    )
    op.create_table(
        "oauth_authorization_state",
        sa.Column("state", sa.String(128), nullable=False),
        sa.Column("code_verifier", sa.String(128), nullable=False),
        sa.Column("issuer", sa.String(512), nullable=False),
        sa.Column("token_endpoint", sa.String(512), nullable=False),
        sa.Column("revocation_endpoint", sa.String(512), nullable=True),
        sa.Column("expected_identity", sa.String(255), nullable=True),
        sa.Column("pds_url", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("state"),
    )
    op.create_index(
        "ix_oauth_authorization_state_created_at", "oauth_authorization_state", ["created_at"]
    )
    op.create_table(
        "revoked_session",
        sa.Column("sid", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("sid"),
    )


def downgrade():
    op.drop_table("revoked_session")
    op.drop_index("ix_oauth_authorization_state_created_at", table_name="oauth_authorization_state")
    op.drop_table("oauth_authorization_state")
    op.drop_table("oauth_token_set")
