"""Store the DPoP key and nonce with token sets and authorization states.

Revision ID: 20261019_dpop_keys
Revises: 20261018_oauth_session_tables
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_dpop_keys"
down_revision = "20261018_oauth_session_tables"
branch_labels = None
depends_on = None

TABLES = ("oauth_token_set", "oauth_authorization_state")


def upgrade():
    for table in TABLES:
        with op.batch_alter_table(table) as batch_op:
            batch_op.add_column(sa.Column("dpop_private_key", sa.Text(), nullable=True))
            batch_op.add_column(sa.Column("dpop_authserver_nonce", sa.String(255), nullable=True))


def downgrade():
    for table in TABLES:
        with op.batch_alter_table(table) as batch_op:
            batch_op.drop_column("dpop_authserver_nonce")
            batch_op.drop_column("dpop_private_key")
