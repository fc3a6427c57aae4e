"""add owner_id to audit_logs

Revision ID: e5a9d3c7b1f2
Revises: c4e7a1b9d205
Create Date: 2026-10-17 00:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "e5a9d3c7b1f2"
down_revision = "c4e7a1b9d205"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("audit_logs", sa.Column("owner_id", sa.String(length=255), nullable=True))
    op.create_index("ix_audit_logs_owner_id", "audit_logs", ["owner_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_owner_id", table_name="audit_logs")
    op.drop_column("audit_logs", "owner_id")
