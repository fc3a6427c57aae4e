"""create connected_accounts, client_products and client_payments tables

Revision ID: 8d2b4e6f1a93
Revises: 3f1a9c2e7b40
Create Date: 2026-10-01 09:30:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "8d2b4e6f1a93"
down_revision = "3f1a9c2e7b40"
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("(CURRENT_TIMESTAMP)"),
            nullable=True,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("(CURRENT_TIMESTAMP)"),
            nullable=True,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "connected_accounts",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("client_name", sa.String(length=255), nullable=False),
        sa.Column("client_email", sa.String(length=255), nullable=False),
        sa.Column("external_account_id", sa.String(length=255), nullable=False),
        sa.Column("account_type", sa.String(length=20), nullable=False, server_default="express"),
        sa.Column(
            "account_status", sa.String(length=20), nullable=False, server_default="pending"
        ),
        sa.Column("charges_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payouts_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("details_submitted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("onboarding_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("disabled_reason", sa.String(length=100), nullable=True),
        sa.Column("capability_card_payments", sa.String(length=20), nullable=True),
        sa.Column("capability_transfers", sa.String(length=20), nullable=True),
        sa.Column("statement_descriptor", sa.String(length=22), nullable=True),
        sa.Column("default_currency", sa.String(length=3), nullable=True),
        sa.Column("onboarding_link", sa.Text(), nullable=True),
        sa.Column("onboarding_link_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_event_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_account_id"),
    )
    op.create_index("ix_connected_accounts_owner_id", "connected_accounts", ["owner_id"])
    op.create_index("ix_connected_accounts_client_email", "connected_accounts", ["client_email"])
    op.create_index(
        "ix_connected_accounts_external_account_id",
        "connected_accounts",
        ["external_account_id"],
        unique=True,
    )
    op.create_index(
        "ix_connected_accounts_account_status", "connected_accounts", ["account_status"]
    )
    op.create_index("ix_connected_accounts_deleted_at", "connected_accounts", ["deleted_at"])
    op.create_index(
        "uq_connected_accounts_live_owner",
        "connected_accounts",
        ["owner_id"],
        unique=True,
        sqlite_where=sa.text("deleted_at IS NULL"),
        postgresql_where=sa.text("deleted_at IS NULL"),
    )

    op.create_table(
        "client_products",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("connected_account_id", sa.String(length=36), nullable=False),
        sa.Column("external_product_id", sa.String(length=255), nullable=False),
        sa.Column("external_price_id", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("interval", sa.String(length=10), nullable=False, server_default="one_time"),
        sa.Column("application_fee_percent", sa.Numeric(5, 2), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["connected_account_id"], ["connected_accounts.id"], ondelete="RESTRICT"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_product_id"),
    )
    op.create_index(
        "ix_client_products_connected_account_id", "client_products", ["connected_account_id"]
    )
    op.create_index(
        "ix_client_products_external_product_id",
        "client_products",
        ["external_product_id"],
        unique=True,
    )
    op.create_index(
        "ix_client_products_external_price_id", "client_products", ["external_price_id"]
    )

    op.create_table(
        "client_payments",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("connected_account_id", sa.String(length=36), nullable=False),
        sa.Column("product_id", sa.String(length=36), nullable=True),
        sa.Column("external_payment_intent_id", sa.String(length=255), nullable=True),
        sa.Column("external_checkout_id", sa.String(length=255), nullable=True),
        sa.Column("external_charge_id", sa.String(length=255), nullable=True),
        sa.Column("external_subscription_id", sa.String(length=255), nullable=True),
        sa.Column("external_customer_id", sa.String(length=255), nullable=True),
        sa.Column("customer_email", sa.String(length=255), nullable=True),
        sa.Column("customer_name", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("payment_type", sa.String(length=20), nullable=False, server_default="one_time"),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("application_fee_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("net_amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("subscription_status", sa.String(length=20), nullable=True),
        sa.Column(
            "subscription_current_period_end", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column("refunded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("refund_amount", sa.Integer(), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("last_event_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["connected_account_id"], ["connected_accounts.id"], ondelete="RESTRICT"
        ),
        sa.ForeignKeyConstraint(["product_id"], ["client_products.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_payment_intent_id"),
        sa.UniqueConstraint("external_checkout_id"),
    )
    op.create_index(
        "ix_client_payments_connected_account_id", "client_payments", ["connected_account_id"]
    )
    op.create_index(
        "ix_client_payments_external_payment_intent_id",
        "client_payments",
        ["external_payment_intent_id"],
        unique=True,
    )
    op.create_index(
        "ix_client_payments_external_checkout_id",
        "client_payments",
        ["external_checkout_id"],
        unique=True,
    )
    op.create_index(
        "ix_client_payments_external_subscription_id",
        "client_payments",
        ["external_subscription_id"],
    )
    op.create_index("ix_client_payments_status", "client_payments", ["status"])
    op.create_index("ix_client_payments_created_at", "client_payments", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_client_payments_created_at", table_name="client_payments")
    op.drop_index("ix_client_payments_status", table_name="client_payments")
    op.drop_index("ix_client_payments_external_subscription_id", table_name="client_payments")
    op.drop_index("ix_client_payments_external_checkout_id", table_name="client_payments")
    op.drop_index("ix_client_payments_external_payment_intent_id", table_name="client_payments")
    op.drop_index("ix_client_payments_connected_account_id", table_name="client_payments")
    op.drop_table("client_payments")
    op.drop_index("ix_client_products_external_price_id", table_name="client_products")
    op.drop_index("ix_client_products_external_product_id", table_name="client_products")
    op.drop_index("ix_client_products_connected_account_id", table_name="client_products")
    op.drop_table("client_products")
    op.drop_index("uq_connected_accounts_live_owner", table_name="connected_accounts")
    op.drop_index("ix_connected_accounts_deleted_at", table_name="connected_accounts")
    op.drop_index("ix_connected_accounts_account_status", table_name="connected_accounts")
    op.drop_index("ix_connected_accounts_external_account_id", table_name="connected_accounts")
    op.drop_index("ix_connected_accounts_client_email", table_name="connected_accounts")
    op.drop_index("ix_connected_accounts_owner_id", table_name="connected_accounts")
    op.drop_table("connected_accounts")
