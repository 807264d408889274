"""Create the course access tables.

Tables are also created by app startup (Base.metadata.create_all), so every
table is guarded and the revision is safe to run on an existing database.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _has_table(name: str) -> bool:
    return sa.inspect(op.get_bind()).has_table(name)


def upgrade() -> None:
    if not _has_table("accounts"):
        op.create_table(
            "accounts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(), nullable=False),
            sa.Column("name", sa.String(), nullable=True),
            sa.Column("phone", sa.String(), nullable=True),
            sa.Column("access_code", sa.String(), nullable=False),
            sa.Column("payment_ref", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=False, server_default="active"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("last_payment_at", sa.DateTime(), nullable=True),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
            sa.Column("expiry_warning_sent_for", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_accounts_id", "accounts", ["id"])
        op.create_index("ix_accounts_email", "accounts", ["email"], unique=True)
        op.create_index("ix_accounts_access_code", "accounts", ["access_code"], unique=True)
        op.create_index("ix_accounts_status", "accounts", ["status"])
        op.create_index("ix_accounts_expires_at", "accounts", ["expires_at"])

    if not _has_table("credential_history"):
        op.create_table(
            "credential_history",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
            sa.Column("access_code", sa.String(), nullable=False),
            sa.Column("kind", sa.String(), nullable=False),
            sa.Column("payment_ref", sa.String(), nullable=True),
            sa.Column("issued_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_credential_history_id", "credential_history", ["id"])
        op.create_index("ix_credential_history_account_id", "credential_history", ["account_id"])

    if not _has_table("transactions"):
        op.create_table(
            "transactions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
            sa.Column("provider", sa.String(), nullable=False, server_default="stripe"),
            sa.Column("provider_ref", sa.String(), nullable=False),
            sa.Column("amount", sa.Numeric(12, 2), nullable=True),
            sa.Column("currency", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=False, server_default="succeeded"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_transactions_id", "transactions", ["id"])
        op.create_index("ix_transactions_account_id", "transactions", ["account_id"])
        op.create_index("ix_transactions_provider_ref", "transactions", ["provider_ref"], unique=True)

    if not _has_table("activity_log"):
        op.create_table(
            "activity_log",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True),
            sa.Column("action", sa.String(), nullable=False),
            sa.Column("detail", sa.Text(), nullable=True),
            sa.Column("ip_address", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_activity_log_id", "activity_log", ["id"])
        op.create_index("ix_activity_log_account_id", "activity_log", ["account_id"])
        op.create_index("ix_activity_log_action", "activity_log", ["action"])

    if not _has_table("notification_log"):
        op.create_table(
            "notification_log",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=True),
            sa.Column("kind", sa.String(), nullable=False),
            sa.Column("channel", sa.String(), nullable=False),
            sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("detail", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_notification_log_id", "notification_log", ["id"])
        op.create_index("ix_notification_log_account_id", "notification_log", ["account_id"])

    if not _has_table("error_log"):
        op.create_table(
            "error_log",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("operation", sa.String(), nullable=False),
            sa.Column("email", sa.String(), nullable=True),
            sa.Column("detail", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_error_log_id", "error_log", ["id"])
        op.create_index("ix_error_log_operation", "error_log", ["operation"])

    if not _has_table("revoked_tokens"):
        op.create_table(
            "revoked_tokens",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("jti", sa.String(), nullable=False),
            sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=True),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
            sa.Column("revoked_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_revoked_tokens_id", "revoked_tokens", ["id"])
        op.create_index("ix_revoked_tokens_jti", "revoked_tokens", ["jti"], unique=True)
        op.create_index("ix_revoked_tokens_expires_at", "revoked_tokens", ["expires_at"])


def downgrade() -> None:
    for table in (
        "revoked_tokens",
        "error_log",
        "notification_log",
        "activity_log",
        "transactions",
        "credential_history",
        "accounts",
    ):
        op.drop_table(table)
