"""Rewarded ads: wallet, ad_reward_event ledger and audit_log tables.

Revision ID: r01_rewarded_ads
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

revision = "r01_rewarded_ads"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    existing_tables = inspector.get_table_names()

    # ── wallet table ───────────────────────────────────────────────────────
    if "wallet" not in existing_tables:
        op.create_table(
            "wallet",
            sa.Column("user_id", sa.String(128), primary_key=True),
            sa.Column("balance", sa.Integer, nullable=False, server_default="0"),
            sa.Column("total_earned", sa.Integer, nullable=False, server_default="0"),
            sa.Column("total_spent", sa.Integer, nullable=False, server_default="0"),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
            sa.CheckConstraint("total_earned >= 0", name="ck_wallet_total_earned_non_negative"),
            sa.CheckConstraint("total_spent >= 0", name="ck_wallet_total_spent_non_negative"),
        )

    # ── ad_reward_event table (append-only ledger) ─────────────────────────
    if "ad_reward_event" not in existing_tables:
        op.create_table(
            "ad_reward_event",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("user_id", sa.String(128), nullable=False),
            sa.Column("provider", sa.String, nullable=False, server_default="admob"),
            sa.Column("event_type", sa.String, nullable=False, server_default="reward"),
            sa.Column("reward_item", sa.String, nullable=False),
            sa.Column("reward_amount", sa.Integer, nullable=False),
            sa.Column("transaction_id", sa.String(255), nullable=False),
            sa.Column("signature", sa.String, nullable=True),
            sa.Column("key_id", sa.String, nullable=True),
            sa.Column("verified", sa.Boolean, nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("transaction_id", name="uq_ad_reward_event_transaction_id"),
            sa.CheckConstraint("reward_amount > 0", name="ck_ad_reward_event_amount_positive"),
        )
        op.create_index("ix_ad_reward_event_user_id", "ad_reward_event", ["user_id"])
        op.create_index("ix_ad_reward_event_created_at", "ad_reward_event", ["created_at"])

    # ── audit_log table ────────────────────────────────────────────────────
    if "audit_log" not in existing_tables:
        op.create_table(
            "audit_log",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column("user_id", sa.String(128), nullable=True),
            sa.Column("action", sa.String, nullable=False),
            sa.Column("resource_type", sa.String, nullable=True),
            sa.Column("resource_id", sa.String, nullable=True),
            sa.Column("details", sa.Text, nullable=True),
            sa.Column("ip_address", sa.String, nullable=True),
            sa.Column("user_agent", sa.String, nullable=True),
            sa.Column("success", sa.Boolean, nullable=False, server_default=sa.true()),
            sa.Column("error_message", sa.String, nullable=True),
        )
        op.create_index("ix_audit_log_timestamp", "audit_log", ["timestamp"])
        op.create_index("ix_audit_log_user_id", "audit_log", ["user_id"])
        op.create_index("ix_audit_log_action", "audit_log", ["action"])


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("ad_reward_event")
    op.drop_table("wallet")
