"""Initial schema: clubs, events and attendees, rewards, credit ledger, settlement.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "clubs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("payouts_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
    )
    op.create_index("ix_clubs_id", "clubs", ["id"])

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("club_id", sa.Integer(), sa.ForeignKey("clubs.id"), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("ticket_price", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("max_attendees", sa.Integer(), nullable=True),
        sa.Column("credits_awarded", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.CheckConstraint("ticket_price >= 0", name="check_ticket_price_non_negative"),
        sa.CheckConstraint("credits_awarded >= 0", name="check_credits_awarded_non_negative"),
    )
    op.create_index("ix_events_id", "events", ["id"])
    op.create_index("ix_events_club_id", "events", ["club_id"])

    # The attendee set. The unique pair makes concurrent identical adds collapse
    # into one row (INSERT ... ON CONFLICT DO NOTHING).
    op.create_table(
        "event_attendees",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="attending"),
        *_timestamps(),
        sa.UniqueConstraint("event_id", "user_id", name="uq_event_attendee"),
        sa.CheckConstraint("status IN ('attending', 'waitlisted')", name="check_attendee_status"),
    )
    # Capacity check counts attending rows per event
    op.create_index("ix_event_attendees_event_status", "event_attendees", ["event_id", "status"])

    op.create_table(
        "rewards",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("club_id", sa.Integer(), sa.ForeignKey("clubs.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("credits_required", sa.Integer(), nullable=False),
        sa.Column("discount_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("discount_percent", sa.Numeric(5, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("max_redemptions_per_user", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("credits_required > 0", name="check_reward_credits_positive"),
        sa.CheckConstraint(
            "discount_amount IS NULL OR discount_percent IS NULL",
            name="check_reward_single_discount",
        ),
        sa.CheckConstraint(
            "type IN ('store_discount', 'event_discount', 'event_free_admission')",
            name="check_reward_type",
        ),
    )
    op.create_index("ix_rewards_id", "rewards", ["id"])
    op.create_index("ix_rewards_club_id", "rewards", ["club_id"])

    op.create_table(
        "credit_balances",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("club_id", sa.Integer(), sa.ForeignKey("clubs.id"), nullable=False),
        sa.Column("available_credits", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "club_id", name="uq_credit_balance_user_club"),
        # Final safety net against overdrawn balances
        sa.CheckConstraint("available_credits >= 0", name="check_available_credits_non_negative"),
    )

    op.create_table(
        "credit_ledger_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("club_id", sa.Integer(), sa.ForeignKey("clubs.id"), nullable=False),
        sa.Column("entry_type", sa.String(16), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(255), nullable=False),
        sa.Column("reward_id", sa.Integer(), sa.ForeignKey("rewards.id"), nullable=True),
        sa.Column("purchase_ref", sa.String(255), nullable=True),
        *_timestamps(),
        # One debit and one earn per purchase, however often settlement runs
        sa.UniqueConstraint("purchase_ref", "entry_type", name="uq_ledger_purchase_entry"),
        sa.CheckConstraint("entry_type IN ('debit', 'earn', 'refund')", name="check_ledger_entry_type"),
    )
    op.create_index("ix_ledger_user_club", "credit_ledger_entries", ["user_id", "club_id"])
    op.create_index("ix_ledger_user_reward", "credit_ledger_entries", ["user_id", "reward_id"])

    op.create_table(
        "settlement_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("payment_ref", sa.String(255), nullable=False, unique=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("club_id", sa.Integer(), sa.ForeignKey("clubs.id"), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("reward_id", sa.Integer(), sa.ForeignKey("rewards.id"), nullable=True),
        sa.Column("credits_required", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("original_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("amount_paid", sa.Numeric(10, 2), nullable=False),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="settling"),
        sa.Column("attendance_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("debit_status", sa.String(20), nullable=False, server_default="not_required"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.CheckConstraint("status IN ('settling', 'settled')", name="check_settlement_status"),
    )
    op.create_index("ix_settlement_event_user", "settlement_records", ["event_id", "user_id"])

    op.create_table(
        "pending_debits",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("payment_ref", sa.String(255), nullable=False, unique=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("club_id", sa.Integer(), sa.ForeignKey("clubs.id"), nullable=False),
        sa.Column("reward_id", sa.Integer(), sa.ForeignKey("rewards.id"), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_error", sa.String(500), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="check_pending_debit_amount_positive"),
        sa.CheckConstraint("status IN ('pending', 'completed', 'abandoned')", name="check_pending_debit_status"),
    )
    # Reconciliation scans pending rows only
    op.create_index("ix_pending_debits_status", "pending_debits", ["status"])


def downgrade() -> None:
    op.drop_table("pending_debits")
    op.drop_table("settlement_records")
    op.drop_table("credit_ledger_entries")
    op.drop_table("credit_balances")
    op.drop_table("rewards")
    op.drop_table("event_attendees")
    op.drop_table("events")
    op.drop_table("clubs")
