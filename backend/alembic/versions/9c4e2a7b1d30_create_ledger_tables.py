"""create ledger tables

Revision ID: 9c4e2a7b1d30
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "9c4e2a7b1d30"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


JSON_TYPE = postgresql.JSONB().with_variant(sa.JSON(), "sqlite")

EARNING_STATUSES = "'LOCKED', 'ELIGIBLE', 'PENDING_PAYOUT', 'PAID', 'CANCELLED', 'FAILED'"
BATCH_STATUSES = "'OPEN', 'SUBMITTED', 'CONFIRMED', 'FAILED'"
PAYOUT_REASONS = "'MINIMUM_THRESHOLD', 'FORCED_45_DAY', 'MANUAL_ADMIN'"
PAYMENT_METHODS = "'BANK_TRANSFER', 'WIRE_TRANSFER', 'PAYPAL', 'PAYONEER', 'PREPAID_CARD', 'CHECK'"


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "creators",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("payee_id", sa.String(), nullable=True),
        sa.Column("payee_status", sa.String(), nullable=False, server_default="not_registered"),
        sa.Column("payment_method", sa.String(), nullable=False, server_default="BANK_TRANSFER"),
        sa.Column("minimum_payout", sa.Numeric(12, 2), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("email", name="uq_creators_email"),
        sa.UniqueConstraint("payee_id", name="uq_creators_payee_id"),
        sa.CheckConstraint("status IN ('active', 'paused')", name="ck_creators_status"),
        sa.CheckConstraint(
            "payee_status IN ('not_registered', 'pending', 'onboarded')",
            name="ck_creators_payee_status",
        ),
        sa.CheckConstraint(f"payment_method IN ({PAYMENT_METHODS})", name="ck_creators_payment_method"),
    )
    op.create_index(op.f("ix_creators_id"), "creators", ["id"], unique=False)
    op.create_index("ix_creators_status", "creators", ["status"], unique=False)

    op.create_table(
        "commission_rate_overrides",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("creator_id", sa.Integer(), sa.ForeignKey("creators.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("effective_from", sa.DateTime(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("set_by", sa.String(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("rate >= 0 AND rate <= 100", name="ck_commission_rate_overrides_rate"),
    )
    op.create_index(op.f("ix_commission_rate_overrides_id"), "commission_rate_overrides", ["id"], unique=False)
    op.create_index(
        "ix_commission_rate_overrides_creator_effective",
        "commission_rate_overrides",
        ["creator_id", "effective_from"],
        unique=False,
    )

    op.create_table(
        "payout_batches",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("creator_id", sa.Integer(), sa.ForeignKey("creators.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("period_start", sa.DateTime(), nullable=False),
        sa.Column("period_end", sa.DateTime(), nullable=False),
        sa.Column("idempotency_key", sa.String(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("earning_ids_json", JSON_TYPE, nullable=False),
        sa.Column("earnings_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("bonus_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("bonus_award_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="OPEN"),
        sa.Column("external_payout_id", sa.String(), nullable=True),
        sa.Column("dispatched_at", sa.DateTime(), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(), nullable=True),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("next_attempt_at", sa.DateTime(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.UniqueConstraint("idempotency_key", name="uq_payout_batches_idempotency_key"),
        sa.CheckConstraint(f"status IN ({BATCH_STATUSES})", name="ck_payout_batches_status"),
        sa.CheckConstraint(f"reason IN ({PAYOUT_REASONS})", name="ck_payout_batches_reason"),
    )
    op.create_index(op.f("ix_payout_batches_id"), "payout_batches", ["id"], unique=False)
    op.create_index(op.f("ix_payout_batches_creator_id"), "payout_batches", ["creator_id"], unique=False)
    op.create_index(
        "ix_payout_batches_creator_scheduled",
        "payout_batches",
        ["creator_id", "scheduled_date"],
        unique=False,
    )
    op.create_index(
        "ix_payout_batches_status_next_attempt",
        "payout_batches",
        ["status", "next_attempt_at"],
        unique=False,
    )
    op.create_index("ix_payout_batches_external_payout", "payout_batches", ["external_payout_id"], unique=False)

    op.create_table(
        "earning_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("creator_id", sa.Integer(), sa.ForeignKey("creators.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("source_transaction_id", sa.String(), nullable=False),
        sa.Column("gross_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("net_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("earned_at", sa.DateTime(), nullable=False),
        sa.Column("locked_until", sa.DateTime(), nullable=False),
        sa.Column("hard_deadline", sa.DateTime(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="LOCKED"),
        sa.Column(
            "payout_batch_id",
            sa.Integer(),
            sa.ForeignKey("payout_batches.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column(
            "reverses_earning_id",
            sa.Integer(),
            sa.ForeignKey("earning_records.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.UniqueConstraint("source_transaction_id", name="uq_earning_records_source_transaction"),
        sa.CheckConstraint(f"status IN ({EARNING_STATUSES})", name="ck_earning_records_status"),
        sa.CheckConstraint(
            "commission_rate >= 0 AND commission_rate <= 100",
            name="ck_earning_records_commission_rate",
        ),
    )
    op.create_index(op.f("ix_earning_records_id"), "earning_records", ["id"], unique=False)
    op.create_index(op.f("ix_earning_records_creator_id"), "earning_records", ["creator_id"], unique=False)
    op.create_index("ix_earning_records_creator_status", "earning_records", ["creator_id", "status"], unique=False)
    op.create_index(
        "ix_earning_records_status_locked_until",
        "earning_records",
        ["status", "locked_until"],
        unique=False,
    )
    op.create_index("ix_earning_records_payout_batch", "earning_records", ["payout_batch_id"], unique=False)

    op.create_table(
        "bonus_awards",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("creator_id", sa.Integer(), sa.ForeignKey("creators.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("period_start", sa.DateTime(), nullable=False),
        sa.Column("period_end", sa.DateTime(), nullable=False),
        sa.Column("tier", sa.Integer(), nullable=False),
        sa.Column("bonus_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("sales_volume", sa.Numeric(14, 2), nullable=False),
        sa.Column("awarded_at", sa.DateTime(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="EARNED"),
        sa.Column(
            "payout_batch_id",
            sa.Integer(),
            sa.ForeignKey("payout_batches.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("creator_id", "period_start", "period_end", name="uq_bonus_awards_creator_period"),
        sa.CheckConstraint("status IN ('EARNED', 'PAID')", name="ck_bonus_awards_status"),
    )
    op.create_index(op.f("ix_bonus_awards_id"), "bonus_awards", ["id"], unique=False)
    op.create_index("ix_bonus_awards_creator_status", "bonus_awards", ["creator_id", "status"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_bonus_awards_creator_status", table_name="bonus_awards")
    op.drop_index(op.f("ix_bonus_awards_id"), table_name="bonus_awards")
    op.drop_table("bonus_awards")

    op.drop_index("ix_earning_records_payout_batch", table_name="earning_records")
    op.drop_index("ix_earning_records_status_locked_until", table_name="earning_records")
    op.drop_index("ix_earning_records_creator_status", table_name="earning_records")
    op.drop_index(op.f("ix_earning_records_creator_id"), table_name="earning_records")
    op.drop_index(op.f("ix_earning_records_id"), table_name="earning_records")
    op.drop_table("earning_records")

    op.drop_index("ix_payout_batches_external_payout", table_name="payout_batches")
    op.drop_index("ix_payout_batches_status_next_attempt", table_name="payout_batches")
    op.drop_index("ix_payout_batches_creator_scheduled", table_name="payout_batches")
    op.drop_index(op.f("ix_payout_batches_creator_id"), table_name="payout_batches")
    op.drop_index(op.f("ix_payout_batches_id"), table_name="payout_batches")
    op.drop_table("payout_batches")

    op.drop_index("ix_commission_rate_overrides_creator_effective", table_name="commission_rate_overrides")
    op.drop_index(op.f("ix_commission_rate_overrides_id"), table_name="commission_rate_overrides")
    op.drop_table("commission_rate_overrides")

    op.drop_index("ix_creators_status", table_name="creators")
    op.drop_index(op.f("ix_creators_id"), table_name="creators")
    op.drop_table("creators")
