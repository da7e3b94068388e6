"""create users, profiles, campaigns, applications, contracts, milestones,
escrow_transactions, payments, audit_logs

Revision ID: 001
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # --- users ---
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=20), server_default="creator", nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # --- brand_profiles / creator_profiles ---
    op.create_table(
        "brand_profiles",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("company_name", sa.String(length=255), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_brand_profiles"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], ondelete="CASCADE",
            name="fk_brand_profiles_user_id_users",
        ),
        sa.UniqueConstraint("user_id", name="uq_brand_profiles_user_id"),
    )
    op.create_table(
        "creator_profiles",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_creator_profiles"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], ondelete="CASCADE",
            name="fk_creator_profiles_user_id_users",
        ),
        sa.UniqueConstraint("user_id", name="uq_creator_profiles_user_id"),
    )

    # --- campaigns ---
    op.create_table(
        "campaigns",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("brand_owner_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=30), server_default="DRAFT", nullable=False),
        sa.Column("max_creators", sa.Integer(), server_default="10", nullable=False),
        sa.Column("current_creators", sa.Integer(), server_default="0", nullable=False),
        sa.Column("application_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("budget_min", sa.Numeric(12, 2), nullable=True),
        sa.Column("budget_max", sa.Numeric(12, 2), nullable=True),
        sa.Column("currency", sa.String(length=3), server_default="USD", nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_campaigns"),
        sa.ForeignKeyConstraint(
            ["brand_owner_id"], ["users.id"], ondelete="RESTRICT",
            name="fk_campaigns_brand_owner_id_users",
        ),
        sa.CheckConstraint(
            "current_creators >= 0", name="ck_campaigns_current_creators_non_negative"
        ),
        sa.CheckConstraint(
            "current_creators <= max_creators", name="ck_campaigns_current_creators_within_max"
        ),
    )
    op.create_index("ix_campaigns_brand_owner_id", "campaigns", ["brand_owner_id"])
    op.create_index("ix_campaigns_status", "campaigns", ["status"])

    # --- applications ---
    op.create_table(
        "applications",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("campaign_id", sa.Integer(), nullable=False),
        sa.Column("creator_owner_id", sa.Integer(), nullable=False),
        sa.Column("pitch", sa.Text(), nullable=True),
        sa.Column("proposed_rate", sa.Numeric(12, 2), nullable=True),
        sa.Column("currency", sa.String(length=3), server_default="USD", nullable=False),
        sa.Column("status", sa.String(length=30), server_default="APPLIED", nullable=False),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("shortlisted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("hired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("withdrawn_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_applications"),
        sa.ForeignKeyConstraint(
            ["campaign_id"], ["campaigns.id"], ondelete="RESTRICT",
            name="fk_applications_campaign_id_campaigns",
        ),
        sa.ForeignKeyConstraint(
            ["creator_owner_id"], ["users.id"], ondelete="RESTRICT",
            name="fk_applications_creator_owner_id_users",
        ),
        sa.UniqueConstraint(
            "campaign_id", "creator_owner_id", name="uq_application_campaign_creator"
        ),
    )
    op.create_index("ix_applications_campaign_id", "applications", ["campaign_id"])
    op.create_index("ix_applications_creator_owner_id", "applications", ["creator_owner_id"])
    op.create_index("ix_applications_status", "applications", ["status"])

    # --- contracts ---
    op.create_table(
        "contracts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("application_id", sa.Integer(), nullable=False),
        sa.Column("campaign_id", sa.Integer(), nullable=False),
        sa.Column("brand_user_id", sa.Integer(), nullable=False),
        sa.Column("creator_user_id", sa.Integer(), nullable=False),
        sa.Column("contract_number", sa.String(length=32), nullable=False),
        sa.Column("terms", sa.JSON(), nullable=True),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), server_default="USD", nullable=False),
        sa.Column("status", sa.String(length=30), server_default="DRAFT", nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("brand_signed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("creator_signed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_contracts"),
        sa.ForeignKeyConstraint(
            ["application_id"], ["applications.id"], ondelete="RESTRICT",
            name="fk_contracts_application_id_applications",
        ),
        sa.ForeignKeyConstraint(
            ["campaign_id"], ["campaigns.id"], ondelete="RESTRICT",
            name="fk_contracts_campaign_id_campaigns",
        ),
        sa.ForeignKeyConstraint(
            ["brand_user_id"], ["users.id"], ondelete="RESTRICT",
            name="fk_contracts_brand_user_id_users",
        ),
        sa.ForeignKeyConstraint(
            ["creator_user_id"], ["users.id"], ondelete="RESTRICT",
            name="fk_contracts_creator_user_id_users",
        ),
        sa.UniqueConstraint("application_id", name="uq_contracts_application_id"),
        sa.UniqueConstraint("contract_number", name="uq_contracts_contract_number"),
    )
    op.create_index("ix_contracts_campaign_id", "contracts", ["campaign_id"])
    op.create_index("ix_contracts_brand_user_id", "contracts", ["brand_user_id"])
    op.create_index("ix_contracts_creator_user_id", "contracts", ["creator_user_id"])
    op.create_index("ix_contracts_status", "contracts", ["status"])

    # --- milestones ---
    op.create_table(
        "milestones",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("contract_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(length=30), server_default="PENDING", nullable=False),
        sa.Column("trigger_type", sa.String(length=30), server_default="MANUAL", nullable=False),
        sa.Column("order_index", sa.Integer(), server_default="0", nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_milestones"),
        sa.ForeignKeyConstraint(
            ["contract_id"], ["contracts.id"], ondelete="CASCADE",
            name="fk_milestones_contract_id_contracts",
        ),
    )
    op.create_index("ix_milestones_contract_id", "milestones", ["contract_id"])
    op.create_index("ix_milestones_status", "milestones", ["status"])

    # --- escrow_transactions ---
    op.create_table(
        "escrow_transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("contract_id", sa.Integer(), nullable=False),
        sa.Column("brand_user_id", sa.Integer(), nullable=False),
        sa.Column("creator_user_id", sa.Integer(), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("platform_fee", sa.Numeric(12, 2), nullable=False),
        sa.Column("fee_rate", sa.Numeric(5, 4), nullable=False),
        sa.Column("released_amount", sa.Numeric(12, 2), server_default="0", nullable=False),
        sa.Column("refunded_amount", sa.Numeric(12, 2), server_default="0", nullable=False),
        sa.Column("fee_rounding_delta", sa.Numeric(12, 2), nullable=True),
        sa.Column("currency", sa.String(length=3), server_default="USD", nullable=False),
        sa.Column("status", sa.String(length=30), server_default="PENDING_DEPOSIT", nullable=False),
        sa.Column("status_before_dispute", sa.String(length=30), nullable=True),
        sa.Column("dispute_reason", sa.Text(), nullable=True),
        sa.Column("processor_reference", sa.String(length=128), nullable=True),
        sa.Column("funded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_escrow_transactions"),
        sa.ForeignKeyConstraint(
            ["contract_id"], ["contracts.id"], ondelete="RESTRICT",
            name="fk_escrow_transactions_contract_id_contracts",
        ),
        sa.ForeignKeyConstraint(
            ["brand_user_id"], ["users.id"], ondelete="RESTRICT",
            name="fk_escrow_transactions_brand_user_id_users",
        ),
        sa.ForeignKeyConstraint(
            ["creator_user_id"], ["users.id"], ondelete="RESTRICT",
            name="fk_escrow_transactions_creator_user_id_users",
        ),
        sa.UniqueConstraint("contract_id", name="uq_escrow_transactions_contract_id"),
        sa.UniqueConstraint(
            "processor_reference", name="uq_escrow_transactions_processor_reference"
        ),
        sa.CheckConstraint(
            "released_amount <= total_amount",
            name="ck_escrow_transactions_released_within_total",
        ),
        sa.CheckConstraint(
            "released_amount >= 0", name="ck_escrow_transactions_released_non_negative"
        ),
    )
    op.create_index(
        "ix_escrow_transactions_brand_user_id", "escrow_transactions", ["brand_user_id"]
    )
    op.create_index(
        "ix_escrow_transactions_creator_user_id", "escrow_transactions", ["creator_user_id"]
    )
    op.create_index("ix_escrow_transactions_status", "escrow_transactions", ["status"])

    # --- payments ---
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("escrow_transaction_id", sa.Integer(), nullable=False),
        sa.Column("milestone_id", sa.Integer(), nullable=True),
        sa.Column("recipient_user_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("platform_fee", sa.Numeric(12, 2), nullable=False),
        sa.Column("net_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), server_default="USD", nullable=False),
        sa.Column("status", sa.String(length=20), server_default="PENDING", nullable=False),
        sa.Column("type", sa.String(length=30), server_default="MILESTONE_RELEASE", nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_payments"),
        sa.ForeignKeyConstraint(
            ["escrow_transaction_id"], ["escrow_transactions.id"], ondelete="RESTRICT",
            name="fk_payments_escrow_transaction_id_escrow_transactions",
        ),
        sa.ForeignKeyConstraint(
            ["milestone_id"], ["milestones.id"], ondelete="RESTRICT",
            name="fk_payments_milestone_id_milestones",
        ),
        sa.ForeignKeyConstraint(
            ["recipient_user_id"], ["users.id"], ondelete="RESTRICT",
            name="fk_payments_recipient_user_id_users",
        ),
        sa.UniqueConstraint("milestone_id", name="uq_payments_milestone_id"),
    )
    op.create_index("ix_payments_escrow_transaction_id", "payments", ["escrow_transaction_id"])
    op.create_index("ix_payments_recipient_user_id", "payments", ["recipient_user_id"])
    op.create_index("ix_payments_status", "payments", ["status"])

    # --- audit_logs ---
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("details", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_audit_logs"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], ondelete="SET NULL",
            name="fk_audit_logs_user_id_users",
        ),
    )
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("payments")
    op.drop_table("escrow_transactions")
    op.drop_table("milestones")
    op.drop_table("contracts")
    op.drop_table("applications")
    op.drop_table("campaigns")
    op.drop_table("creator_profiles")
    op.drop_table("brand_profiles")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
