from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.db.base import Base


class EscrowTransaction(Base):
    __tablename__ = "escrow_transactions"
    __table_args__ = (
        CheckConstraint("released_amount <= total_amount", name="released_within_total"),
        CheckConstraint("released_amount >= 0", name="released_non_negative"),
    )

    contract_id: Mapped[int] = mapped_column(
        ForeignKey("contracts.id", ondelete="RESTRICT"), unique=True, nullable=False
    )
    brand_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    creator_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    # Frozen at creation; later fee-rate changes never touch existing escrows
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    fee_rate: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    released_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0"), server_default="0", nullable=False
    )
    refunded_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0"), server_default="0", nullable=False
    )
    # platform_fee minus the fees actually collected on payments, set once fully released
    fee_rounding_delta: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[str] = mapped_column(
        String(3), default="USD", server_default="USD"
    )
    status: Mapped[str] = mapped_column(
        String(30), default="PENDING_DEPOSIT", server_default="PENDING_DEPOSIT", index=True
    )
    status_before_dispute: Mapped[str | None] = mapped_column(String(30), nullable=True)
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    processor_reference: Mapped[str | None] = mapped_column(
        String(128), unique=True, nullable=True
    )
    funded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class Payment(Base):
    __tablename__ = "payments"

    escrow_transaction_id: Mapped[int] = mapped_column(
        ForeignKey("escrow_transactions.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    # unique: a milestone is paid at most once
    milestone_id: Mapped[int | None] = mapped_column(
        ForeignKey("milestones.id", ondelete="RESTRICT"), unique=True, nullable=True
    )
    recipient_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(
        String(3), default="USD", server_default="USD"
    )
    status: Mapped[str] = mapped_column(
        String(20), default="PENDING", server_default="PENDING", index=True
    )
    type: Mapped[str] = mapped_column(
        String(30), default="MILESTONE_RELEASE", server_default="MILESTONE_RELEASE"
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
