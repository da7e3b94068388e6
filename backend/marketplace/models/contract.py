from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.db.base import Base


class Contract(Base):
    __tablename__ = "contracts"

    # one contract per application
    application_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("applications.id", ondelete="RESTRICT"), unique=True, nullable=False
    )
    campaign_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("campaigns.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    brand_user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    creator_user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    contract_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    terms: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(
        String(3), default="USD", server_default="USD"
    )
    status: Mapped[str] = mapped_column(
        String(30), default="DRAFT", server_default="DRAFT", index=True
    )
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    brand_signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    creator_signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    milestones = relationship(
        "Milestone",
        order_by="Milestone.order_index",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}


class Milestone(Base):
    __tablename__ = "milestones"

    contract_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(
        String(30), default="PENDING", server_default="PENDING", index=True
    )
    trigger_type: Mapped[str] = mapped_column(
        String(30), default="MANUAL", server_default="MANUAL"
    )
    order_index: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
