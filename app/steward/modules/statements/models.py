from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.steward.models import Base


class GivingStatement(Base):
    __tablename__ = "giving_statements"
    __table_args__ = (
        UniqueConstraint("household_id", "year", name="uq_giving_statements_household_year"),
        Index("idx_giving_statements_church_year", "church_id", "year"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    church_id: Mapped[int] = mapped_column(ForeignKey("churches.id", ondelete="CASCADE"), nullable=False)
    household_id: Mapped[int] = mapped_column(ForeignKey("households.id", ondelete="CASCADE"), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    statement_number: Mapped[str] = mapped_column(String(64), nullable=False)

    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    generated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    sent_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    email_status: Mapped[str | None] = mapped_column(String(16), nullable=True)  # sent | failed
    email_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    pdf_storage_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    preview_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    household = relationship("Household", lazy="selectin")
