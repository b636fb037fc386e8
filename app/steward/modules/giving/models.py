from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.steward.models import Base


class GivingCategory(Base):
    __tablename__ = "giving_categories"
    __table_args__ = (
        UniqueConstraint("church_id", "name", name="uq_giving_categories_church_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    church_id: Mapped[int] = mapped_column(ForeignKey("churches.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class Giving(Base):
    """One contribution envelope: a member, a date, and one item per category."""

    __tablename__ = "giving"
    __table_args__ = (
        Index("idx_giving_member_id", "member_id"),
        Index("idx_giving_date_given", "date_given"),
        Index("idx_giving_service_id", "service_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    date_given: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    service_id: Mapped[int | None] = mapped_column(ForeignKey("services.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    items: Mapped[list["GivingItem"]] = relationship(
        "GivingItem",
        back_populates="giving",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    @property
    def total(self) -> Decimal:
        return sum((i.amount for i in self.items), Decimal("0"))


class GivingItem(Base):
    __tablename__ = "giving_items"
    __table_args__ = (
        UniqueConstraint("giving_id", "category_id", name="uq_giving_items_giving_category"),
        Index("idx_giving_items_category_id", "category_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    giving_id: Mapped[int] = mapped_column(ForeignKey("giving.id", ondelete="CASCADE"), nullable=False)
    category_id: Mapped[int] = mapped_column(ForeignKey("giving_categories.id", ondelete="RESTRICT"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    giving: Mapped[Giving] = relationship("Giving", back_populates="items", lazy="selectin")
    category: Mapped[GivingCategory] = relationship("GivingCategory", lazy="selectin")
