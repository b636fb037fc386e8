from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.steward.encryption import EncryptedDate
from app.steward.models import Base


class Household(Base):
    __tablename__ = "households"
    __table_args__ = (
        Index("idx_households_church_id", "church_id"),
        Index("idx_households_name", "name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    church_id: Mapped[int] = mapped_column(ForeignKey("churches.id", ondelete="CASCADE"), nullable=False)

    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str | None] = mapped_column(String(16), nullable=True)  # family | single | other
    is_non_household: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    person_assigned: Mapped[str | None] = mapped_column(Text, nullable=True)
    ministry_group: Mapped[str | None] = mapped_column(Text, nullable=True)

    address1: Mapped[str | None] = mapped_column(Text, nullable=True)
    address2: Mapped[str | None] = mapped_column(Text, nullable=True)
    city: Mapped[str | None] = mapped_column(Text, nullable=True)
    state: Mapped[str | None] = mapped_column(Text, nullable=True)
    zip: Mapped[str | None] = mapped_column(Text, nullable=True)
    country: Mapped[str | None] = mapped_column(Text, nullable=True)
    alternate_address_begin: Mapped[date | None] = mapped_column(Date, nullable=True)
    alternate_address_end: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    members: Mapped[list["Member"]] = relationship(
        "Member",
        back_populates="household",
        order_by="Member.id",
        lazy="selectin",
    )


class Member(Base):
    __tablename__ = "members"
    __table_args__ = (
        UniqueConstraint("church_id", "email1", name="uq_members_church_email1"),
        Index("idx_members_church_id", "church_id"),
        Index("idx_members_household_id", "household_id"),
        Index("idx_members_last_first", "last_name", "first_name"),
        Index("idx_members_envelope_number", "church_id", "envelope_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    church_id: Mapped[int] = mapped_column(ForeignKey("churches.id", ondelete="CASCADE"), nullable=False)
    household_id: Mapped[int | None] = mapped_column(ForeignKey("households.id", ondelete="SET NULL"), nullable=True)

    first_name: Mapped[str] = mapped_column(Text, nullable=False)
    middle_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_name: Mapped[str] = mapped_column(Text, nullable=False)
    suffix: Mapped[str | None] = mapped_column(Text, nullable=True)
    preferred_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    maiden_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    sex: Mapped[str | None] = mapped_column(String(16), nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(EncryptedDate, nullable=True)  # encrypted at rest

    email1: Mapped[str | None] = mapped_column(String(320), nullable=True)
    email2: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone_home: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone_cell1: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone_cell2: Mapped[str | None] = mapped_column(Text, nullable=True)

    baptism_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    confirmation_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    received_by: Mapped[str | None] = mapped_column(String(32), nullable=True)
    date_received: Mapped[date | None] = mapped_column(Date, nullable=True)
    removed_by: Mapped[str | None] = mapped_column(String(32), nullable=True)
    date_removed: Mapped[date | None] = mapped_column(Date, nullable=True)
    deceased_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    membership_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    envelope_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    participation: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    sequence: Mapped[str | None] = mapped_column(String(16), nullable=True)  # head_of_house | spouse | child

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    household: Mapped[Household | None] = relationship("Household", back_populates="members", lazy="selectin")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class MembershipHistory(Base):
    """Field-level change log for membership status fields."""

    __tablename__ = "membership_history"
    __table_args__ = (
        Index("idx_membership_history_member_id", "member_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    field_changed: Mapped[str] = mapped_column(String(64), nullable=False)
    old_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    changed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
