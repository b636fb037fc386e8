from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.steward.encryption import EncryptedString


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_super_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    memberships: Mapped[list["ChurchUser"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def role_in(self, church_id: int) -> str | None:
        for m in self.memberships:
            if m.church_id == church_id:
                return m.role
        return None


class Church(Base):
    """
    The tenant. Every tenant-owned table carries a church_id.
    """

    __tablename__ = "churches"
    __table_args__ = (
        Index("idx_churches_stripe_customer_id", "stripe_customer_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    subdomain: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    domain: Mapped[str | None] = mapped_column(Text, nullable=True)

    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    city: Mapped[str | None] = mapped_column(Text, nullable=True)
    state: Mapped[str | None] = mapped_column(Text, nullable=True)
    zip: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    logo_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    primary_color: Mapped[str | None] = mapped_column(String(16), nullable=True)

    subscription_status: Mapped[str] = mapped_column(String(32), nullable=False, default="unpaid")
    subscription_plan: Mapped[str] = mapped_column(String(32), nullable=False, default="basic")
    trial_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Tax statement settings
    tax_id: Mapped[str | None] = mapped_column(EncryptedString, nullable=True)  # encrypted at rest
    is_501c3: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    tax_statement_disclaimer: Mapped[str | None] = mapped_column(Text, nullable=True)
    goods_services_provided: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    goods_services_statement: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    users: Mapped[list["ChurchUser"]] = relationship(
        back_populates="church",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class ChurchUser(Base):
    """Links a user to a church with a per-church role."""

    __tablename__ = "church_users"
    __table_args__ = (
        UniqueConstraint("user_id", "church_id", name="uq_church_users_user_church"),
        Index("idx_church_users_church_id", "church_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    church_id: Mapped[int] = mapped_column(ForeignKey("churches.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="viewer")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped[User] = relationship(back_populates="memberships", lazy="selectin")
    church: Mapped[Church] = relationship(back_populates="users", lazy="selectin")


class Invitation(Base):
    __tablename__ = "invitations"
    __table_args__ = (
        Index("idx_invitations_church_email", "church_id", "email"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    church_id: Mapped[int] = mapped_column(ForeignKey("churches.id", ondelete="CASCADE"), nullable=False)
    invited_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    church: Mapped[Church] = relationship(lazy="selectin")


class AuditEvent(Base):
    """
    Append-only audit trail event.
    Keep this table intentionally generic; module-specific tables can refer to it by id if needed.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("idx_audit_events_church_id", "church_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    church_id: Mapped[int | None] = mapped_column(ForeignKey("churches.id", ondelete="SET NULL"), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "member.create"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "Member"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.steward.modules.members.models import Household, Member, MembershipHistory  # noqa: E402,F401
from app.steward.modules.attendance.models import Attendance, Service  # noqa: E402,F401
from app.steward.modules.giving.models import Giving, GivingCategory, GivingItem  # noqa: E402,F401
from app.steward.modules.statements.models import GivingStatement  # noqa: E402,F401
from app.steward.modules.billing.models import Subscription  # noqa: E402,F401
