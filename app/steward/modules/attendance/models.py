from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.steward.models import Base


class Service(Base):
    __tablename__ = "services"
    __table_args__ = (
        UniqueConstraint("church_id", "service_date", "service_type", name="uq_services_church_date_type"),
        Index("idx_services_church_date", "church_id", "service_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    church_id: Mapped[int] = mapped_column(ForeignKey("churches.id", ondelete="CASCADE"), nullable=False)
    service_date: Mapped[date] = mapped_column(Date, nullable=False)
    service_type: Mapped[str] = mapped_column(String(32), nullable=False)
    service_time: Mapped[str | None] = mapped_column(String(16), nullable=True)  # "10:30"

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    attendance: Mapped[list["Attendance"]] = relationship(
        "Attendance",
        back_populates="service",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )


class Attendance(Base):
    __tablename__ = "attendance"
    __table_args__ = (
        UniqueConstraint("member_id", "service_id", name="uq_attendance_member_service"),
        Index("idx_attendance_service_id", "service_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id", ondelete="CASCADE"), nullable=False)
    attended: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    took_communion: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    service: Mapped[Service] = relationship("Service", back_populates="attendance", lazy="selectin")
