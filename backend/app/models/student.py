import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import Date, DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class Student(Base):
    __tablename__ = "students"
    __table_args__ = (
        UniqueConstraint("tenant_id", "student_id", name="uq_students_tenant_student_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    member_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("members.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # School-issued admission number
    student_id: Mapped[str] = mapped_column(String(50), nullable=False)
    admission_date: Mapped[date] = mapped_column(Date, nullable=False)

    roll_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    class_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    section: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    academic_year: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    parent_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    parent_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    parent_email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
