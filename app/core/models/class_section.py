"""One offering of a course, owned by a single teacher. Named ClassSection to avoid Python 'class' keyword."""
import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship

from app.core.enums import ClassStatus, Term
from app.db.session import Base, utcnow


class ClassSection(Base):
    """Enrollment is always scoped to one ClassSection. Soft delete via status."""

    __tablename__ = "classes"
    __table_args__ = (CheckConstraint("capacity > 0", name="ck_class_capacity_positive"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    code = Column(String(20), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    teacher_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    academic_year = Column(String(9), nullable=False)  # e.g. "2024-2025"
    term = Column(String(20), nullable=False, default=Term.FIRST.value)
    capacity = Column(Integer, nullable=False, default=30)
    status = Column(String(20), nullable=False, default=ClassStatus.ACTIVE.value)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    teacher = relationship("User", foreign_keys=[teacher_id])
