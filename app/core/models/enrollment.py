import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text, Uuid, text
from sqlalchemy.orm import relationship

from app.core.enums import EnrollmentStatus
from app.db.session import Base, utcnow


class Enrollment(Base):
    """
    Student membership in a ClassSection. Never hard-deleted: leaving sets status INACTIVE,
    re-joining reactivates the latest inactive row in place.
    At most one ACTIVE row per (student, class), enforced by a partial unique index.
    """

    __tablename__ = "enrollments"
    __table_args__ = (
        Index(
            "uq_enrollment_active_student_class",
            "student_id",
            "class_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
        Index("ix_enrollment_class_status", "class_id", "status"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    class_id = Column(Uuid, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False, default=EnrollmentStatus.ACTIVE.value)
    enrollment_date = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    unenroll_date = Column(DateTime(timezone=True), nullable=True)
    enrolled_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    unenrolled_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    unenroll_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    updated_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    student = relationship("User", foreign_keys=[student_id])
    school_class = relationship("ClassSection", foreign_keys=[class_id])
