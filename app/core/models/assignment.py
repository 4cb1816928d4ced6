"""Assignments and student submissions. Both are reference data for grading."""

import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Float, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.core.enums import AssignmentType
from app.db.session import Base, utcnow


class Assignment(Base):
    """Belongs to one ClassSection; points_possible is copied onto grades when they are recorded."""

    __tablename__ = "assignments"
    __table_args__ = (CheckConstraint("points_possible > 0", name="ck_assignment_points_positive"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    class_id = Column(Uuid, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    assignment_type = Column(String(50), nullable=False, default=AssignmentType.ASSIGNMENT.value)
    points_possible = Column(Float, nullable=False, default=100.0)
    due_date = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    school_class = relationship("ClassSection", foreign_keys=[class_id])


class Submission(Base):
    """One submission per (student, assignment). is_late is fixed at submission time."""

    __tablename__ = "submissions"
    __table_args__ = (
        UniqueConstraint("assignment_id", "student_id", name="uq_submission_assignment_student"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    assignment_id = Column(Uuid, ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=True)
    submitted_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    is_late = Column(Boolean, nullable=False, default=False)

    assignment = relationship("Assignment", foreign_keys=[assignment_id])
