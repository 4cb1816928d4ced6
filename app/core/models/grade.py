import uuid

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base, utcnow


class Grade(Base):
    """
    Score for one submission. percentage and letter_grade are derived from
    points_earned / points_possible and are only written together with them.
    """

    __tablename__ = "grades"
    __table_args__ = (
        Index("ix_grade_class", "class_id"),
        Index("ix_grade_student_class", "student_id", "class_id"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    submission_id = Column(Uuid, ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False, unique=True)
    student_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    assignment_id = Column(Uuid, ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False)
    class_id = Column(Uuid, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False)
    points_earned = Column(Float, nullable=False)
    points_possible = Column(Float, nullable=False)
    percentage = Column(Float, nullable=False)
    letter_grade = Column(String(2), nullable=False)
    comments = Column(Text, nullable=True)
    graded_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    graded_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    assignment = relationship("Assignment", foreign_keys=[assignment_id])
    school_class = relationship("ClassSection", foreign_keys=[class_id])
