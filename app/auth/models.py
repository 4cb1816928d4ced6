import uuid

from sqlalchemy import Column, DateTime, String, Uuid

from app.core.enums import UserStatus
from app.db.session import Base, utcnow


class User(Base):
    """Student, teacher or admin. Only id, role and status matter to enrollment and grading."""

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    # STUDENT | TEACHER | ADMIN
    role = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default=UserStatus.ACTIVE.value)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
