"""Class-ownership and enrollment-membership checks.

Read-only predicates; every teacher- or student-scoped mutation calls the
``require_*`` forms before writing anything.
"""

from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.schemas import CurrentUser
from app.core.enums import EnrollmentStatus, UserRole
from app.core.exceptions import ErrorCode, ServiceError
from app.core.models import ClassSection, Enrollment


async def is_class_owner(db: AsyncSession, teacher_id: UUID, class_id: UUID, lock: bool = False) -> bool:
    stmt = select(ClassSection.id).where(
        ClassSection.id == class_id,
        ClassSection.teacher_id == teacher_id,
    )
    if lock:
        # Holds the class row so ownership cannot change before the caller commits
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none() is not None


async def is_actively_enrolled(db: AsyncSession, student_id: UUID, class_id: UUID) -> bool:
    result = await db.execute(
        select(Enrollment.id).where(
            Enrollment.student_id == student_id,
            Enrollment.class_id == class_id,
            Enrollment.status == EnrollmentStatus.ACTIVE.value,
        )
    )
    return result.scalar_one_or_none() is not None


async def require_class_ownership(db: AsyncSession, teacher_id: UUID, class_id: UUID, lock: bool = False) -> None:
    """Missing classes fail the same way as foreign ones, so the error never reveals which classes exist."""
    if not await is_class_owner(db, teacher_id, class_id, lock=lock):
        raise ServiceError.from_code(
            ErrorCode.UNAUTHORIZED_CLASS_ACCESS,
            "Not allowed to access this class",
        )


async def require_active_enrollment(db: AsyncSession, student_id: UUID, class_id: UUID) -> None:
    if not await is_actively_enrolled(db, student_id, class_id):
        raise ServiceError.from_code(
            ErrorCode.STUDENT_NOT_ENROLLED,
            "Student is not actively enrolled in this class",
        )


async def ensure_class_manager(db: AsyncSession, user: CurrentUser, class_id: UUID, lock: bool = True) -> None:
    """Admins manage every class; teachers only the ones they own.

    Run inside the transaction of the write it guards: the class row stays
    locked until that write commits.
    """
    if user.is_admin:
        return
    await require_class_ownership(db, user.id, class_id, lock=lock)


def ensure_self_or_staff(user: CurrentUser, student_id: UUID) -> None:
    """Students may only read their own records."""
    if user.role == UserRole.STUDENT.value and user.id != student_id:
        raise ServiceError(
            "Students can only access their own records",
            status.HTTP_403_FORBIDDEN,
        )
