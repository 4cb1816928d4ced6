"""Enrollment lifecycle: join, leave, transfer and bulk join under a class capacity limit.

Writes that depend on the active-enrollment count lock the ClassSection row
(SELECT ... FOR UPDATE) and re-count inside the same transaction, so two
concurrent requests for the last seat cannot both succeed.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import and_, case, distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.auth.access import ensure_class_manager
from app.auth.schemas import CurrentUser
from app.core.enums import ClassStatus, EnrollmentStatus, UserRole, UserStatus
from app.core.exceptions import ErrorCode, ServiceError
from app.core.logging import get_logger
from app.core.models import ClassSection, Enrollment, User
from app.db.session import transaction, utcnow

from .schemas import (
    BulkEnrollFailure,
    BulkEnrollResponse,
    BulkEnrollSuccess,
    BulkEnrollSummary,
    ClassRosterItem,
    DateRangeEnrollmentItem,
    EligibilityResponse,
    EnrollmentHistoryItem,
    EnrollmentResponse,
    EnrollmentStatistics,
    StudentEnrollmentItem,
    TransferResponse,
)

logger = get_logger(__name__)

ACTIVE = EnrollmentStatus.ACTIVE.value
INACTIVE = EnrollmentStatus.INACTIVE.value


def _enrollment_fields(e: Enrollment) -> Dict[str, Any]:
    return {
        "id": e.id,
        "student_id": e.student_id,
        "class_id": e.class_id,
        "status": e.status,
        "enrollment_date": e.enrollment_date,
        "unenroll_date": e.unenroll_date,
        "enrolled_by": e.enrolled_by,
        "unenrolled_by": e.unenrolled_by,
        "unenroll_reason": e.unenroll_reason,
        "notes": e.notes,
    }


def _enrollment_to_response(e: Enrollment) -> EnrollmentResponse:
    return EnrollmentResponse(**_enrollment_fields(e))


# ----- Locked building blocks (caller owns the transaction) -----
async def _get_active_student(db: AsyncSession, student_id: UUID) -> User:
    result = await db.execute(
        select(User).where(
            User.id == student_id,
            User.role == UserRole.STUDENT.value,
            User.status == UserStatus.ACTIVE.value,
        )
    )
    student = result.scalar_one_or_none()
    if not student:
        raise ServiceError.from_code(ErrorCode.STUDENT_NOT_FOUND, "Student not found or inactive")
    return student


async def _lock_active_class(db: AsyncSession, class_id: UUID) -> ClassSection:
    """Row-lock the class so capacity checks against it serialize until commit/rollback."""
    result = await db.execute(
        select(ClassSection)
        .where(
            ClassSection.id == class_id,
            ClassSection.status == ClassStatus.ACTIVE.value,
        )
        .with_for_update()
    )
    school_class = result.scalar_one_or_none()
    if not school_class:
        raise ServiceError.from_code(ErrorCode.CLASS_NOT_FOUND, "Class not found or inactive")
    return school_class


async def _count_active(db: AsyncSession, class_id: UUID) -> int:
    result = await db.execute(
        select(func.count(Enrollment.id)).where(
            Enrollment.class_id == class_id,
            Enrollment.status == ACTIVE,
        )
    )
    return int(result.scalar_one())


async def _latest_enrollment(db: AsyncSession, student_id: UUID, class_id: UUID) -> Optional[Enrollment]:
    """Active row if there is one, otherwise the most recent historical row."""
    result = await db.execute(
        select(Enrollment)
        .where(
            Enrollment.student_id == student_id,
            Enrollment.class_id == class_id,
        )
        .order_by(
            case((Enrollment.status == ACTIVE, 0), else_=1),
            Enrollment.enrollment_date.desc(),
        )
        .limit(1)
        .with_for_update()
    )
    return result.scalars().first()


async def _enroll_locked(
    db: AsyncSession,
    student_id: UUID,
    class_id: UUID,
    actor_id: Optional[UUID],
) -> Enrollment:
    await _get_active_student(db, student_id)
    school_class = await _lock_active_class(db, class_id)
    if await _count_active(db, class_id) >= school_class.capacity:
        raise ServiceError.from_code(ErrorCode.CLASS_AT_CAPACITY, "Class is at capacity")

    existing = await _latest_enrollment(db, student_id, class_id)
    if existing and existing.status == ACTIVE:
        raise ServiceError.from_code(ErrorCode.STUDENT_ALREADY_ENROLLED, "Student is already enrolled in this class")

    now = utcnow()
    if existing:
        existing.status = ACTIVE
        existing.enrollment_date = now
        existing.enrolled_by = actor_id
        existing.unenroll_date = None
        existing.unenrolled_by = None
        existing.unenroll_reason = None
        enrollment = existing
        action = "reactivated"
    else:
        enrollment = Enrollment(
            student_id=student_id,
            class_id=class_id,
            status=ACTIVE,
            enrollment_date=now,
            enrolled_by=actor_id,
        )
        db.add(enrollment)
        action = "created"
    await db.flush()
    logger.info(
        "Student enrolled",
        action=action,
        student_id=str(student_id),
        class_id=str(class_id),
        enrollment_id=str(enrollment.id),
        enrolled_by=str(actor_id) if actor_id else None,
    )
    return enrollment


async def _unenroll_locked(
    db: AsyncSession,
    student_id: UUID,
    class_id: UUID,
    actor_id: Optional[UUID],
    reason: Optional[str],
) -> Enrollment:
    result = await db.execute(
        select(Enrollment)
        .where(
            Enrollment.student_id == student_id,
            Enrollment.class_id == class_id,
            Enrollment.status == ACTIVE,
        )
        .with_for_update()
    )
    enrollment = result.scalar_one_or_none()
    if not enrollment:
        raise ServiceError.from_code(ErrorCode.ACTIVE_ENROLLMENT_NOT_FOUND, "Active enrollment not found")
    enrollment.status = INACTIVE
    enrollment.unenroll_date = utcnow()
    enrollment.unenrolled_by = actor_id
    enrollment.unenroll_reason = reason
    await db.flush()
    logger.info(
        "Student unenrolled",
        student_id=str(student_id),
        class_id=str(class_id),
        enrollment_id=str(enrollment.id),
        unenrolled_by=str(actor_id) if actor_id else None,
        reason=reason,
    )
    return enrollment


def _transfer_reason(reason: Optional[str]) -> str:
    return f"Transfer: {reason}" if reason else "Transfer"


# ----- State transitions -----
async def enroll(
    db: AsyncSession,
    student_id: UUID,
    class_id: UUID,
    actor_id: Optional[UUID] = None,
) -> EnrollmentResponse:
    """Join a class, reusing the latest inactive row for the pair when one exists."""
    try:
        async with transaction(db):
            enrollment = await _enroll_locked(db, student_id, class_id, actor_id)
            return _enrollment_to_response(enrollment)
    except ServiceError as e:
        logger.warning("Enrollment rejected", code=e.code, student_id=str(student_id), class_id=str(class_id))
        raise


async def unenroll(
    db: AsyncSession,
    student_id: UUID,
    class_id: UUID,
    actor_id: Optional[UUID] = None,
    reason: Optional[str] = None,
) -> EnrollmentResponse:
    async with transaction(db):
        enrollment = await _unenroll_locked(db, student_id, class_id, actor_id, reason)
        return _enrollment_to_response(enrollment)


async def transfer(
    db: AsyncSession,
    student_id: UUID,
    from_class_id: UUID,
    to_class_id: UUID,
    actor_id: Optional[UUID] = None,
    reason: Optional[str] = None,
) -> TransferResponse:
    """Drop + join in one transaction. If joining fails the drop is rolled back too."""
    try:
        async with transaction(db):
            dropped = await _unenroll_locked(db, student_id, from_class_id, actor_id, _transfer_reason(reason))
            dropped_response = _enrollment_to_response(dropped)
            enrolled = await _enroll_locked(db, student_id, to_class_id, actor_id)
            response = TransferResponse(dropped=dropped_response, enrolled=_enrollment_to_response(enrolled))
    except ServiceError as e:
        logger.warning(
            "Transfer rolled back",
            code=e.code,
            student_id=str(student_id),
            from_class_id=str(from_class_id),
            to_class_id=str(to_class_id),
        )
        raise
    logger.info(
        "Student transferred",
        student_id=str(student_id),
        from_class_id=str(from_class_id),
        to_class_id=str(to_class_id),
        reason=reason,
    )
    return response


async def bulk_enroll(
    db: AsyncSession,
    class_id: UUID,
    student_ids: List[UUID],
    actor_id: Optional[UUID] = None,
) -> BulkEnrollResponse:
    """
    Reject the whole batch if it cannot fit, then enroll each student in its own
    transaction. Per-student failures are collected, not raised.
    """
    async with transaction(db):
        school_class = await _lock_active_class(db, class_id)
        current = await _count_active(db, class_id)
        if current + len(student_ids) > school_class.capacity:
            logger.warning(
                "Bulk enrollment exceeds capacity",
                class_id=str(class_id),
                requested=len(student_ids),
                active=current,
                capacity=school_class.capacity,
            )
            raise ServiceError.from_code(
                ErrorCode.BULK_ENROLLMENT_EXCEEDS_CAPACITY,
                f"Class has {school_class.capacity - current} open seats, {len(student_ids)} requested",
            )

    successful: List[BulkEnrollSuccess] = []
    failed: List[BulkEnrollFailure] = []
    for student_id in student_ids:
        try:
            async with transaction(db):
                enrollment = await _enroll_locked(db, student_id, class_id, actor_id)
                enrollment_id = enrollment.id
        except ServiceError as e:
            failed.append(
                BulkEnrollFailure(
                    student_id=student_id,
                    code=e.code.value if e.code else None,
                    message=e.message,
                )
            )
            continue
        successful.append(BulkEnrollSuccess(student_id=student_id, enrollment_id=enrollment_id))

    logger.info(
        "Bulk enrollment completed",
        class_id=str(class_id),
        total_requested=len(student_ids),
        successful=len(successful),
        failed=len(failed),
    )
    return BulkEnrollResponse(
        successful=successful,
        failed=failed,
        summary=BulkEnrollSummary(
            total=len(student_ids),
            success_count=len(successful),
            failed_count=len(failed),
        ),
    )


async def check_eligibility(db: AsyncSession, student_id: UUID, class_id: UUID) -> EligibilityResponse:
    checks = EligibilityResponse()
    async with transaction(db):
        student = await db.get(User, student_id)
        if student:
            checks.student_exists = True
            checks.student_active = (
                student.status == UserStatus.ACTIVE.value and student.role == UserRole.STUDENT.value
            )

        school_class = await db.get(ClassSection, class_id)
        if school_class:
            checks.class_exists = True
            checks.class_active = school_class.status == ClassStatus.ACTIVE.value
            checks.has_capacity = await _count_active(db, class_id) < school_class.capacity

        existing = await _active_enrollment_id(db, student_id, class_id)
        checks.not_already_enrolled = existing is None

    checks.eligible = all(
        (
            checks.student_exists,
            checks.student_active,
            checks.class_exists,
            checks.class_active,
            checks.has_capacity,
            checks.not_already_enrolled,
        )
    )
    return checks


async def _active_enrollment_id(db: AsyncSession, student_id: UUID, class_id: UUID) -> Optional[UUID]:
    result = await db.execute(
        select(Enrollment.id).where(
            Enrollment.student_id == student_id,
            Enrollment.class_id == class_id,
            Enrollment.status == ACTIVE,
        )
    )
    return result.scalar_one_or_none()


async def update_enrollment_notes(
    db: AsyncSession,
    enrollment_id: UUID,
    notes: Optional[str],
    actor: CurrentUser,
) -> EnrollmentResponse:
    """Only a manager of the enrollment's class may rewrite its notes."""
    async with transaction(db):
        result = await db.execute(select(Enrollment).where(Enrollment.id == enrollment_id).with_for_update())
        enrollment = result.scalar_one_or_none()
        if not enrollment:
            raise ServiceError.from_code(ErrorCode.ENROLLMENT_NOT_FOUND, "Enrollment not found")
        await ensure_class_manager(db, actor, enrollment.class_id)
        enrollment.notes = notes
        enrollment.updated_by = actor.id
        await db.flush()
        logger.info("Enrollment notes updated", enrollment_id=str(enrollment_id), updated_by=str(actor.id))
        return _enrollment_to_response(enrollment)


# ----- Queries -----
async def list_student_enrollments(
    db: AsyncSession,
    student_id: UUID,
    status: Optional[str] = ACTIVE,
    academic_year: Optional[str] = None,
) -> List[StudentEnrollmentItem]:
    stmt = (
        select(
            Enrollment,
            ClassSection.name,
            ClassSection.code,
            ClassSection.academic_year,
            User.full_name,
            User.email,
        )
        .join(ClassSection, Enrollment.class_id == ClassSection.id)
        .outerjoin(User, ClassSection.teacher_id == User.id)
        .where(Enrollment.student_id == student_id)
    )
    if status:
        stmt = stmt.where(Enrollment.status == status)
    if academic_year:
        stmt = stmt.where(ClassSection.academic_year == academic_year)
    stmt = stmt.order_by(ClassSection.name)
    async with transaction(db):
        rows = (await db.execute(stmt)).all()
    return [
        StudentEnrollmentItem(
            **_enrollment_fields(e),
            class_name=class_name,
            class_code=class_code,
            academic_year=year,
            teacher_name=teacher_name,
            teacher_email=teacher_email,
        )
        for e, class_name, class_code, year, teacher_name, teacher_email in rows
    ]


async def list_class_enrollments(
    db: AsyncSession,
    class_id: UUID,
    status: Optional[str] = ACTIVE,
) -> List[ClassRosterItem]:
    stmt = (
        select(Enrollment, User.full_name, User.email)
        .join(User, Enrollment.student_id == User.id)
        .where(
            Enrollment.class_id == class_id,
            User.status == UserStatus.ACTIVE.value,
        )
    )
    if status:
        stmt = stmt.where(Enrollment.status == status)
    stmt = stmt.order_by(User.full_name)
    async with transaction(db):
        rows = (await db.execute(stmt)).all()
    return [
        ClassRosterItem(**_enrollment_fields(e), student_name=name, student_email=email)
        for e, name, email in rows
    ]


async def get_enrollment_history(
    db: AsyncSession,
    student_id: UUID,
    limit: int = 50,
    offset: int = 0,
) -> List[EnrollmentHistoryItem]:
    """Every enrollment row of the student, newest enrollment first."""
    teacher = aliased(User)
    enroller = aliased(User)
    unenroller = aliased(User)
    stmt = (
        select(
            Enrollment,
            ClassSection.name,
            ClassSection.code,
            ClassSection.academic_year,
            teacher.full_name,
            enroller.full_name,
            unenroller.full_name,
        )
        .join(ClassSection, Enrollment.class_id == ClassSection.id)
        .outerjoin(teacher, ClassSection.teacher_id == teacher.id)
        .outerjoin(enroller, Enrollment.enrolled_by == enroller.id)
        .outerjoin(unenroller, Enrollment.unenrolled_by == unenroller.id)
        .where(Enrollment.student_id == student_id)
        .order_by(Enrollment.enrollment_date.desc())
        .limit(limit)
        .offset(offset)
    )
    async with transaction(db):
        rows = (await db.execute(stmt)).all()
    return [
        EnrollmentHistoryItem(
            **_enrollment_fields(e),
            class_name=class_name,
            class_code=class_code,
            academic_year=year,
            teacher_name=teacher_name,
            enrolled_by_name=enrolled_by_name,
            unenrolled_by_name=unenrolled_by_name,
        )
        for e, class_name, class_code, year, teacher_name, enrolled_by_name, unenrolled_by_name in rows
    ]


async def list_enrollments_by_date_range(
    db: AsyncSession,
    start: datetime,
    end: datetime,
    status: Optional[str] = None,
) -> List[DateRangeEnrollmentItem]:
    stmt = (
        select(Enrollment, User.full_name, User.email, ClassSection.name, ClassSection.code)
        .join(User, Enrollment.student_id == User.id)
        .join(ClassSection, Enrollment.class_id == ClassSection.id)
        .where(and_(Enrollment.enrollment_date >= start, Enrollment.enrollment_date <= end))
    )
    if status:
        stmt = stmt.where(Enrollment.status == status)
    stmt = stmt.order_by(Enrollment.enrollment_date.desc())
    async with transaction(db):
        rows = (await db.execute(stmt)).all()
    return [
        DateRangeEnrollmentItem(
            **_enrollment_fields(e),
            student_name=student_name,
            student_email=student_email,
            class_name=class_name,
            class_code=class_code,
        )
        for e, student_name, student_email, class_name, class_code in rows
    ]


async def get_enrollment_statistics(
    db: AsyncSession,
    class_id: Optional[UUID] = None,
    academic_year: Optional[str] = None,
) -> EnrollmentStatistics:
    stmt = select(
        func.count(Enrollment.id),
        func.count(case((Enrollment.status == ACTIVE, 1))),
        func.count(case((Enrollment.status == INACTIVE, 1))),
        func.count(distinct(Enrollment.student_id)),
        func.count(distinct(Enrollment.class_id)),
    ).join(ClassSection, Enrollment.class_id == ClassSection.id)
    if class_id:
        stmt = stmt.where(Enrollment.class_id == class_id)
    if academic_year:
        stmt = stmt.where(ClassSection.academic_year == academic_year)
    async with transaction(db):
        total, active, inactive, students, classes = (await db.execute(stmt)).one()
    return EnrollmentStatistics(
        total_enrollments=total,
        active_enrollments=active,
        inactive_enrollments=inactive,
        unique_students=students,
        unique_classes=classes,
    )
