"""Grade recording, regrading and the per-student / per-class rollups built on grades.

percentage and letter_grade are never accepted from callers: they are derived
from points_earned / points_possible through app.core.grading and written in
the same statement as the numbers they come from.
"""

from datetime import timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.access import require_active_enrollment, require_class_ownership
from app.core.enums import EnrollmentStatus, StandingStatus
from app.core.exceptions import ErrorCode, ServiceError
from app.core.grading import (
    PERCENT_PRECISION,
    derive_grade_fields,
    distribution,
    letter_grade_for,
    mean,
    rolling_averages,
    sample_std_dev,
)
from app.core.logging import get_logger
from app.core.models import Assignment, ClassSection, Enrollment, Grade, Submission, User
from app.db.session import transaction, utcnow

from .schemas import (
    ClassGradeItem,
    ClassStandingReport,
    ClassStatistics,
    GPAResponse,
    GradeResponse,
    GradeTrendPoint,
    GradeUpdate,
    ProgressPoint,
    RecordGradeRequest,
    StudentGradeItem,
    StudentStanding,
    TranscriptClass,
    TranscriptResponse,
)

logger = get_logger(__name__)


def _round(value) -> Optional[float]:
    return round(float(value), PERCENT_PRECISION) if value is not None else None


def _grade_fields(g: Grade) -> dict:
    return {
        "id": g.id,
        "submission_id": g.submission_id,
        "student_id": g.student_id,
        "assignment_id": g.assignment_id,
        "class_id": g.class_id,
        "points_earned": g.points_earned,
        "points_possible": g.points_possible,
        "percentage": g.percentage,
        "letter_grade": g.letter_grade,
        "comments": g.comments,
        "graded_by": g.graded_by,
        "graded_at": g.graded_at,
        "updated_by": g.updated_by,
    }


def _grade_to_response(g: Grade) -> GradeResponse:
    return GradeResponse(**_grade_fields(g))


async def _get_grade_for_update(db: AsyncSession, grade_id: UUID) -> Grade:
    result = await db.execute(select(Grade).where(Grade.id == grade_id).with_for_update())
    grade = result.scalar_one_or_none()
    if not grade:
        raise ServiceError.from_code(ErrorCode.GRADE_NOT_FOUND, "Grade not found")
    return grade


# ----- Writes -----
async def record_grade(
    db: AsyncSession,
    payload: RecordGradeRequest,
    graded_by: UUID,
) -> GradeResponse:
    """Score a submission. points_possible defaults to the assignment's value."""
    async with transaction(db):
        assignment = await db.get(Assignment, payload.assignment_id)
        if not assignment or assignment.class_id != payload.class_id:
            raise ServiceError.from_code(ErrorCode.ASSIGNMENT_NOT_FOUND, "Assignment not found in this class")

        # Locked so concurrent graders of one submission queue behind the existence check below
        result = await db.execute(
            select(Submission).where(Submission.id == payload.submission_id).with_for_update()
        )
        submission = result.scalar_one_or_none()
        if (
            not submission
            or submission.assignment_id != payload.assignment_id
            or submission.student_id != payload.student_id
        ):
            raise ServiceError.from_code(ErrorCode.SUBMISSION_NOT_FOUND, "Submission not found for this student")

        await require_class_ownership(db, graded_by, payload.class_id, lock=True)
        await require_active_enrollment(db, payload.student_id, payload.class_id)

        existing = await db.execute(select(Grade.id).where(Grade.submission_id == payload.submission_id))
        if existing.scalar_one_or_none() is not None:
            raise ServiceError.from_code(ErrorCode.GRADE_ALREADY_RECORDED, "Submission already has a grade")

        points_possible = (
            payload.points_possible if payload.points_possible is not None else assignment.points_possible
        )
        percentage, letter = derive_grade_fields(payload.points_earned, points_possible)
        grade = Grade(
            submission_id=payload.submission_id,
            student_id=payload.student_id,
            assignment_id=payload.assignment_id,
            class_id=payload.class_id,
            points_earned=payload.points_earned,
            points_possible=points_possible,
            percentage=percentage,
            letter_grade=letter,
            comments=payload.comments,
            graded_by=graded_by,
            graded_at=utcnow(),
        )
        db.add(grade)
        await db.flush()
        logger.info(
            "Grade recorded",
            grade_id=str(grade.id),
            student_id=str(payload.student_id),
            assignment_id=str(payload.assignment_id),
            percentage=percentage,
            letter_grade=letter,
            graded_by=str(graded_by),
        )
        return _grade_to_response(grade)


async def update_grade(
    db: AsyncSession,
    grade_id: UUID,
    teacher_id: UUID,
    updates: GradeUpdate,
) -> GradeResponse:
    """Regrade under a row lock; a new points_earned rewrites all derived fields at once."""
    async with transaction(db):
        grade = await _get_grade_for_update(db, grade_id)
        await require_class_ownership(db, teacher_id, grade.class_id, lock=True)

        changes = updates.model_dump(exclude_unset=True)
        if changes.get("points_earned", 0) is None:
            del changes["points_earned"]
        if not changes:
            raise ServiceError.from_code(ErrorCode.NO_VALID_FIELDS_TO_UPDATE, "No valid fields to update")

        if "comments" in changes:
            grade.comments = changes["comments"]
        if "points_earned" in changes:
            assignment = await db.get(Assignment, grade.assignment_id)
            if not assignment:
                raise ServiceError.from_code(ErrorCode.ASSIGNMENT_NOT_FOUND, "Assignment not found")
            percentage, letter = derive_grade_fields(changes["points_earned"], assignment.points_possible)
            grade.points_earned = changes["points_earned"]
            grade.points_possible = assignment.points_possible
            grade.percentage = percentage
            grade.letter_grade = letter
        grade.updated_by = teacher_id
        await db.flush()
        logger.info(
            "Grade updated",
            grade_id=str(grade_id),
            teacher_id=str(teacher_id),
            fields=sorted(changes),
        )
        return _grade_to_response(grade)


async def delete_grade(db: AsyncSession, grade_id: UUID, teacher_id: UUID) -> None:
    async with transaction(db):
        grade = await _get_grade_for_update(db, grade_id)
        await require_class_ownership(db, teacher_id, grade.class_id, lock=True)
        await db.delete(grade)
    logger.info("Grade deleted", grade_id=str(grade_id), teacher_id=str(teacher_id))


# ----- Reads -----
async def list_student_grades(
    db: AsyncSession,
    student_id: UUID,
    class_id: Optional[UUID] = None,
    academic_year: Optional[str] = None,
) -> List[StudentGradeItem]:
    stmt = (
        select(Grade, Assignment.title, Assignment.assignment_type, ClassSection.name, ClassSection.code)
        .join(Assignment, Grade.assignment_id == Assignment.id)
        .join(ClassSection, Grade.class_id == ClassSection.id)
        .where(Grade.student_id == student_id)
    )
    if class_id:
        stmt = stmt.where(Grade.class_id == class_id)
    if academic_year:
        stmt = stmt.where(ClassSection.academic_year == academic_year)
    stmt = stmt.order_by(Grade.graded_at.desc())
    async with transaction(db):
        rows = (await db.execute(stmt)).all()
    return [
        StudentGradeItem(
            **_grade_fields(g),
            assignment_title=title,
            assignment_type=a_type,
            class_name=class_name,
            class_code=class_code,
        )
        for g, title, a_type, class_name, class_code in rows
    ]


async def list_class_grades(db: AsyncSession, class_id: UUID, teacher_id: UUID) -> List[ClassGradeItem]:
    async with transaction(db):
        await require_class_ownership(db, teacher_id, class_id)
        rows = (
            await db.execute(
                select(Grade, Assignment.title, User.full_name, User.email)
                .join(Assignment, Grade.assignment_id == Assignment.id)
                .join(User, Grade.student_id == User.id)
                .where(Grade.class_id == class_id)
                .order_by(User.full_name, Assignment.title)
            )
        ).all()
    return [
        ClassGradeItem(**_grade_fields(g), assignment_title=title, student_name=name, student_email=email)
        for g, title, name, email in rows
    ]


async def get_class_statistics(db: AsyncSession, class_id: UUID, teacher_id: UUID) -> ClassStatistics:
    async with transaction(db):
        await require_class_ownership(db, teacher_id, class_id)
        result = await db.execute(select(Grade.percentage).where(Grade.class_id == class_id))
        percentages = [float(p) for p in result.scalars().all()]

    return ClassStatistics(
        class_id=class_id,
        total_grades=len(percentages),
        average_percentage=mean(percentages),
        min_percentage=_round(min(percentages)) if percentages else None,
        max_percentage=_round(max(percentages)) if percentages else None,
        std_deviation=sample_std_dev(percentages),
        distribution=distribution([letter_grade_for(p) for p in percentages]),
    )


async def _gpa(
    db: AsyncSession,
    student_id: UUID,
    class_id: Optional[UUID],
    academic_year: Optional[str],
) -> GPAResponse:
    stmt = (
        select(func.avg(Grade.percentage), func.count(Grade.id))
        .join(ClassSection, Grade.class_id == ClassSection.id)
        .where(Grade.student_id == student_id)
    )
    if class_id:
        stmt = stmt.where(Grade.class_id == class_id)
    if academic_year:
        stmt = stmt.where(ClassSection.academic_year == academic_year)
    avg, count = (await db.execute(stmt)).one()
    if not count:
        # No grades in scope: GPA is undefined, not zero
        return GPAResponse(student_id=student_id, gpa=None, letter_grade=None, total_grades=0)
    gpa = _round(avg)
    return GPAResponse(student_id=student_id, gpa=gpa, letter_grade=letter_grade_for(gpa), total_grades=count)


async def get_student_gpa(
    db: AsyncSession,
    student_id: UUID,
    class_id: Optional[UUID] = None,
    academic_year: Optional[str] = None,
) -> GPAResponse:
    """Mean percentage over matching grades, banded with the same table as single grades."""
    async with transaction(db):
        return await _gpa(db, student_id, class_id, academic_year)


async def get_student_progress(db: AsyncSession, student_id: UUID, class_id: UUID) -> List[ProgressPoint]:
    async with transaction(db):
        rows = (
            await db.execute(
                select(Grade, Assignment.title, Assignment.assignment_type)
                .join(Assignment, Grade.assignment_id == Assignment.id)
                .where(Grade.student_id == student_id, Grade.class_id == class_id)
                .order_by(Grade.graded_at.asc())
            )
        ).all()
    averages = rolling_averages(float(g.percentage) for g, _, _ in rows)
    return [
        ProgressPoint(
            grade_id=g.id,
            assignment_id=g.assignment_id,
            assignment_title=title,
            assignment_type=a_type,
            graded_at=g.graded_at,
            percentage=g.percentage,
            letter_grade=g.letter_grade,
            rolling_average=avg,
        )
        for (g, title, a_type), avg in zip(rows, averages)
    ]


async def _class_standings(db: AsyncSession, class_id: UUID) -> List[StudentStanding]:
    """Mean percentage of every actively enrolled student; students without grades keep average None."""
    rows = (
        await db.execute(
            select(User.id, User.full_name, User.email, func.avg(Grade.percentage), func.count(Grade.id))
            .select_from(Enrollment)
            .join(User, Enrollment.student_id == User.id)
            .outerjoin(Grade, and_(Grade.student_id == User.id, Grade.class_id == class_id))
            .where(
                Enrollment.class_id == class_id,
                Enrollment.status == EnrollmentStatus.ACTIVE.value,
            )
            .group_by(User.id, User.full_name, User.email)
        )
    ).all()
    standings = []
    for student_id, name, email, avg, count in rows:
        average = _round(avg) if count else None
        standings.append(
            StudentStanding(
                student_id=student_id,
                student_name=name,
                student_email=email,
                average_percentage=average,
                letter_grade=letter_grade_for(average) if average is not None else None,
                total_grades=count,
                status=StandingStatus.NO_GRADES.value if average is None else StandingStatus.RANKED.value,
            )
        )
    return standings


def _split_no_grades(standings: List[StudentStanding]):
    graded = [s for s in standings if s.average_percentage is not None]
    ungraded = sorted((s for s in standings if s.average_percentage is None), key=lambda s: s.student_name)
    return graded, ungraded


async def get_failing_students(
    db: AsyncSession,
    class_id: UUID,
    teacher_id: UUID,
    threshold: float = 65.0,
) -> ClassStandingReport:
    async with transaction(db):
        await require_class_ownership(db, teacher_id, class_id)
        standings = await _class_standings(db, class_id)
    graded, ungraded = _split_no_grades(standings)
    failing = sorted((s for s in graded if s.average_percentage < threshold), key=lambda s: s.average_percentage)
    for s in failing:
        s.status = StandingStatus.FAILING.value
    return ClassStandingReport(class_id=class_id, students=failing, no_grades=ungraded)


async def get_top_performers(
    db: AsyncSession,
    class_id: UUID,
    teacher_id: UUID,
    limit: int = 10,
) -> ClassStandingReport:
    async with transaction(db):
        await require_class_ownership(db, teacher_id, class_id)
        standings = await _class_standings(db, class_id)
    graded, ungraded = _split_no_grades(standings)
    ranked = sorted(graded, key=lambda s: s.average_percentage, reverse=True)[:limit]
    return ClassStandingReport(class_id=class_id, students=ranked, no_grades=ungraded)


async def generate_transcript(
    db: AsyncSession,
    student_id: UUID,
    academic_year: Optional[str] = None,
) -> TranscriptResponse:
    stmt = (
        select(
            ClassSection.id,
            ClassSection.name,
            ClassSection.code,
            ClassSection.academic_year,
            User.full_name,
            func.avg(Grade.percentage),
            func.count(Grade.id),
            func.max(Grade.graded_at),
        )
        .select_from(Grade)
        .join(ClassSection, Grade.class_id == ClassSection.id)
        .outerjoin(User, ClassSection.teacher_id == User.id)
        .where(Grade.student_id == student_id)
    )
    if academic_year:
        stmt = stmt.where(ClassSection.academic_year == academic_year)
    stmt = stmt.group_by(
        ClassSection.id,
        ClassSection.name,
        ClassSection.code,
        ClassSection.academic_year,
        User.full_name,
    ).order_by(ClassSection.academic_year.desc(), ClassSection.name)

    async with transaction(db):
        rows = (await db.execute(stmt)).all()
        overall = await _gpa(db, student_id, None, academic_year)

    classes = []
    for class_id, name, code, year, teacher_name, avg, count, last_graded in rows:
        class_average = _round(avg)
        classes.append(
            TranscriptClass(
                class_id=class_id,
                class_name=name,
                class_code=code,
                academic_year=year,
                teacher_name=teacher_name,
                class_average=class_average,
                class_letter_grade=letter_grade_for(class_average),
                total_assignments=count,
                last_graded=last_graded,
            )
        )
    return TranscriptResponse(
        student_id=student_id,
        academic_year=academic_year,
        overall_gpa=overall,
        classes=classes,
        generated_at=utcnow(),
    )


async def get_grade_trends(
    db: AsyncSession,
    class_id: UUID,
    teacher_id: UUID,
    days: int = 30,
) -> List[GradeTrendPoint]:
    """Daily mean percentage over the trailing window, oldest day first."""
    since = utcnow() - timedelta(days=days)
    grade_date = func.date(Grade.graded_at)
    async with transaction(db):
        await require_class_ownership(db, teacher_id, class_id)
        rows = (
            await db.execute(
                select(grade_date, func.avg(Grade.percentage), func.count(Grade.id))
                .where(Grade.class_id == class_id, Grade.graded_at >= since)
                .group_by(grade_date)
                .order_by(grade_date.asc())
            )
        ).all()
    return [
        GradeTrendPoint(grade_date=day, average_percentage=_round(avg), grades_given=count)
        for day, avg, count in rows
    ]
