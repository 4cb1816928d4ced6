import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from app.api.v1.enrollments import service
from app.auth.access import ensure_class_manager
from app.auth.schemas import CurrentUser
from app.core.exceptions import ErrorCode, ServiceError
from app.core.models import Enrollment
from app.db.session import transaction


async def _rows(session_factory, student_id, class_id):
    async with session_factory() as session:
        async with transaction(session):
            result = await session.execute(
                select(Enrollment.status, Enrollment.unenroll_reason).where(
                    Enrollment.student_id == student_id,
                    Enrollment.class_id == class_id,
                )
            )
            return result.all()


async def _active_count(session_factory, class_id) -> int:
    async with session_factory() as session:
        async with transaction(session):
            result = await session.execute(
                select(func.count(Enrollment.id)).where(
                    Enrollment.class_id == class_id,
                    Enrollment.status == "ACTIVE",
                )
            )
            return result.scalar_one()


async def test_enroll_creates_active_row(db_session, seed) -> None:
    teacher_id = await seed.teacher()
    class_id = await seed.school_class(teacher_id=teacher_id)
    student_id = await seed.student()

    enrollment = await service.enroll(db_session, student_id, class_id, actor_id=teacher_id)

    assert enrollment.status == "ACTIVE"
    assert enrollment.student_id == student_id
    assert enrollment.enrolled_by == teacher_id
    assert enrollment.unenroll_date is None


async def test_enroll_unknown_or_inactive_student(db_session, seed) -> None:
    class_id = await seed.school_class()
    inactive_id = await seed.student(status="INACTIVE")
    teacher_id = await seed.teacher()

    for student_id in (uuid.uuid4(), inactive_id, teacher_id):
        with pytest.raises(ServiceError) as exc:
            await service.enroll(db_session, student_id, class_id)
        assert exc.value.code == ErrorCode.STUDENT_NOT_FOUND
        assert exc.value.status_code == 404


async def test_enroll_inactive_class(db_session, seed) -> None:
    class_id = await seed.school_class(status="INACTIVE")
    student_id = await seed.student()

    with pytest.raises(ServiceError) as exc:
        await service.enroll(db_session, student_id, class_id)
    assert exc.value.code == ErrorCode.CLASS_NOT_FOUND


async def test_enroll_twice_is_rejected(db_session, seed) -> None:
    class_id = await seed.school_class()
    student_id = await seed.student()

    await service.enroll(db_session, student_id, class_id)
    with pytest.raises(ServiceError) as exc:
        await service.enroll(db_session, student_id, class_id)
    assert exc.value.code == ErrorCode.STUDENT_ALREADY_ENROLLED
    assert exc.value.status_code == 409


async def test_capacity_boundary(db_session, seed, session_factory) -> None:
    class_id = await seed.school_class(capacity=2)
    first, second, third = [await seed.student() for _ in range(3)]

    await service.enroll(db_session, first, class_id)
    # Last seat is still available
    await service.enroll(db_session, second, class_id)
    with pytest.raises(ServiceError) as exc:
        await service.enroll(db_session, third, class_id)
    assert exc.value.code == ErrorCode.CLASS_AT_CAPACITY
    assert await _active_count(session_factory, class_id) == 2


async def test_reenroll_reactivates_existing_row(db_session, seed, session_factory) -> None:
    class_id = await seed.school_class()
    student_id = await seed.student()

    first = await service.enroll(db_session, student_id, class_id)
    await service.unenroll(db_session, student_id, class_id, reason="moving")
    again = await service.enroll(db_session, student_id, class_id)

    assert again.id == first.id
    assert again.status == "ACTIVE"
    assert again.unenroll_date is None
    assert again.unenroll_reason is None
    rows = await _rows(session_factory, student_id, class_id)
    assert len(rows) == 1


async def test_unenroll_sets_inactive(db_session, seed) -> None:
    teacher_id = await seed.teacher()
    class_id = await seed.school_class(teacher_id=teacher_id)
    student_id = await seed.student()
    await service.enroll(db_session, student_id, class_id)

    result = await service.unenroll(db_session, student_id, class_id, actor_id=teacher_id, reason="Schedule conflict")

    assert result.status == "INACTIVE"
    assert result.unenroll_date is not None
    assert result.unenrolled_by == teacher_id
    assert result.unenroll_reason == "Schedule conflict"


async def test_unenroll_without_active_enrollment(db_session, seed) -> None:
    class_id = await seed.school_class()
    student_id = await seed.student()

    with pytest.raises(ServiceError) as exc:
        await service.unenroll(db_session, student_id, class_id)
    assert exc.value.code == ErrorCode.ACTIVE_ENROLLMENT_NOT_FOUND


async def test_transfer_moves_student(db_session, seed, session_factory) -> None:
    from_class = await seed.school_class()
    to_class = await seed.school_class()
    student_id = await seed.student()
    await service.enroll(db_session, student_id, from_class)

    result = await service.transfer(db_session, student_id, from_class, to_class, reason="level change")

    assert result.dropped.status == "INACTIVE"
    assert result.dropped.unenroll_reason == "Transfer: level change"
    assert result.enrolled.status == "ACTIVE"
    assert result.enrolled.class_id == to_class
    assert await _active_count(session_factory, from_class) == 0
    assert await _active_count(session_factory, to_class) == 1


async def test_transfer_without_reason(db_session, seed) -> None:
    from_class = await seed.school_class()
    to_class = await seed.school_class()
    student_id = await seed.student()
    await seed.enrollment(student_id, from_class)

    result = await service.transfer(db_session, student_id, from_class, to_class)

    assert result.dropped.unenroll_reason == "Transfer"


async def test_transfer_into_full_class_keeps_original(db_session, seed, session_factory) -> None:
    from_class = await seed.school_class()
    full_class = await seed.school_class(capacity=1)
    occupant = await seed.student()
    student_id = await seed.student()
    await seed.enrollment(occupant, full_class)
    await service.enroll(db_session, student_id, from_class)

    with pytest.raises(ServiceError) as exc:
        await service.transfer(db_session, student_id, from_class, full_class)
    assert exc.value.code == ErrorCode.CLASS_AT_CAPACITY

    rows = await _rows(session_factory, student_id, from_class)
    assert [status for status, _ in rows] == ["ACTIVE"]
    assert await _rows(session_factory, student_id, full_class) == []


async def test_bulk_enroll_fits(db_session, seed, session_factory) -> None:
    class_id = await seed.school_class(capacity=3)
    already = await seed.student()
    fresh = await seed.student()
    inactive = await seed.student(status="INACTIVE")
    await seed.enrollment(already, class_id)

    # 1 active + 2 requested fits a capacity of 3
    result = await service.bulk_enroll(db_session, class_id, [fresh, inactive])

    assert result.summary.total == 2
    assert result.summary.success_count == 1
    assert result.summary.failed_count == 1
    assert result.successful[0].student_id == fresh
    assert result.failed[0].student_id == inactive
    assert result.failed[0].code == ErrorCode.STUDENT_NOT_FOUND.value
    assert await _active_count(session_factory, class_id) == 2


async def test_bulk_enroll_collects_duplicates(db_session, seed) -> None:
    class_id = await seed.school_class(capacity=5)
    already = await seed.student()
    fresh = await seed.student()
    await seed.enrollment(already, class_id)

    result = await service.bulk_enroll(db_session, class_id, [already, fresh])

    assert [s.student_id for s in result.successful] == [fresh]
    assert result.failed[0].code == ErrorCode.STUDENT_ALREADY_ENROLLED.value


async def test_bulk_enroll_over_capacity_rejects_all(db_session, seed, session_factory) -> None:
    class_id = await seed.school_class(capacity=2)
    already = await seed.student()
    students = [await seed.student() for _ in range(2)]
    await seed.enrollment(already, class_id)

    with pytest.raises(ServiceError) as exc:
        await service.bulk_enroll(db_session, class_id, students)
    assert exc.value.code == ErrorCode.BULK_ENROLLMENT_EXCEEDS_CAPACITY
    assert await _active_count(session_factory, class_id) == 1


async def test_concurrent_enroll_for_last_seat(seed, session_factory) -> None:
    class_id = await seed.school_class(capacity=1)
    first = await seed.student()
    second = await seed.student()

    async def attempt(student_id):
        async with session_factory() as session:
            return await service.enroll(session, student_id, class_id)

    results = await asyncio.gather(attempt(first), attempt(second), return_exceptions=True)

    succeeded = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, ServiceError)]
    assert len(succeeded) == 1
    assert len(failed) == 1
    assert failed[0].code == ErrorCode.CLASS_AT_CAPACITY
    assert await _active_count(session_factory, class_id) == 1


async def test_eligibility_breakdown(db_session, seed) -> None:
    class_id = await seed.school_class(capacity=1)
    student_id = await seed.student()
    occupant = await seed.student()

    ok = await service.check_eligibility(db_session, student_id, class_id)
    assert ok.eligible is True

    await seed.enrollment(occupant, class_id)
    full = await service.check_eligibility(db_session, student_id, class_id)
    assert full.has_capacity is False
    assert full.eligible is False

    enrolled = await service.check_eligibility(db_session, occupant, class_id)
    assert enrolled.not_already_enrolled is False

    missing = await service.check_eligibility(db_session, uuid.uuid4(), uuid.uuid4())
    assert missing.student_exists is False
    assert missing.class_exists is False
    assert missing.eligible is False


async def test_enrollment_queries(db_session, seed) -> None:
    teacher_id = await seed.teacher(name="Ms Teacher")
    class_a = await seed.school_class(teacher_id=teacher_id, name="Algebra", academic_year="2024-2025")
    class_b = await seed.school_class(teacher_id=teacher_id, name="Biology", academic_year="2025-2026")
    student_id = await seed.student(name="Sam Student")

    await service.enroll(db_session, student_id, class_a, actor_id=teacher_id)
    await service.enroll(db_session, student_id, class_b, actor_id=teacher_id)
    await service.unenroll(db_session, student_id, class_b, actor_id=teacher_id, reason="dropped")

    active = await service.list_student_enrollments(db_session, student_id)
    assert [e.class_name for e in active] == ["Algebra"]
    assert active[0].teacher_name == "Ms Teacher"

    everything = await service.list_student_enrollments(db_session, student_id, status=None)
    assert {e.class_name for e in everything} == {"Algebra", "Biology"}

    by_year = await service.list_student_enrollments(db_session, student_id, status=None, academic_year="2025-2026")
    assert [e.class_name for e in by_year] == ["Biology"]

    roster = await service.list_class_enrollments(db_session, class_a)
    assert [r.student_name for r in roster] == ["Sam Student"]

    history = await service.get_enrollment_history(db_session, student_id)
    assert len(history) == 2
    dropped = next(h for h in history if h.class_name == "Biology")
    assert dropped.unenrolled_by_name == "Ms Teacher"
    assert dropped.enrolled_by_name == "Ms Teacher"

    stats = await service.get_enrollment_statistics(db_session)
    assert stats.total_enrollments == 2
    assert stats.active_enrollments == 1
    assert stats.inactive_enrollments == 1
    assert stats.unique_students == 1
    assert stats.unique_classes == 2

    class_stats = await service.get_enrollment_statistics(db_session, class_id=class_a)
    assert class_stats.total_enrollments == 1


async def test_enrollments_by_date_range(db_session, seed) -> None:
    class_id = await seed.school_class()
    student_id = await seed.student()
    await service.enroll(db_session, student_id, class_id)

    now = datetime.now(timezone.utc)
    inside = await service.list_enrollments_by_date_range(
        db_session, now - timedelta(days=1), now + timedelta(days=1)
    )
    assert [e.student_id for e in inside] == [student_id]

    outside = await service.list_enrollments_by_date_range(
        db_session, now - timedelta(days=10), now - timedelta(days=5)
    )
    assert outside == []


async def test_update_enrollment_notes(db_session, seed) -> None:
    teacher_id = await seed.teacher()
    class_id = await seed.school_class(teacher_id=teacher_id)
    student_id = await seed.student()
    enrollment = await service.enroll(db_session, student_id, class_id)

    owner = CurrentUser(id=teacher_id, role="TEACHER")
    updated = await service.update_enrollment_notes(db_session, enrollment.id, "Needs extra help", owner)
    assert updated.notes == "Needs extra help"

    with pytest.raises(ServiceError) as exc:
        await service.update_enrollment_notes(db_session, uuid.uuid4(), "x", owner)
    assert exc.value.code == ErrorCode.ENROLLMENT_NOT_FOUND


async def _notes(session_factory, enrollment_id):
    async with session_factory() as session:
        async with transaction(session):
            result = await session.execute(select(Enrollment.notes).where(Enrollment.id == enrollment_id))
            return result.scalar_one()


async def test_foreign_teacher_cannot_rewrite_notes(db_session, seed, session_factory) -> None:
    owner_id = await seed.teacher()
    intruder_id = await seed.teacher()
    admin_id = await seed.user(role="ADMIN")
    class_id = await seed.school_class(teacher_id=owner_id)
    student_id = await seed.student()
    enrollment_id = await seed.enrollment(student_id, class_id)

    with pytest.raises(ServiceError) as exc:
        await service.update_enrollment_notes(
            db_session, enrollment_id, "defaced", CurrentUser(id=intruder_id, role="TEACHER")
        )
    assert exc.value.code == ErrorCode.UNAUTHORIZED_CLASS_ACCESS
    assert exc.value.status_code == 403
    assert await _notes(session_factory, enrollment_id) is None

    updated = await service.update_enrollment_notes(
        db_session, enrollment_id, "Moved to front row", CurrentUser(id=admin_id, role="ADMIN")
    )
    assert updated.notes == "Moved to front row"
    assert await _notes(session_factory, enrollment_id) == "Moved to front row"


async def test_write_joins_the_authorizing_transaction(db_session, seed, session_factory) -> None:
    teacher_id = await seed.teacher()
    own_class = await seed.school_class(teacher_id=teacher_id)
    foreign_class = await seed.school_class()
    student_id = await seed.student()
    teacher = CurrentUser(id=teacher_id, role="TEACHER")

    with pytest.raises(ServiceError) as exc:
        async with transaction(db_session):
            await ensure_class_manager(db_session, teacher, own_class)
            await service.enroll(db_session, student_id, own_class, actor_id=teacher_id)
            await ensure_class_manager(db_session, teacher, foreign_class)
    assert exc.value.code == ErrorCode.UNAUTHORIZED_CLASS_ACCESS

    # The enrollment was released to the outer transaction, which rolled back
    assert await _rows(session_factory, student_id, own_class) == []
