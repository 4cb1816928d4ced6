"""Enrollments API router."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.access import ensure_class_manager, ensure_self_or_staff
from app.auth.dependencies import get_current_user, require_teacher
from app.auth.schemas import CurrentUser
from app.core.enums import EnrollmentStatus
from app.core.exceptions import ServiceError
from app.db.session import get_db, transaction

from . import service
from .schemas import (
    BulkEnrollRequest,
    BulkEnrollResponse,
    ClassRosterItem,
    DateRangeEnrollmentItem,
    EligibilityResponse,
    EnrollmentHistoryItem,
    EnrollmentNotesUpdate,
    EnrollmentResponse,
    EnrollmentStatistics,
    EnrollRequest,
    StudentEnrollmentItem,
    TransferRequest,
    TransferResponse,
    UnenrollRequest,
)

router = APIRouter(prefix="/api/v1/enrollments", tags=["enrollments"])


async def _authorize_classes(db: AsyncSession, user: CurrentUser, *class_ids: UUID, lock: bool = True) -> None:
    """Caller holds the transaction; the service call that follows runs inside it."""
    for class_id in class_ids:
        await ensure_class_manager(db, user, class_id, lock=lock)


# ----- State transitions -----
@router.post(
    "/classes/{class_id}/students",
    response_model=EnrollmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def enroll_student(
    class_id: UUID,
    payload: EnrollRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
):
    try:
        async with transaction(db):
            await _authorize_classes(db, current_user, class_id)
            return await service.enroll(db, payload.student_id, class_id, actor_id=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post(
    "/classes/{class_id}/students/{student_id}/unenroll",
    response_model=EnrollmentResponse,
)
async def unenroll_student(
    class_id: UUID,
    student_id: UUID,
    payload: UnenrollRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
):
    try:
        async with transaction(db):
            await _authorize_classes(db, current_user, class_id)
            return await service.unenroll(
                db, student_id, class_id, actor_id=current_user.id, reason=payload.reason
            )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post(
    "/students/{student_id}/transfer",
    response_model=TransferResponse,
)
async def transfer_student(
    student_id: UUID,
    payload: TransferRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
):
    try:
        async with transaction(db):
            await _authorize_classes(db, current_user, payload.from_class_id, payload.to_class_id)
            return await service.transfer(
                db,
                student_id,
                payload.from_class_id,
                payload.to_class_id,
                actor_id=current_user.id,
                reason=payload.reason,
            )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post(
    "/classes/{class_id}/bulk",
    response_model=BulkEnrollResponse,
)
async def bulk_enroll_students(
    class_id: UUID,
    payload: BulkEnrollRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
):
    try:
        async with transaction(db):
            await _authorize_classes(db, current_user, class_id)
            return await service.bulk_enroll(db, class_id, payload.student_ids, actor_id=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.patch(
    "/{enrollment_id}/notes",
    response_model=EnrollmentResponse,
)
async def update_notes(
    enrollment_id: UUID,
    payload: EnrollmentNotesUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
):
    try:
        return await service.update_enrollment_notes(db, enrollment_id, payload.notes, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


# ----- Queries -----
@router.get(
    "/classes/{class_id}/students/{student_id}/eligibility",
    response_model=EligibilityResponse,
)
async def check_eligibility(
    class_id: UUID,
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
):
    return await service.check_eligibility(db, student_id, class_id)


@router.get(
    "/classes/{class_id}/roster",
    response_model=List[ClassRosterItem],
)
async def class_roster(
    class_id: UUID,
    status_filter: Optional[str] = Query(EnrollmentStatus.ACTIVE.value, alias="status"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
):
    try:
        async with transaction(db):
            await _authorize_classes(db, current_user, class_id, lock=False)
            return await service.list_class_enrollments(db, class_id, status=status_filter)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get(
    "/students/{student_id}",
    response_model=List[StudentEnrollmentItem],
)
async def student_enrollments(
    student_id: UUID,
    status_filter: Optional[str] = Query(EnrollmentStatus.ACTIVE.value, alias="status"),
    academic_year: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        ensure_self_or_staff(current_user, student_id)
        return await service.list_student_enrollments(
            db, student_id, status=status_filter, academic_year=academic_year
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get(
    "/students/{student_id}/history",
    response_model=List[EnrollmentHistoryItem],
)
async def enrollment_history(
    student_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        ensure_self_or_staff(current_user, student_id)
        return await service.get_enrollment_history(db, student_id, limit=limit, offset=offset)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get(
    "/by-date",
    response_model=List[DateRangeEnrollmentItem],
)
async def enrollments_by_date(
    start: datetime = Query(...),
    end: datetime = Query(...),
    status_filter: Optional[str] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
):
    return await service.list_enrollments_by_date_range(db, start, end, status=status_filter)


@router.get(
    "/statistics",
    response_model=EnrollmentStatistics,
)
async def enrollment_statistics(
    class_id: Optional[UUID] = Query(None),
    academic_year: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
):
    return await service.get_enrollment_statistics(db, class_id=class_id, academic_year=academic_year)
