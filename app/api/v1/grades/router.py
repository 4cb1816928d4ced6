"""Grades API router."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.access import ensure_self_or_staff
from app.auth.dependencies import get_current_user, require_teacher
from app.auth.schemas import CurrentUser
from app.core.config import Settings, get_settings
from app.core.exceptions import ServiceError
from app.db.session import get_db

from . import service
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
    TranscriptResponse,
)

router = APIRouter(prefix="/api/v1/grades", tags=["grades"])


# ----- Grades -----
@router.post(
    "/",
    response_model=GradeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_grade(
    payload: RecordGradeRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
):
    try:
        return await service.record_grade(db, payload, graded_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.patch(
    "/{grade_id}",
    response_model=GradeResponse,
)
async def update_grade(
    grade_id: UUID,
    payload: GradeUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
):
    try:
        return await service.update_grade(db, grade_id, current_user.id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.delete(
    "/{grade_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_grade(
    grade_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
):
    try:
        await service.delete_grade(db, grade_id, current_user.id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


# ----- Student views -----
@router.get(
    "/students/{student_id}",
    response_model=List[StudentGradeItem],
)
async def student_grades(
    student_id: UUID,
    class_id: Optional[UUID] = Query(None),
    academic_year: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        ensure_self_or_staff(current_user, student_id)
        return await service.list_student_grades(db, student_id, class_id=class_id, academic_year=academic_year)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get(
    "/students/{student_id}/gpa",
    response_model=GPAResponse,
)
async def student_gpa(
    student_id: UUID,
    class_id: Optional[UUID] = Query(None),
    academic_year: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        ensure_self_or_staff(current_user, student_id)
        return await service.get_student_gpa(db, student_id, class_id=class_id, academic_year=academic_year)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get(
    "/students/{student_id}/transcript",
    response_model=TranscriptResponse,
)
async def student_transcript(
    student_id: UUID,
    academic_year: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        ensure_self_or_staff(current_user, student_id)
        return await service.generate_transcript(db, student_id, academic_year=academic_year)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get(
    "/students/{student_id}/classes/{class_id}/progress",
    response_model=List[ProgressPoint],
)
async def student_progress(
    student_id: UUID,
    class_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        ensure_self_or_staff(current_user, student_id)
        return await service.get_student_progress(db, student_id, class_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


# ----- Class views -----
@router.get(
    "/classes/{class_id}",
    response_model=List[ClassGradeItem],
)
async def class_grades(
    class_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
):
    try:
        return await service.list_class_grades(db, class_id, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get(
    "/classes/{class_id}/statistics",
    response_model=ClassStatistics,
)
async def class_statistics(
    class_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
):
    try:
        return await service.get_class_statistics(db, class_id, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get(
    "/classes/{class_id}/failing",
    response_model=ClassStandingReport,
)
async def failing_students(
    class_id: UUID,
    threshold: Optional[float] = Query(None, ge=0, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
    settings: Settings = Depends(get_settings),
):
    try:
        return await service.get_failing_students(
            db,
            class_id,
            current_user.id,
            threshold=threshold if threshold is not None else settings.failing_threshold,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get(
    "/classes/{class_id}/top",
    response_model=ClassStandingReport,
)
async def top_performers(
    class_id: UUID,
    limit: Optional[int] = Query(None, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
    settings: Settings = Depends(get_settings),
):
    try:
        return await service.get_top_performers(
            db,
            class_id,
            current_user.id,
            limit=limit or settings.top_performers_limit,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get(
    "/classes/{class_id}/trends",
    response_model=List[GradeTrendPoint],
)
async def grade_trends(
    class_id: UUID,
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
):
    try:
        return await service.get_grade_trends(db, class_id, current_user.id, days=days)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
