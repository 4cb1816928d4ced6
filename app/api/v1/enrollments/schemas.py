from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class EnrollRequest(BaseModel):
    student_id: UUID


class UnenrollRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class TransferRequest(BaseModel):
    from_class_id: UUID
    to_class_id: UUID
    reason: Optional[str] = Field(None, max_length=500)


class BulkEnrollRequest(BaseModel):
    student_ids: List[UUID] = Field(..., min_length=1)


class EnrollmentNotesUpdate(BaseModel):
    notes: Optional[str] = None


class EnrollmentResponse(BaseModel):
    id: UUID
    student_id: UUID
    class_id: UUID
    status: str
    enrollment_date: datetime
    unenroll_date: Optional[datetime] = None
    enrolled_by: Optional[UUID] = None
    unenrolled_by: Optional[UUID] = None
    unenroll_reason: Optional[str] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class StudentEnrollmentItem(EnrollmentResponse):
    """Enrollment joined with its class and the class teacher."""

    class_name: str
    class_code: str
    academic_year: str
    teacher_name: Optional[str] = None
    teacher_email: Optional[str] = None


class ClassRosterItem(EnrollmentResponse):
    student_name: str
    student_email: str


class EnrollmentHistoryItem(EnrollmentResponse):
    class_name: str
    class_code: str
    academic_year: str
    teacher_name: Optional[str] = None
    enrolled_by_name: Optional[str] = None
    unenrolled_by_name: Optional[str] = None


class DateRangeEnrollmentItem(EnrollmentResponse):
    student_name: str
    student_email: str
    class_name: str
    class_code: str


class TransferResponse(BaseModel):
    dropped: EnrollmentResponse
    enrolled: EnrollmentResponse


class BulkEnrollSuccess(BaseModel):
    student_id: UUID
    enrollment_id: UUID


class BulkEnrollFailure(BaseModel):
    student_id: UUID
    code: Optional[str] = None
    message: str


class BulkEnrollSummary(BaseModel):
    total: int
    success_count: int
    failed_count: int


class BulkEnrollResponse(BaseModel):
    successful: List[BulkEnrollSuccess]
    failed: List[BulkEnrollFailure]
    summary: BulkEnrollSummary


class EligibilityResponse(BaseModel):
    """Each pre-condition of enroll, evaluated without writing anything."""

    student_exists: bool = False
    student_active: bool = False
    class_exists: bool = False
    class_active: bool = False
    has_capacity: bool = False
    not_already_enrolled: bool = False
    eligible: bool = False


class EnrollmentStatistics(BaseModel):
    total_enrollments: int
    active_enrollments: int
    inactive_enrollments: int
    unique_students: int
    unique_classes: int
