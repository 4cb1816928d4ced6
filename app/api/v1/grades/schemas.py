from datetime import date, datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class RecordGradeRequest(BaseModel):
    submission_id: UUID
    student_id: UUID
    assignment_id: UUID
    class_id: UUID
    points_earned: float = Field(..., ge=0)
    # Omitted: copied from the assignment
    points_possible: Optional[float] = Field(None, gt=0)
    comments: Optional[str] = None


class GradeUpdate(BaseModel):
    """The only externally settable grade fields. percentage/letter_grade are always derived."""

    points_earned: Optional[float] = Field(None, ge=0)
    comments: Optional[str] = None

    class Config:
        extra = "forbid"


class GradeResponse(BaseModel):
    id: UUID
    submission_id: UUID
    student_id: UUID
    assignment_id: UUID
    class_id: UUID
    points_earned: float
    points_possible: float
    percentage: float
    letter_grade: str
    comments: Optional[str] = None
    graded_by: Optional[UUID] = None
    graded_at: datetime
    updated_by: Optional[UUID] = None

    class Config:
        from_attributes = True


class StudentGradeItem(GradeResponse):
    assignment_title: str
    assignment_type: str
    class_name: str
    class_code: str


class ClassGradeItem(GradeResponse):
    assignment_title: str
    student_name: str
    student_email: str


class ClassStatistics(BaseModel):
    class_id: UUID
    total_grades: int
    average_percentage: Optional[float] = None
    min_percentage: Optional[float] = None
    max_percentage: Optional[float] = None
    std_deviation: Optional[float] = None
    # letter -> share of grades in percent
    distribution: Dict[str, float]


class GPAResponse(BaseModel):
    student_id: UUID
    gpa: Optional[float] = None
    letter_grade: Optional[str] = None
    total_grades: int


class ProgressPoint(BaseModel):
    grade_id: UUID
    assignment_id: UUID
    assignment_title: str
    assignment_type: str
    graded_at: datetime
    percentage: float
    letter_grade: str
    rolling_average: float


class StudentStanding(BaseModel):
    student_id: UUID
    student_name: str
    student_email: str
    average_percentage: Optional[float] = None
    letter_grade: Optional[str] = None
    total_grades: int
    status: str


class ClassStandingReport(BaseModel):
    class_id: UUID
    students: List[StudentStanding]
    # Actively enrolled students without a single grade in the class
    no_grades: List[StudentStanding]


class TranscriptClass(BaseModel):
    class_id: UUID
    class_name: str
    class_code: str
    academic_year: str
    teacher_name: Optional[str] = None
    class_average: float
    class_letter_grade: str
    total_assignments: int
    last_graded: datetime


class TranscriptResponse(BaseModel):
    student_id: UUID
    academic_year: Optional[str] = None
    overall_gpa: GPAResponse
    classes: List[TranscriptClass]
    generated_at: datetime


class GradeTrendPoint(BaseModel):
    grade_date: date
    average_percentage: float
    grades_given: int
