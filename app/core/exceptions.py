from enum import Enum
from typing import Optional

from fastapi import status


class ErrorCode(str, Enum):
    """Tags carried by every service failure; stable across the HTTP boundary."""

    # Not found
    STUDENT_NOT_FOUND = "STUDENT_NOT_FOUND"
    CLASS_NOT_FOUND = "CLASS_NOT_FOUND"
    ACTIVE_ENROLLMENT_NOT_FOUND = "ACTIVE_ENROLLMENT_NOT_FOUND"
    ENROLLMENT_NOT_FOUND = "ENROLLMENT_NOT_FOUND"
    ASSIGNMENT_NOT_FOUND = "ASSIGNMENT_NOT_FOUND"
    SUBMISSION_NOT_FOUND = "SUBMISSION_NOT_FOUND"
    GRADE_NOT_FOUND = "GRADE_NOT_FOUND"
    # Conflict / invariant
    CLASS_AT_CAPACITY = "CLASS_AT_CAPACITY"
    STUDENT_ALREADY_ENROLLED = "STUDENT_ALREADY_ENROLLED"
    BULK_ENROLLMENT_EXCEEDS_CAPACITY = "BULK_ENROLLMENT_EXCEEDS_CAPACITY"
    GRADE_ALREADY_RECORDED = "GRADE_ALREADY_RECORDED"
    # Authorization
    UNAUTHORIZED_CLASS_ACCESS = "UNAUTHORIZED_CLASS_ACCESS"
    STUDENT_NOT_ENROLLED = "STUDENT_NOT_ENROLLED"
    # Validation
    NO_VALID_FIELDS_TO_UPDATE = "NO_VALID_FIELDS_TO_UPDATE"


_DEFAULT_STATUS = {
    ErrorCode.STUDENT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.CLASS_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.ACTIVE_ENROLLMENT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.ENROLLMENT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.ASSIGNMENT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.SUBMISSION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.GRADE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.CLASS_AT_CAPACITY: status.HTTP_409_CONFLICT,
    ErrorCode.STUDENT_ALREADY_ENROLLED: status.HTTP_409_CONFLICT,
    ErrorCode.BULK_ENROLLMENT_EXCEEDS_CAPACITY: status.HTTP_409_CONFLICT,
    ErrorCode.GRADE_ALREADY_RECORDED: status.HTTP_409_CONFLICT,
    ErrorCode.UNAUTHORIZED_CLASS_ACCESS: status.HTTP_403_FORBIDDEN,
    ErrorCode.STUDENT_NOT_ENROLLED: status.HTTP_403_FORBIDDEN,
    ErrorCode.NO_VALID_FIELDS_TO_UPDATE: status.HTTP_400_BAD_REQUEST,
}


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        code: Optional[ErrorCode] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code

    @classmethod
    def from_code(cls, code: ErrorCode, message: Optional[str] = None) -> "ServiceError":
        return cls(message or code.value, _DEFAULT_STATUS[code], code)

    def to_detail(self) -> dict:
        return {"code": self.code.value if self.code else None, "message": self.message}
