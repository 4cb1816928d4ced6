from app.auth.models import User
from app.core.models.assignment import Assignment, Submission
from app.core.models.class_section import ClassSection
from app.core.models.enrollment import Enrollment
from app.core.models.grade import Grade

__all__ = [
    "Assignment",
    "ClassSection",
    "Enrollment",
    "Grade",
    "Submission",
    "User",
]
