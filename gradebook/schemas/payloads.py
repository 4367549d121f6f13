from __future__ import annotations
from typing import Optional, TypedDict
from datetime import datetime

# ---- Tipi dei documenti (chiavi come salvate nel backend) ----
class StudentFields(TypedDict, total=False):
    name: str
    email: str
    enrollmentDate: str | datetime

class AssignmentFields(TypedDict, total=False):
    title: str
    dueDate: str | datetime | None
    totalPoints: float
    description: Optional[str]

class GradeFields(TypedDict, total=False):
    studentId: str
    assignmentId: str
    score: float
    submittedDate: str | datetime
    feedback: Optional[str]
