from __future__ import annotations
from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, Field

# Campi opzionali: gli invarianti li controlla il validation layer

class StudentCreate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    enrollmentDate: Optional[datetime] = None

class StudentUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None

class AssignmentCreate(BaseModel):
    title: Optional[str] = None
    dueDate: Optional[datetime] = None
    totalPoints: Optional[float] = None
    description: Optional[str] = None

class GradeCreate(BaseModel):
    studentId: Optional[str] = None
    assignmentId: Optional[str] = None
    score: Optional[float] = None
    submittedDate: Optional[datetime] = None
    feedback: Optional[str] = None

class GradeBatch(BaseModel):
    grades: List[GradeCreate] = Field(default_factory=list)
