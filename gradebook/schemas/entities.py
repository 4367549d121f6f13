from __future__ import annotations
from typing import Optional, Type, TypeVar
from datetime import datetime
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from gradebook.core.errors import DecodeError
from gradebook.schemas.documents import Document

STUDENTS = "students"
ASSIGNMENTS = "assignments"
GRADES = "grades"

# campi salvati come timestamp UTC canonici
TIMESTAMP_FIELDS = {
    STUDENTS: frozenset({"enrollmentDate"}),
    ASSIGNMENTS: frozenset({"dueDate"}),
    GRADES: frozenset({"submittedDate"}),
}

# timestamp valorizzati all'istante di creazione se assenti
CREATED_AT_FIELDS = {
    STUDENTS: "enrollmentDate",
    GRADES: "submittedDate",
}


def timestamp_fields(collection: str) -> frozenset:
    return TIMESTAMP_FIELDS.get(collection, frozenset())


class Entity(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str


class Student(Entity):
    name: str
    email: str
    enrollmentDate: datetime


class Assignment(Entity):
    title: str
    dueDate: Optional[datetime] = None
    totalPoints: float
    description: Optional[str] = None


class Grade(Entity):
    studentId: str
    assignmentId: str
    score: float
    submittedDate: datetime
    feedback: Optional[str] = None


E = TypeVar("E", bound=Entity)


def _decode(model: Type[E], collection: str, document: Document) -> E:
    if document.collection != collection:
        raise DecodeError(
            f"Documento di '{document.collection}' non decodificabile come {model.__name__}",
            details={"document_id": document.id},
        )
    try:
        # l'id è la chiave del documento, mai un campo del payload
        return model.model_validate({**document.data, "id": document.id})
    except PydanticValidationError as exc:
        raise DecodeError(
            f"Payload non valido per {model.__name__} {document.id}",
            details={"document_id": document.id, "errors": exc.errors(include_url=False)},
        ) from exc


def decode_student(document: Document) -> Student:
    return _decode(Student, STUDENTS, document)


def decode_assignment(document: Document) -> Assignment:
    return _decode(Assignment, ASSIGNMENTS, document)


def decode_grade(document: Document) -> Grade:
    return _decode(Grade, GRADES, document)
