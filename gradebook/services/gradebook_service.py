# gradebook/services/gradebook_service.py
from __future__ import annotations
from typing import Any, Callable, Iterable, List, Mapping, Optional

from gradebook.schemas.documents import Document, QuerySnapshot, encode_fields
from gradebook.schemas.entities import (
    ASSIGNMENTS, GRADES, STUDENTS,
    Assignment, Grade, Student,
    decode_assignment, decode_grade, decode_student, timestamp_fields,
)
from gradebook.schemas.query import Direction, collection
from gradebook.services.store_client import DocumentStoreClient, with_created_at
from gradebook.services.subscription_manager import Subscription, SubscriptionManager


class GradebookService:
    """Operazioni tipizzate su students, assignments e grades."""

    def __init__(self, client: DocumentStoreClient, subscriptions: SubscriptionManager):
        self.client = client
        self.subscriptions = subscriptions

    async def _add(self, name: str, fields: Mapping[str, Any], decoder):
        # il default viene fissato qui per decodificare gli stessi valori scritti
        data = with_created_at(name, fields)
        doc_id = await self.client.add_document(name, data)
        return decoder(Document(name, doc_id, encode_fields(data, timestamp_fields(name))))

    # -----------------------------
    # Students
    # -----------------------------
    async def add_student(self, fields: Mapping[str, Any]) -> Student:
        return await self._add(STUDENTS, dict(fields), decode_student)

    async def get_student(self, student_id: str) -> Optional[Student]:
        doc = await self.client.get_document(STUDENTS, student_id)
        return decode_student(doc) if doc is not None else None

    async def list_students(self) -> List[Student]:
        docs = await self.client.list_documents(collection(STUDENTS).order_by("name"))
        return [decode_student(d) for d in docs]

    async def update_student(self, student_id: str, fields: Mapping[str, Any]) -> None:
        await self.client.update_document(STUDENTS, student_id, fields)

    # -----------------------------
    # Assignments
    # -----------------------------
    async def add_assignment(self, fields: Mapping[str, Any]) -> Assignment:
        return await self._add(ASSIGNMENTS, dict(fields), decode_assignment)

    async def get_assignment(self, assignment_id: str) -> Optional[Assignment]:
        doc = await self.client.get_document(ASSIGNMENTS, assignment_id)
        return decode_assignment(doc) if doc is not None else None

    async def list_assignments(self) -> List[Assignment]:
        """Assignments per dueDate crescente; quelli senza scadenza in coda."""
        docs = await self.client.list_documents(collection(ASSIGNMENTS))
        assignments = [decode_assignment(d) for d in docs]
        return sorted(assignments, key=lambda a: (a.dueDate is None, a.dueDate or 0))

    # -----------------------------
    # Grades
    # -----------------------------
    async def add_grade(self, fields: Mapping[str, Any]) -> Grade:
        return await self._add(GRADES, dict(fields), decode_grade)

    async def get_grade(self, grade_id: str) -> Optional[Grade]:
        doc = await self.client.get_document(GRADES, grade_id)
        return decode_grade(doc) if doc is not None else None

    async def delete_grade(self, grade_id: str) -> None:
        await self.client.delete_document(GRADES, grade_id)

    async def record_grades(self, grades: Iterable[Mapping[str, Any]]) -> List[str]:
        """Registra più voti in un unico batch atomico; ritorna gli id creati."""
        batch = self.client.batch()
        for fields in grades:
            batch.create(GRADES, fields)
        result = await batch.commit()
        return list(result.created_ids)

    def _grades_query(self, student_id: str, descending: bool = True):
        direction = Direction.DESCENDING if descending else Direction.ASCENDING
        return collection(GRADES).where("studentId", student_id).order_by("submittedDate", direction)

    async def grades_for_student(self, student_id: str, *, descending: bool = True) -> List[Grade]:
        docs = await self.client.list_documents(self._grades_query(student_id, descending))
        return [decode_grade(d) for d in docs]

    async def grades_for_assignment(self, assignment_id: str) -> List[Grade]:
        docs = await self.client.list_documents(collection(GRADES).where("assignmentId", assignment_id))
        return [decode_grade(d) for d in docs]

    async def student_average(self, student_id: str) -> Optional[float]:
        """Media dei punteggi dello studente; None se non ha voti."""
        grades = await self.grades_for_student(student_id)
        if not grades:
            return None
        return float(sum(g.score for g in grades) / len(grades))

    async def watch_student_grades(
        self, student_id: str, on_change: Callable[[List[Grade]], Any]
    ) -> Subscription:
        """Subscription live sui voti dello studente, consegnati già decodificati."""
        def deliver(snapshot: QuerySnapshot):
            return on_change([decode_grade(d) for d in snapshot.documents])

        return await self.subscriptions.subscribe(self._grades_query(student_id), deliver)

