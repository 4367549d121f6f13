import pytest
from datetime import datetime, timezone

from gradebook.core.errors import ValidationError
from gradebook.schemas.entities import Grade, Student
from gradebook.services.gradebook_service import GradebookService
from gradebook.services.store_client import DocumentStoreClient

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


# Fake backend con metodi minimi: nessuna scrittura deve arrivarci
class FakeBackend:
    def __init__(self):
        self.commits = []

    async def commit(self, operations):
        self.commits.append(operations)
        raise AssertionError("commit non atteso")


@pytest.mark.asyncio
async def test_example_scenario(store):
    gradebook = store.gradebook

    student = await gradebook.add_student({"name": "Jo", "email": "jo@x.com"})
    assert isinstance(student, Student)
    s1 = student.id

    revision = await store.backend.current_revision()
    with pytest.raises(ValidationError):
        await gradebook.add_grade({"studentId": s1, "assignmentId": "A1", "score": 150})
    assert await store.backend.current_revision() == revision

    grade = await gradebook.add_grade({"studentId": s1, "assignmentId": "A1", "score": 95})
    assert isinstance(grade, Grade)

    grades = await gradebook.grades_for_student(s1, descending=True)
    assert [g.id for g in grades] == [grade.id]
    assert grades[0].score == 95


@pytest.mark.asyncio
async def test_invalid_student_is_rejected_before_any_write():
    backend = FakeBackend()
    gradebook = GradebookService(DocumentStoreClient(backend), subscriptions=None)

    with pytest.raises(ValidationError):
        await gradebook.add_student({"name": "J", "email": "j@x.com"})
    with pytest.raises(ValidationError):
        await gradebook.add_student({"name": "Jo", "email": "jo.x.com"})
    with pytest.raises(ValidationError):
        await gradebook.add_grade({"studentId": "S1", "assignmentId": "A1", "score": -1})
    assert backend.commits == []


@pytest.mark.asyncio
async def test_get_and_list_typed_entities(store):
    gradebook = store.gradebook
    ada = await gradebook.add_student({"name": "Ada", "email": "ada@x.com", "enrollmentDate": T0})
    await gradebook.add_student({"name": "Bob", "email": "bob@x.com"})

    fetched = await gradebook.get_student(ada.id)
    assert fetched == ada
    assert fetched.enrollmentDate == T0
    assert [s.name for s in await gradebook.list_students()] == ["Ada", "Bob"]
    assert await gradebook.get_student("missing") is None


@pytest.mark.asyncio
async def test_assignments(store):
    gradebook = store.gradebook
    late = await gradebook.add_assignment({"title": "Essay", "dueDate": datetime(2024, 6, 1), "totalPoints": 20})
    early = await gradebook.add_assignment(
        {"title": "Quiz", "dueDate": datetime(2024, 5, 1), "totalPoints": 5, "description": "breve"}
    )
    open_ended = await gradebook.add_assignment({"title": "Journal", "totalPoints": 10})
    assert open_ended.dueDate is None
    assert [a.id for a in await gradebook.list_assignments()] == [early.id, late.id, open_ended.id]
    assert (await gradebook.get_assignment(early.id)).description == "breve"

    with pytest.raises(ValidationError):
        await gradebook.add_assignment({"title": "Zero", "dueDate": T0, "totalPoints": 0})


@pytest.mark.asyncio
async def test_update_student(store):
    gradebook = store.gradebook
    student = await gradebook.add_student({"name": "Jo", "email": "jo@x.com"})
    await gradebook.update_student(student.id, {"email": "jo@school.org"})
    assert (await gradebook.get_student(student.id)).email == "jo@school.org"

    with pytest.raises(ValidationError):
        await gradebook.update_student(student.id, {"email": "broken"})


@pytest.mark.asyncio
async def test_record_grades_is_atomic(store):
    gradebook = store.gradebook
    ids = await gradebook.record_grades([
        {"studentId": "S1", "assignmentId": "A1", "score": 80},
        {"studentId": "S1", "assignmentId": "A2", "score": 90},
    ])
    assert len(ids) == 2

    with pytest.raises(ValidationError):
        await gradebook.record_grades([
            {"studentId": "S2", "assignmentId": "A1", "score": 70},
            {"studentId": "S2", "assignmentId": "A2", "score": 170},
        ])
    assert await gradebook.grades_for_student("S2") == []


@pytest.mark.asyncio
async def test_grades_for_assignment_and_delete(store):
    gradebook = store.gradebook
    g1 = await gradebook.add_grade({"studentId": "S1", "assignmentId": "A1", "score": 60})
    await gradebook.add_grade({"studentId": "S2", "assignmentId": "A2", "score": 70})

    assert [g.id for g in await gradebook.grades_for_assignment("A1")] == [g1.id]
    await gradebook.delete_grade(g1.id)
    assert await gradebook.get_grade(g1.id) is None


@pytest.mark.asyncio
async def test_student_average(store):
    gradebook = store.gradebook
    assert await gradebook.student_average("S1") is None

    await gradebook.record_grades([
        {"studentId": "S1", "assignmentId": "A1", "score": 70},
        {"studentId": "S1", "assignmentId": "A2", "score": 85},
    ])
    assert await gradebook.student_average("S1") == 77.5


@pytest.mark.asyncio
async def test_watch_student_grades_delivers_typed_grades(store):
    gradebook = store.gradebook
    seen = []

    sub = await gradebook.watch_student_grades("S1", seen.append)
    grade = await gradebook.add_grade({"studentId": "S1", "assignmentId": "A1", "score": 88})
    await store.subscriptions.flush()
    await sub.cancel()

    assert seen[0] == []
    assert [[g.id for g in grades] for grades in seen[1:]] == [[grade.id]]
    assert isinstance(seen[1][0], Grade)
