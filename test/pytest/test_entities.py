from datetime import datetime, timezone

import pytest

from gradebook.core.errors import DecodeError
from gradebook.schemas.documents import Document, encode_fields, encode_value
from gradebook.schemas.entities import decode_assignment, decode_grade, decode_student


def test_decode_grade():
    doc = Document("grades", "G1", {
        "studentId": "S1", "assignmentId": "A1", "score": 95,
        "submittedDate": "2024-05-01T09:00:00.000000+00:00",
    })
    grade = decode_grade(doc)
    assert grade.id == "G1"
    assert grade.score == 95
    assert grade.submittedDate == datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
    assert grade.feedback is None


def test_decode_ignores_id_inside_payload():
    doc = Document("students", "S1", {
        "id": "forged", "name": "Jo", "email": "jo@x.com",
        "enrollmentDate": "2024-05-01T09:00:00.000000+00:00",
    })
    assert decode_student(doc).id == "S1"

    doc = Document("assignments", "A1", {"title": "Essay", "dueDate": "2024-06-01T00:00:00.000000+00:00"})
def test_decode_missing_field_is_decode_error():
    doc = Document("assignments", "A1", {"title": "Essay", "totalPoints": 10})
    with pytest.raises(DecodeError) as exc:
        decode_assignment(doc)
    assert exc.value.details["document_id"] == "A1"


def test_decode_wrong_collection():
    doc = Document("students", "S1", {"name": "Jo"})
    with pytest.raises(DecodeError):
        decode_grade(doc)


def test_encode_normalises_datetimes_to_utc():
    naive = datetime(2024, 1, 1, 8, 30)
    assert encode_value(naive) == "2024-01-01T08:30:00.000000+00:00"
    fields = encode_fields({"when": naive, "nested": {"items": [naive]}, "n": 3})
    assert fields["nested"]["items"][0] == fields["when"]
    assert fields["n"] == 3


def test_assignment_without_due_date_decodes():
    assignment = decode_assignment(Document("assignments", "A1", {"title": "Essay", "totalPoints": 10}))
    assert assignment.dueDate is None
