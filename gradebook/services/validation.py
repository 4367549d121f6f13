"""
Controlli sincroni pre-scrittura sulle entità del gradebook.

Ogni funzione accetta la mappa dei campi (chiavi come nel documento), non la
modifica e solleva ValidationError al primo campo non valido. Con partial=True
(update) si controllano solo i campi presenti.
"""
from __future__ import annotations
from typing import Any, Callable, Dict, Mapping

from gradebook.core.errors import ValidationError
from gradebook.schemas.documents import parse_timestamp
from gradebook.schemas.entities import ASSIGNMENTS, GRADES, STUDENTS

Validator = Callable[..., None]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_common(fields: Mapping[str, Any]) -> None:
    if "id" in fields:
        raise ValidationError("id è assegnato dal backend e non è modificabile", field="id")


def _check_timestamp(fields: Mapping[str, Any], name: str, *, nullable: bool = False) -> None:
    # controllato solo se presente: in creazione il client valorizza i default
    if name not in fields:
        return
    value = fields[name]
    if value is None:
        if nullable:
            return
        raise ValidationError(f"Missing required field: {name}", field=name)
    try:
        parse_timestamp(value)
    except ValueError:
        raise ValidationError(f"{name} deve essere un timestamp ISO-8601", field=name) from None


def _check_optional_text(fields: Mapping[str, Any], name: str) -> None:
    value = fields.get(name)
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{name} deve essere una stringa", field=name)


def _present(fields: Mapping[str, Any], name: str, partial: bool) -> bool:
    # in un update si controlla solo ciò che viene scritto
    return not partial or name in fields


def validate_student(fields: Mapping[str, Any], *, partial: bool = False) -> None:
    _check_common(fields)

    if _present(fields, "name", partial):
        name = fields.get("name")
        if not isinstance(name, str) or len(name) < 2:
            raise ValidationError("name deve avere almeno 2 caratteri", field="name")

    if _present(fields, "email", partial):
        email = fields.get("email")
        if not isinstance(email, str) or "@" not in email:
            raise ValidationError("email deve contenere '@'", field="email")

    _check_timestamp(fields, "enrollmentDate")


def validate_assignment(fields: Mapping[str, Any], *, partial: bool = False) -> None:
    _check_common(fields)

    if _present(fields, "title", partial):
        title = fields.get("title")
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("Missing required field: title", field="title")

    if _present(fields, "totalPoints", partial):
        points = fields.get("totalPoints")
        if not _is_number(points) or not points > 0:
            raise ValidationError("totalPoints deve essere un numero > 0", field="totalPoints")

    _check_timestamp(fields, "dueDate", nullable=True)
    _check_optional_text(fields, "description")


def validate_grade(fields: Mapping[str, Any], *, partial: bool = False) -> None:
    _check_common(fields)

    for key in ("studentId", "assignmentId"):
        if _present(fields, key, partial):
            value = fields.get(key)
            if not isinstance(value, str) or not value:
                raise ValidationError(f"Missing required field: {key}", field=key)

    if _present(fields, "score", partial):
        score = fields.get("score")
        if not _is_number(score):
            raise ValidationError("score deve essere numerico", field="score")
        if not 0 <= score <= 100:
            raise ValidationError("score deve essere compreso tra 0 e 100", field="score")

    _check_timestamp(fields, "submittedDate")
    _check_optional_text(fields, "feedback")


VALIDATORS: Dict[str, Validator] = {
    STUDENTS: validate_student,
    ASSIGNMENTS: validate_assignment,
    GRADES: validate_grade,
}


def validate_document(collection: str, fields: Mapping[str, Any], *, partial: bool = False) -> None:
    """Dispatch per collection; le collection sconosciute non hanno vincoli locali."""
    if not isinstance(fields, Mapping):
        raise ValidationError("fields deve essere una mappa")
    validator = VALIDATORS.get(collection)
    if validator is not None:
        validator(fields, partial=partial)
