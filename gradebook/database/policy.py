from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, FrozenSet, Iterable, Mapping

from gradebook.core.errors import PermissionDenied
from gradebook.schemas.documents import WriteKind
from gradebook.schemas.entities import ASSIGNMENTS, GRADES, STUDENTS

Condition = Callable[[Mapping[str, Any]], bool]

ALL_WRITES: FrozenSet[WriteKind] = frozenset(WriteKind)


@dataclass(frozen=True)
class PolicyRule:
    """
    Regola dichiarativa lato backend: per collection e tipo di operazione,
    un predicato sul documento scritto (o, per le delete, sul documento esistente).
    collection="*" vale per tutte le collection.
    """

    collection: str
    operations: FrozenSet[WriteKind]
    condition: Condition
    description: str

    def applies_to(self, kind: WriteKind, collection: str) -> bool:
        return kind in self.operations and self.collection in ("*", collection)


class AccessPolicy:
    def __init__(self, rules: Iterable[PolicyRule] = ()):
        self.rules = tuple(rules)

    @classmethod
    def allow_all(cls) -> AccessPolicy:
        return cls()

    def check(self, kind: WriteKind, collection: str, document_id: str, data: Mapping[str, Any]) -> None:
        for rule in self.rules:
            if not rule.applies_to(kind, collection):
                continue
            try:
                allowed = bool(rule.condition(data))
            except (KeyError, TypeError, ValueError):
                allowed = False
            if not allowed:
                raise PermissionDenied(
                    f"Policy rejected {kind.value} on {collection}/{document_id}: {rule.description}",
                    details={"collection": collection, "document_id": document_id, "rule": rule.description},
                )


def deny(collection: str, *operations: WriteKind, description: str) -> PolicyRule:
    return PolicyRule(collection, frozenset(operations), lambda _data: False, description)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def gradebook_policy() -> AccessPolicy:
    """Replica lato server degli invarianti delle entità."""
    writes = frozenset({WriteKind.CREATE, WriteKind.UPDATE})
    return AccessPolicy([
        PolicyRule(
            STUDENTS, writes,
            lambda d: isinstance(d.get("name"), str) and len(d["name"]) >= 2
            and "@" in str(d.get("email", "")),
            "students require a name of at least 2 characters and an email containing '@'",
        ),
        PolicyRule(
            ASSIGNMENTS, writes,
            lambda d: _is_number(d.get("totalPoints")) and d["totalPoints"] > 0,
            "assignments require totalPoints > 0",
        ),
        PolicyRule(
            GRADES, writes,
            lambda d: _is_number(d.get("score")) and 0 <= d["score"] <= 100,
            "grades require 0 <= score <= 100",
        ),
        PolicyRule(
            GRADES, writes,
            lambda d: bool(d.get("studentId")) and bool(d.get("assignmentId")),
            "grades must reference a student and an assignment",
        ),
    ])
