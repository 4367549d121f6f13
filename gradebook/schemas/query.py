from __future__ import annotations
import json
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from gradebook.schemas.documents import Document, encode_timestamp, encode_value
from gradebook.schemas.entities import timestamp_fields

_MISSING = object()


class Direction(str, Enum):
    ASCENDING = "asc"
    DESCENDING = "desc"


def get_field(data: Mapping[str, Any], path: str) -> Any:
    """Legge un campo anche annidato ("a.b.c"); _MISSING se assente."""
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _sort_value(value: Any) -> Tuple[int, Any]:
    # tipi diversi non sono confrontabili: prima il rango del tipo
    if value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (1, value)
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, str):
        return (3, value)
    return (4, json.dumps(value, sort_keys=True, default=str))


@dataclass(frozen=True)
class Query:
    """
    Descrittore opaco di una query su una collection: filtri di uguaglianza,
    ordinamento opzionale e limite. Immutabile: ogni metodo ritorna una copia.
    """

    collection: str
    filters: Tuple[Tuple[str, Any], ...] = ()
    order_field: Optional[str] = None
    direction: Direction = Direction.ASCENDING
    limit_to: Optional[int] = None

    def where(self, field: str, value: Any) -> Query:
        if not field:
            raise ValueError("field è obbligatorio")
        # stesso campo: vince l'ultimo filtro
        kept = tuple((f, v) for f, v in self.filters if f != field)
        if field in timestamp_fields(self.collection):
            # confrontabile con la forma UTC salvata dal client
            value = encode_timestamp(value)
        return replace(self, filters=kept + ((field, encode_value(value)),))

    def order_by(self, field: str, direction: Direction = Direction.ASCENDING) -> Query:
        if not field:
            raise ValueError("field è obbligatorio")
        return replace(self, order_field=field, direction=Direction(direction))

    def limit(self, count: int) -> Query:
        if count < 1:
            raise ValueError("limit deve essere >= 1")
        return replace(self, limit_to=count)

    def without_limit(self) -> Query:
        return replace(self, limit_to=None)

    @property
    def filter_map(self) -> dict:
        return dict(self.filters)

    def matches(self, data: Mapping[str, Any]) -> bool:
        for field, expected in self.filters:
            if get_field(data, field) != expected:
                return False
        if self.order_field is not None and get_field(data, self.order_field) is _MISSING:
            return False
        return True

    def apply(self, documents: Iterable[Document]) -> List[Document]:
        """Filtra, ordina e limita; senza ordinamento l'ordine è stabile per id."""
        selected = sorted(
            (doc for doc in documents if doc.collection == self.collection and self.matches(doc.data)),
            key=lambda doc: doc.id,
        )
        if self.order_field is not None:
            order_field = self.order_field
            selected.sort(
                key=lambda doc: _sort_value(get_field(doc.data, order_field)),
                reverse=self.direction == Direction.DESCENDING,
            )
        if self.limit_to is not None:
            selected = selected[: self.limit_to]
        return selected


@dataclass(frozen=True)
class DocumentRef:
    collection: str
    document_id: str


def collection(name: str) -> Query:
    if not name:
        raise ValueError("collection name è obbligatorio")
    return Query(collection=name)
