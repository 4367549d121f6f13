from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import AbstractSet, Any, Dict, Iterator, Optional, Tuple


class WriteKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def parse_timestamp(value: Any) -> datetime:
    """Accetta datetime o stringhe ISO-8601 ("Z" ammesso); naive = UTC."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if not isinstance(value, datetime):
        raise ValueError(f"timestamp non valido: {value!r}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def encode_value(value: Any) -> Any:
    """
    Converte un valore in forma JSON-compatibile per il backend.
    I datetime diventano stringhe ISO in UTC (naive = UTC) con microsecondi,
    così l'ordine lessicografico coincide con quello cronologico.
    """
    if isinstance(value, datetime):
        return parse_timestamp(value).isoformat(timespec="microseconds")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return encode_value(value.value)
    if isinstance(value, dict):
        return {str(k): encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


def encode_timestamp(value: Any) -> Any:
    # stringhe ISO con offset qualsiasi riportate alla forma UTC canonica
    if isinstance(value, str):
        return encode_value(parse_timestamp(value))
    return encode_value(value)


def encode_fields(fields: Dict[str, Any], timestamps: AbstractSet[str] = frozenset()) -> Dict[str, Any]:
    return {
        key: encode_timestamp(value) if key in timestamps else encode_value(value)
        for key, value in fields.items()
    }


@dataclass(frozen=True)
class Document:
    collection: str
    id: str
    data: Dict[str, Any]


@dataclass(frozen=True)
class WriteOperation:
    kind: WriteKind
    collection: str
    document_id: Optional[str] = None
    fields: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class CommitResult:
    # None per un batch vuoto (nessuna chiamata al backend)
    revision: Optional[int]
    # id creati, in ordine di operazione (None per update/delete)
    document_ids: Tuple[Optional[str], ...] = ()

    @property
    def created_ids(self) -> Tuple[str, ...]:
        return tuple(doc_id for doc_id in self.document_ids if doc_id is not None)


@dataclass(frozen=True)
class DocumentChange:
    collection: str
    document_id: str
    kind: WriteKind
    # stato dopo la scrittura; None se cancellato
    data: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ChangeEvent:
    revision: int
    changes: Tuple[DocumentChange, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class QuerySnapshot:
    query: Any
    documents: Tuple[Document, ...]
    revision: int

    def __iter__(self) -> Iterator[Document]:
        return iter(self.documents)

    def __len__(self) -> int:
        return len(self.documents)

    @property
    def ids(self) -> Tuple[str, ...]:
        return tuple(doc.id for doc in self.documents)


@dataclass(frozen=True)
class DocumentSnapshot:
    ref: Any
    document: Optional[Document]
    revision: int

    @property
    def exists(self) -> bool:
        return self.document is not None
