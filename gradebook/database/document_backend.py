from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from gradebook.schemas.documents import (
    ChangeEvent, CommitResult, Document, DocumentSnapshot, QuerySnapshot, WriteOperation,
)
from gradebook.schemas.query import DocumentRef, Query

class DocumentBackend(ABC):

    @abstractmethod
    async def ensure_schema(self) -> None:
        raise NotImplementedError

    # Scritture: tutte passano da commit, atomico per l'intero elenco
    @abstractmethod
    async def commit(self, operations: Sequence[WriteOperation]) -> CommitResult:
        raise NotImplementedError

    # Letture
    @abstractmethod
    async def fetch(self, collection: str, document_id: str) -> Optional[Document]:
        """Ritorna None se il documento non esiste."""
        raise NotImplementedError

    @abstractmethod
    async def run_query(self, query: Query) -> QuerySnapshot:
        """Ritorna i documenti e la revisione a cui corrispondono."""
        raise NotImplementedError

    @abstractmethod
    async def fetch_snapshot(self, ref: DocumentRef) -> DocumentSnapshot:
        raise NotImplementedError

    # Change log
    @abstractmethod
    async def current_revision(self) -> int:
        raise NotImplementedError

    @abstractmethod
    async def changes_since(self, revision: int) -> list[ChangeEvent]:
        """Ritorna gli eventi con revisione > revision, in ordine."""
        raise NotImplementedError
