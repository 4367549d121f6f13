# gradebook/services/store_client.py
from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Sequence, Union

from gradebook.core.errors import BatchTooLarge, ValidationError
from gradebook.database.document_backend import DocumentBackend
from gradebook.schemas.documents import (
    CommitResult, Document, DocumentSnapshot, QuerySnapshot, WriteKind, WriteOperation, encode_fields,
)
from gradebook.schemas.entities import CREATED_AT_FIELDS, timestamp_fields
from gradebook.schemas.query import DocumentRef, Query
from gradebook.services.validation import validate_document

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCH_SIZE = 500


def with_created_at(collection: str, fields: Mapping[str, Any]) -> dict:
    """Copia dei campi con il timestamp di creazione della collection, se mancante."""
    data = dict(fields)
    key = CREATED_AT_FIELDS.get(collection)
    if key is not None and data.get(key) is None:
        data[key] = datetime.now(timezone.utc)
    return data


class WriteBatch:
    """Accumula operazioni da applicare con un unico commit atomico."""

    def __init__(self, client: DocumentStoreClient):
        self._client = client
        self._operations: List[WriteOperation] = []

    def __len__(self) -> int:
        return len(self._operations)

    @property
    def operations(self) -> tuple:
        return tuple(self._operations)

    def create(self, collection: str, fields: Mapping[str, Any]) -> WriteBatch:
        self._operations.append(WriteOperation(WriteKind.CREATE, collection, None, dict(fields)))
        return self

    def update(self, collection: str, document_id: str, fields: Mapping[str, Any]) -> WriteBatch:
        self._operations.append(WriteOperation(WriteKind.UPDATE, collection, document_id, dict(fields)))
        return self

    def delete(self, collection: str, document_id: str) -> WriteBatch:
        self._operations.append(WriteOperation(WriteKind.DELETE, collection, document_id))
        return self

    async def commit(self) -> CommitResult:
        return await self._client.commit_batch(self._operations)


class DocumentStoreClient:
    """
    Client stateless verso il document store remoto. Ogni chiamata è
    indipendente e tutto-o-niente; la validazione locale avviene prima
    di qualsiasi chiamata al backend.
    """

    def __init__(self, backend: DocumentBackend, *, max_batch_size: int = DEFAULT_MAX_BATCH_SIZE):
        self.backend = backend
        self.max_batch_size = max_batch_size

    def _prepare(self, op: WriteOperation) -> WriteOperation:
        if not op.collection:
            raise ValidationError("collection è obbligatoria", field="collection")
        if op.kind == WriteKind.DELETE:
            if not op.document_id:
                raise ValidationError("document_id è obbligatorio", field="document_id")
            return op
        if op.kind == WriteKind.UPDATE and not op.document_id:
            raise ValidationError("document_id è obbligatorio", field="document_id")

        fields = op.fields or {}
        validate_document(op.collection, fields, partial=op.kind == WriteKind.UPDATE)
        if op.kind == WriteKind.CREATE:
            fields = with_created_at(op.collection, fields)
        encoded = encode_fields(dict(fields), timestamp_fields(op.collection))
        return WriteOperation(op.kind, op.collection, op.document_id, encoded)

    # -----------------------------
    # Singolo documento
    # -----------------------------
    async def add_document(self, collection: str, fields: Mapping[str, Any]) -> str:
        op = self._prepare(WriteOperation(WriteKind.CREATE, collection, None, dict(fields)))
        result = await self.backend.commit([op])
        doc_id = result.document_ids[0]
        logger.debug("Document added", extra={"collection": collection, "document_id": doc_id})
        return doc_id

    async def get_document(self, collection: str, document_id: str) -> Optional[Document]:
        return await self.backend.fetch(collection, document_id)

    async def update_document(self, collection: str, document_id: str, fields: Mapping[str, Any]) -> CommitResult:
        op = self._prepare(WriteOperation(WriteKind.UPDATE, collection, document_id, dict(fields)))
        return await self.backend.commit([op])

    async def delete_document(self, collection: str, document_id: str) -> CommitResult:
        op = self._prepare(WriteOperation(WriteKind.DELETE, collection, document_id))
        return await self.backend.commit([op])

    # -----------------------------
    # Query
    # -----------------------------
    async def list_documents(self, query: Query) -> List[Document]:
        snapshot = await self.backend.run_query(query)
        return list(snapshot.documents)

    async def snapshot(self, target: Union[Query, DocumentRef]) -> Union[QuerySnapshot, DocumentSnapshot]:
        if isinstance(target, DocumentRef):
            return await self.backend.fetch_snapshot(target)
        return await self.backend.run_query(target)

    # -----------------------------
    # Batch
    # -----------------------------
    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    async def commit_batch(self, operations: Sequence[WriteOperation]) -> CommitResult:
        if len(operations) > self.max_batch_size:
            raise BatchTooLarge(len(operations), self.max_batch_size)
        if not operations:
            return CommitResult(revision=None)

        prepared = []
        for index, op in enumerate(operations):
            try:
                prepared.append(self._prepare(op))
            except ValidationError as exc:
                exc.details["operation"] = index
                raise
        result = await self.backend.commit(prepared)
        logger.debug("Batch committed",
                     extra={"operations": len(prepared), "revision": result.revision})
        return result
