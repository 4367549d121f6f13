from __future__ import annotations
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, insert, select, update, func
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from gradebook.core.errors import NetworkUnavailable, StoreError, Timeout, WriteRejected
from gradebook.database.document_backend import DocumentBackend
from gradebook.database.policy import AccessPolicy
from gradebook.database.tables import HEAD_KEY, changes, documents, metadata, store_meta
from gradebook.schemas.documents import (
    ChangeEvent, CommitResult, Document, DocumentChange, DocumentSnapshot,
    QuerySnapshot, WriteKind, WriteOperation,
)
from gradebook.schemas.query import DocumentRef, Query
from gradebook.services.change_feed import ChangeFeed

logger = logging.getLogger("gradebook.backend")

# tentativi di lettura coerente (revisione invariata prima/dopo)
SNAPSHOT_ATTEMPTS = 5


def new_document_id() -> str:
    return uuid.uuid4().hex


class SqlDocumentBackend(DocumentBackend):
    """
    Document store su SQLAlchemy async: ogni documento è una riga JSON
    indicizzata da (collection, document_id). Ogni commit incrementa la
    revisione "head" e scrive il change log nella stessa transazione.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        policy: Optional[AccessPolicy] = None,
        feed: Optional[ChangeFeed] = None,
    ):
        self.engine = engine
        self.session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)
        self.policy = policy or AccessPolicy.allow_all()
        self.feed = feed

    @asynccontextmanager
    async def _translate_errors(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except StoreError:
            raise
        except asyncio.TimeoutError as exc:
            logger.warning("Backend timeout", extra={"operation": operation})
            raise Timeout(f"{operation}: timeout") from exc
        except IntegrityError as exc:
            raise WriteRejected(f"{operation}: integrity error", details={"error": str(exc.orig)}) from exc
        except (OperationalError, InterfaceError) as exc:
            logger.warning("Backend non raggiungibile: %s", exc, extra={"operation": operation})
            raise NetworkUnavailable(f"{operation}: backend unavailable") from exc
        except DBAPIError as exc:
            if exc.connection_invalidated:
                raise NetworkUnavailable(f"{operation}: connection lost") from exc
            raise StoreError(f"{operation}: {exc}") from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"{operation}: {exc}") from exc

    async def ensure_schema(self) -> None:
        logger.info("Ensuring schema for document tables")
        async with self._translate_errors("ensure_schema"):
            async with self.engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
                head = (await conn.execute(
                    select(store_meta.c.revision).where(store_meta.c.key == HEAD_KEY)
                )).scalar_one_or_none()
                if head is None:
                    await conn.execute(insert(store_meta).values(key=HEAD_KEY, revision=0))
        logger.info("Schema ready")

    # -----------------------------
    # Scritture
    # -----------------------------
    async def commit(self, operations: Sequence[WriteOperation]) -> CommitResult:
        async with self._translate_errors("commit"):
            async with self.session_factory() as session:
                async with session.begin():
                    # prima scrittura della transazione: lock sulla riga head
                    revision = await self._next_revision(session)
                    ids: List[Optional[str]] = []
                    applied: List[DocumentChange] = []
                    for op in operations:
                        doc_id, change = await self._apply(session, op, revision)
                        ids.append(doc_id)
                        if change is not None:
                            applied.append(change)
                    for change in applied:
                        await session.execute(insert(changes).values(
                            revision=revision,
                            collection=change.collection,
                            document_id=change.document_id,
                            kind=change.kind.value,
                            data=change.data,
                        ))

        logger.debug("Batch committed",
                     extra={"revision": revision, "operations": len(operations), "changes": len(applied)})
        if self.feed is not None:
            # il commit è già avvenuto: un feed giù non deve farlo sembrare fallito
            try:
                await self.feed.publish(revision)
            except Exception:
                logger.exception("Publish della revision %s fallita", revision)
        return CommitResult(revision=revision, document_ids=tuple(ids))

    async def _next_revision(self, session: AsyncSession) -> int:
        await session.execute(
            update(store_meta)
            .where(store_meta.c.key == HEAD_KEY)
            .values(revision=store_meta.c.revision + 1)
        )
        return (await session.execute(
            select(store_meta.c.revision).where(store_meta.c.key == HEAD_KEY)
        )).scalar_one()

    async def _load(self, session: AsyncSession, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        row = (await session.execute(
            select(documents.c.data).where(
                documents.c.collection == collection,
                documents.c.document_id == document_id,
            )
        )).first()
        return dict(row.data) if row is not None else None

    async def _apply(
        self, session: AsyncSession, op: WriteOperation, revision: int
    ) -> Tuple[Optional[str], Optional[DocumentChange]]:
        if op.kind == WriteKind.CREATE:
            doc_id = new_document_id()
            data = dict(op.fields or {})
            self.policy.check(op.kind, op.collection, doc_id, data)
            await session.execute(insert(documents).values(
                collection=op.collection, document_id=doc_id, data=data, revision=revision,
            ))
            return doc_id, DocumentChange(op.collection, doc_id, op.kind, data)

        if not op.document_id:
            raise WriteRejected(f"{op.kind.value} su {op.collection} richiede document_id")

        existing = await self._load(session, op.collection, op.document_id)

        if op.kind == WriteKind.UPDATE:
            if existing is None:
                raise WriteRejected(
                    f"Documento {op.collection}/{op.document_id} inesistente",
                    details={"collection": op.collection, "document_id": op.document_id},
                )
            merged = {**existing, **(op.fields or {})}
            self.policy.check(op.kind, op.collection, op.document_id, merged)
            await session.execute(
                update(documents)
                .where(documents.c.collection == op.collection, documents.c.document_id == op.document_id)
                .values(data=merged, revision=revision, updated_at=func.now())
            )
            return None, DocumentChange(op.collection, op.document_id, op.kind, merged)

        # delete idempotente
        if existing is None:
            return None, None
        self.policy.check(op.kind, op.collection, op.document_id, existing)
        await session.execute(
            delete(documents)
            .where(documents.c.collection == op.collection, documents.c.document_id == op.document_id)
        )
        return None, DocumentChange(op.collection, op.document_id, op.kind, None)

    # -----------------------------
    # Letture
    # -----------------------------
    async def fetch(self, collection: str, document_id: str) -> Optional[Document]:
        async with self._translate_errors("fetch"):
            async with self.session_factory() as session:
                data = await self._load(session, collection, document_id)
        return Document(collection, document_id, data) if data is not None else None

    async def _revision(self, session: AsyncSession) -> int:
        return (await session.execute(
            select(store_meta.c.revision).where(store_meta.c.key == HEAD_KEY)
        )).scalar_one()

    async def current_revision(self) -> int:
        async with self._translate_errors("current_revision"):
            async with self.session_factory() as session:
                return await self._revision(session)

    async def _consistent_read(self, operation: str, reader) -> Tuple[Any, int]:
        # la revisione letta prima e dopo deve coincidere
        async with self._translate_errors(operation):
            async with self.session_factory() as session:
                after = await self._revision(session)
                for _ in range(SNAPSHOT_ATTEMPTS):
                    before = after
                    result = await reader(session)
                    after = await self._revision(session)
                    if before == after:
                        return result, after
                    await session.rollback()
        raise Timeout(f"{operation}: no stable revision after {SNAPSHOT_ATTEMPTS} attempts")

    async def run_query(self, query: Query) -> QuerySnapshot:
        async def reader(session: AsyncSession) -> List[Document]:
            rows = (await session.execute(
                select(documents.c.document_id, documents.c.data)
                .where(documents.c.collection == query.collection)
            )).all()
            return query.apply(Document(query.collection, r.document_id, dict(r.data)) for r in rows)

        found, revision = await self._consistent_read("run_query", reader)
        return QuerySnapshot(query=query, documents=tuple(found), revision=revision)

    async def fetch_snapshot(self, ref: DocumentRef) -> DocumentSnapshot:
        async def reader(session: AsyncSession) -> Optional[Document]:
            data = await self._load(session, ref.collection, ref.document_id)
            return Document(ref.collection, ref.document_id, data) if data is not None else None

        found, revision = await self._consistent_read("fetch_snapshot", reader)
        return DocumentSnapshot(ref=ref, document=found, revision=revision)

    async def changes_since(self, revision: int) -> list[ChangeEvent]:
        async with self._translate_errors("changes_since"):
            async with self.session_factory() as session:
                head = await self._revision(session)
                rows = (await session.execute(
                    select(changes)
                    .where(changes.c.revision > revision, changes.c.revision <= head)
                    .order_by(changes.c.revision, changes.c.change_id)
                )).mappings().all()

        grouped: Dict[int, List[DocumentChange]] = {}
        for r in rows:
            grouped.setdefault(r["revision"], []).append(DocumentChange(
                collection=r["collection"],
                document_id=r["document_id"],
                kind=WriteKind(r["kind"]),
                data=dict(r["data"]) if r["data"] is not None else None,
            ))
        # anche le revisioni senza modifiche fanno avanzare il cursore
        return [
            ChangeEvent(revision=rev, changes=tuple(grouped.get(rev, ())))
            for rev in range(revision + 1, head + 1)
        ]
