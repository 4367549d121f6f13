# gradebook/services/subscription_manager.py
from __future__ import annotations
import asyncio
import inspect
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

from gradebook.database.document_backend import DocumentBackend
from gradebook.schemas.documents import ChangeEvent, Document, DocumentChange, DocumentSnapshot, QuerySnapshot
from gradebook.schemas.query import DocumentRef, Query
from gradebook.services.change_feed import ChangeFeed

logger = logging.getLogger(__name__)

Target = Union[Query, DocumentRef]
Snapshot = Union[QuerySnapshot, DocumentSnapshot]
OnChange = Callable[[Any], Optional[Awaitable[None]]]


class Subscription:
    """
    Handle di una subscription attiva. cancel() garantisce che nessuna
    consegna parta dopo il suo ritorno; usabile come async context manager.
    """

    def __init__(self, manager: SubscriptionManager, target: Target, on_change: OnChange):
        self.id = uuid.uuid4().hex
        self.target = target
        self.on_change = on_change
        self.active = True
        self.revision = 0
        self._manager = manager
        # proiezione locale: tutti i documenti che soddisfano i filtri (senza limit)
        self._documents: Dict[str, Document] = {}
        self._last: Optional[Snapshot] = None
        # finché lo snapshot iniziale non è consegnato gli eventi vanno in coda
        self._loading = True
        self._pending: List[ChangeEvent] = []

    async def cancel(self) -> None:
        self._manager._unregister(self)

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.cancel()

    def _covers(self, change: DocumentChange) -> bool:
        if isinstance(self.target, DocumentRef):
            return (change.collection == self.target.collection
                    and change.document_id == self.target.document_id)
        return change.collection == self.target.collection

    def _seed(self, snapshot: Snapshot) -> None:
        self.revision = snapshot.revision
        if isinstance(snapshot, DocumentSnapshot):
            docs = [snapshot.document] if snapshot.document is not None else []
        else:
            docs = list(snapshot.documents)
        self._documents = {doc.id: doc for doc in docs}

    def _build(self) -> Snapshot:
        if isinstance(self.target, DocumentRef):
            return DocumentSnapshot(
                ref=self.target,
                document=self._documents.get(self.target.document_id),
                revision=self.revision,
            )
        return QuerySnapshot(
            query=self.target,
            documents=tuple(self.target.apply(self._documents.values())),
            revision=self.revision,
        )

    def _advance(self, event: ChangeEvent) -> Optional[Snapshot]:
        """Applica un evento alla proiezione; ritorna lo snapshot solo se il risultato cambia."""
        if event.revision <= self.revision:
            return None
        self.revision = event.revision

        touched = False
        for change in event.changes:
            if not self._covers(change):
                continue
            touched = True
            keep = change.data is not None and (
                isinstance(self.target, DocumentRef) or self.target.matches(change.data)
            )
            if keep:
                self._documents[change.document_id] = Document(change.collection, change.document_id, change.data)
            else:
                self._documents.pop(change.document_id, None)
        if not touched:
            return None

        snapshot = self._build()
        if self._last is not None and _same_result(snapshot, self._last):
            return None
        return snapshot


def _same_result(a: Snapshot, b: Snapshot) -> bool:
    if isinstance(a, DocumentSnapshot) and isinstance(b, DocumentSnapshot):
        return a.document == b.document
    if isinstance(a, QuerySnapshot) and isinstance(b, QuerySnapshot):
        return a.documents == b.documents
    return False


class SubscriptionManager:
    """
    Registro delle subscription live. Un solo task dispatcher legge il change
    log del backend dalla sua ultima revisione e applica ogni evento, in
    ordine, a ogni subscription. Il feed segnala soltanto che c'è del nuovo.
    """

    def __init__(
        self,
        backend: DocumentBackend,
        feed: ChangeFeed,
        *,
        poll_interval: Optional[float] = None,
    ) -> None:
        self.backend = backend
        self.feed = feed
        self.poll_interval = poll_interval

        self._subscriptions: Dict[str, Subscription] = {}
        self._revision = 0
        self._wakeup = asyncio.Event()
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._subscriptions)

    @property
    def revision(self) -> int:
        return self._revision

    # -----------------------------
    # Lifecycle
    # -----------------------------
    async def start(self) -> None:
        if self._task is not None:
            return
        async with self._lock:
            if self._task is not None:
                return
            self._revision = await self.backend.current_revision()
            self.feed.add_listener(self._on_revision)
            self._task = asyncio.create_task(self._run(), name="subscription-dispatcher")
        logger.info("SubscriptionManager avviato alla revision %s", self._revision)

    async def stop(self) -> None:
        self.feed.remove_listener(self._on_revision)
        for sub in list(self._subscriptions.values()):
            sub.active = False
        self._subscriptions.clear()

        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("SubscriptionManager arrestato.")

    def _on_revision(self, revision: int) -> None:
        if revision > self._revision:
            self._wakeup.set()

    async def _run(self) -> None:
        while True:
            if self.poll_interval:
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
            else:
                await self._wakeup.wait()
            self._wakeup.clear()
            try:
                await self.flush()
            except asyncio.CancelledError:
                raise
            except Exception:
                # si riprova alla prossima notifica
                logger.exception("Errore nel dispatch delle subscription (revision=%s)", self._revision)

    # -----------------------------
    # Registrazione
    # -----------------------------
    async def subscribe(self, target: Target, on_change: OnChange) -> Subscription:
        if not isinstance(target, (Query, DocumentRef)):
            raise TypeError("target deve essere una Query o un DocumentRef")
        if not callable(on_change):
            raise TypeError("on_change deve essere callable")
        await self.start()

        sub = Subscription(self, target, on_change)
        self._subscriptions[sub.id] = sub
        try:
            if isinstance(target, DocumentRef):
                snapshot: Snapshot = await self.backend.fetch_snapshot(target)
            else:
                snapshot = await self.backend.run_query(target.without_limit())
        except BaseException:
            self._unregister(sub)
            raise

        sub._seed(snapshot)
        await self._deliver(sub, sub._build())
        # eventi arrivati durante il caricamento, in ordine
        while sub._pending:
            await self._advance(sub, sub._pending.pop(0))
        sub._loading = False

        logger.debug("Subscription registrata",
                     extra={"subscription_id": sub.id, "revision": sub.revision})
        return sub

    @asynccontextmanager
    async def listen(self, target: Target, on_change: OnChange) -> AsyncIterator[Subscription]:
        sub = await self.subscribe(target, on_change)
        try:
            yield sub
        finally:
            await sub.cancel()

    def _unregister(self, sub: Subscription) -> None:
        sub.active = False
        sub._pending.clear()
        if self._subscriptions.pop(sub.id, None) is not None:
            logger.debug("Subscription cancellata", extra={"subscription_id": sub.id})

    # -----------------------------
    # Dispatch
    # -----------------------------
    async def flush(self) -> int:
        """
        Applica tutte le revisioni committate; ritorna l'ultima applicata.
        Non va chiamata da una callback: il lock è già tenuto dal dispatch.
        """
        async with self._lock:
            events = await self.backend.changes_since(self._revision)
            for event in events:
                for sub in list(self._subscriptions.values()):
                    if not sub.active:
                        continue
                    if sub._loading:
                        sub._pending.append(event)
                        continue
                    await self._advance(sub, event)
                self._revision = event.revision
            return self._revision

    async def _advance(self, sub: Subscription, event: ChangeEvent) -> None:
        snapshot = sub._advance(event)
        if snapshot is not None:
            await self._deliver(sub, snapshot)

    async def _deliver(self, sub: Subscription, snapshot: Snapshot) -> None:
        if not sub.active:
            return
        sub._last = snapshot
        try:
            result = sub.on_change(snapshot)
            if inspect.isawaitable(result):
                await result
        except Exception:
            # fallisce solo questa consegna, la subscription resta attiva
            logger.exception("Callback della subscription %s fallita (revision=%s)",
                             sub.id, snapshot.revision)
