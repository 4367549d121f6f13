from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from gradebook.core.config import Settings
from gradebook.database.policy import AccessPolicy, gradebook_policy
from gradebook.database.sql_backend import SqlDocumentBackend
from gradebook.services.change_feed import ChangeFeed, LocalChangeFeed, RabbitMQChangeFeed
from gradebook.services.gradebook_service import GradebookService
from gradebook.services.store_client import DocumentStoreClient
from gradebook.services.subscription_manager import SubscriptionManager

logger = logging.getLogger(__name__)


@dataclass
class StoreContext:
    """Tutto ciò che serve per parlare con lo store; passato esplicitamente ai chiamanti."""

    settings: Settings
    engine: AsyncEngine
    feed: ChangeFeed
    backend: SqlDocumentBackend
    client: DocumentStoreClient
    subscriptions: SubscriptionManager
    gradebook: GradebookService

    async def close(self) -> None:
        try:
            await self.subscriptions.stop()
        finally:
            try:
                await self.feed.stop()
            finally:
                # Chiudi connessione DB
                await self.engine.dispose()
        logger.info("StoreContext chiuso")


def build_feed(settings: Settings) -> ChangeFeed:
    if settings.rabbitmq_url:
        return RabbitMQChangeFeed(settings.rabbitmq_url, exchange_name=settings.change_exchange)
    return LocalChangeFeed()


async def open_context(
    settings: Settings,
    *,
    policy: Optional[AccessPolicy] = None,
    feed: Optional[ChangeFeed] = None,
) -> StoreContext:
    engine = create_async_engine(settings.database_url, echo=settings.database_echo, pool_pre_ping=True)
    feed = feed or build_feed(settings)
    backend = SqlDocumentBackend(engine, policy=policy or gradebook_policy(), feed=feed)
    try:
        await backend.ensure_schema()
        await feed.start()
    except BaseException:
        await engine.dispose()
        raise

    client = DocumentStoreClient(backend, max_batch_size=settings.max_batch_size)
    subscriptions = SubscriptionManager(backend, feed, poll_interval=settings.subscription_poll_interval)
    return StoreContext(
        settings=settings,
        engine=engine,
        feed=feed,
        backend=backend,
        client=client,
        subscriptions=subscriptions,
        gradebook=GradebookService(client, subscriptions),
    )


@asynccontextmanager
async def store_context(settings: Settings, **kwargs) -> AsyncIterator[StoreContext]:
    context = await open_context(settings, **kwargs)
    try:
        yield context
    finally:
        await context.close()
