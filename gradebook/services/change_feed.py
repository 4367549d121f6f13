# gradebook/services/change_feed.py
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional
import aio_pika
from aio_pika import ExchangeType, IncomingMessage

logger = logging.getLogger(__name__)

# riceve la revisione appena committata; deve solo segnalare, mai bloccare
RevisionListener = Callable[[int], None]


class ChangeFeed(ABC):
    """Notifiche push "revisione N committata" dal backend ai subscriber."""

    def __init__(self) -> None:
        self._listeners: list[RevisionListener] = []

    def add_listener(self, listener: RevisionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: RevisionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, revision: int) -> None:
        for listener in list(self._listeners):
            try:
                listener(revision)
            except Exception:
                logger.exception("Errore nel listener del change feed (revision=%s)", revision)

    @abstractmethod
    async def start(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def publish(self, revision: int) -> None:
        raise NotImplementedError

    @abstractmethod
    async def stop(self) -> None:
        raise NotImplementedError


class LocalChangeFeed(ChangeFeed):
    """Feed in-process: backend e subscriber nello stesso event loop."""

    async def start(self) -> None:
        logger.debug("LocalChangeFeed avviato.")

    async def publish(self, revision: int) -> None:
        self._notify(revision)

    async def stop(self) -> None:
        self._listeners.clear()


class RabbitMQChangeFeed(ChangeFeed):
    """
    Feed su RabbitMQ: exchange FANOUT condiviso, una coda esclusiva per processo.
    Ogni commit pubblica {"revision": n}; ogni processo riceve anche i propri.
    """

    def __init__(
        self,
        rabbitmq_url: str,
        *,
        exchange_name: str = "gradebook.changes",
        heartbeat: int = 30,
        durable: bool = True,
        prefetch_count: int = 20,
        connect_attempts: int = 5,
        retry_delay: float = 3.0,
    ) -> None:
        super().__init__()
        self.rabbitmq_url = rabbitmq_url
        self.exchange_name = exchange_name
        self.heartbeat = heartbeat
        self.durable = durable
        self.prefetch_count = prefetch_count
        self.connect_attempts = connect_attempts
        self.retry_delay = retry_delay

        # risorse AMQP
        self._conn: Optional[aio_pika.RobustConnection] = None
        self._channel: Optional[aio_pika.RobustChannel] = None
        self._exchange: Optional[aio_pika.Exchange] = None
        self._queue: Optional[aio_pika.Queue] = None
        self._consumer_tag: Optional[str] = None

        # lock per operazioni critiche (close/ensure)
        self._lock = asyncio.Lock()

    # -----------------------------
    # Lifecycle
    # -----------------------------
    async def _declare(self) -> None:
        # canale con publisher confirms ed exchange fanout sulla connessione corrente
        assert self._conn is not None
        if self._channel is None or self._channel.is_closed:
            self._channel = await self._conn.channel(publisher_confirms=True)
            await self._channel.set_qos(prefetch_count=self.prefetch_count)
            self._exchange = None
        if self._exchange is None:
            self._exchange = await self._channel.declare_exchange(
                self.exchange_name, ExchangeType.FANOUT, durable=self.durable
            )

    async def _connect(self, attempts: int) -> None:
        for attempt in range(1, attempts + 1):
            try:
                self._conn = await aio_pika.connect_robust(self.rabbitmq_url, heartbeat=self.heartbeat)
                self._channel = None
                await self._declare()
                logger.info("RabbitMQ connesso", extra={"exchange": self.exchange_name, "attempt": attempt})
                return
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("RabbitMQ non raggiungibile (tentativo %s/%s): %s", attempt, attempts, exc)
                if attempt == attempts:
                    raise
                await asyncio.sleep(self.retry_delay)

    async def _ensure_ready(self, attempts: int) -> None:
        async with self._lock:
            if self._conn is None or self._conn.is_closed:
                await self._connect(attempts)
            else:
                await self._declare()

    def is_ready(self) -> bool:
        return bool(
            self._conn
            and not self._conn.is_closed
            and self._channel
            and not self._channel.is_closed
            and self._exchange
        )

    async def start(self) -> None:
        await self._ensure_ready(self.connect_attempts)
        assert self._channel is not None and self._exchange is not None

        # coda anonima: ogni processo riceve tutte le notifiche
        self._queue = await self._channel.declare_queue(exclusive=True, auto_delete=True)
        await self._queue.bind(self._exchange)
        self._consumer_tag = await self._queue.consume(self._on_message, no_ack=False)
        logger.info("RabbitMQChangeFeed in ascolto su %s (consumer tag=%s)",
                    self.exchange_name, self._consumer_tag)

    async def stop(self) -> None:
        """Chiude in modo pulito consumer, canale e connessione."""
        async with self._lock:
            if self._queue is not None and self._consumer_tag:
                try:
                    await self._queue.cancel(self._consumer_tag)
                except Exception:
                    logger.exception("Errore durante cancel consumer tag=%s", self._consumer_tag)

            try:
                if self._channel and not self._channel.is_closed:
                    logger.debug("Chiusura canale RabbitMQ.")
                    await self._channel.close()
            finally:
                if self._conn and not self._conn.is_closed:
                    logger.debug("Chiusura connessione RabbitMQ.")
                    await self._conn.close()

            # reset
            self._conn = None
            self._channel = None
            self._exchange = None
            self._queue = None
            self._consumer_tag = None
            self._listeners.clear()
        logger.info("RabbitMQChangeFeed arrestato.")

    # -----------------------------
    # Publish / consume
    # -----------------------------
    async def publish(self, revision: int) -> None:
        # chiamato dentro il commit: un solo tentativo, il retry spetta alla revision successiva
        await self._ensure_ready(1)
        assert self._exchange is not None
        body = json.dumps({"revision": revision}).encode("utf-8")
        await self._exchange.publish(
            aio_pika.Message(body=body, content_type="application/json"),
            routing_key="",
        )
        logger.debug("Revision pubblicata", extra={"revision": revision})

    async def _on_message(self, message: IncomingMessage) -> None:
        try:
            payload = json.loads(message.body.decode("utf-8"))
            revision = payload.get("revision") if isinstance(payload, dict) else None

            if not isinstance(revision, int) or isinstance(revision, bool):
                raise ValueError("Missing/invalid required field: revision")

            self._notify(revision)
            await message.ack()

        except json.JSONDecodeError:
            logger.exception("JSON change feed non valido: decode fallita")
            await message.nack(requeue=False)

        except ValueError as ve:
            logger.error("Validation error su change feed: message rejected (no requeue)",
                         extra={"error": str(ve)})
            await message.nack(requeue=False)
