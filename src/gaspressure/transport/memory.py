"""
In-memory message broker.

Process-local implementation of the transport port, used by the test
suite and the single-process demo. Every consumer runs on its own daemon
thread; consumers of the same queue compete for its messages.

Architecture Rules:
- No network calls
- All state is in-memory
"""

import logging
import queue
import threading
from dataclasses import dataclass, field
from uuid import uuid4

from gaspressure.transport.base import (
    Delivery,
    ExchangeNotFoundError,
    MessageHandler,
    MessageProperties,
    QueueNotFoundError,
    SubscriptionHandle,
    Transport,
    TransportClosedError,
    TransportConnectionError,
    TransportError,
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.05  # seconds


@dataclass
class _MemoryQueue:
    """A broker-side queue."""

    name: str
    durable: bool = False
    owner: str | None = None  # Connection id for exclusive queues
    messages: queue.Queue = field(default_factory=queue.Queue)
    deleted: threading.Event = field(default_factory=threading.Event)


class InMemoryBroker:
    """
    Shared broker state for any number of in-memory connections.

    Example:
        broker = InMemoryBroker()
        server_conn = broker.connect()
        client_conn = broker.connect()
    """

    def __init__(self, poll_interval: float = DEFAULT_POLL_INTERVAL):
        self.poll_interval = poll_interval
        self._lock = threading.Lock()
        self._exchanges: set[str] = set()
        self._queues: dict[str, _MemoryQueue] = {}
        self._bindings: dict[tuple[str, str], set[str]] = {}
        self._running = True
        self._published = 0
        self._dropped = 0

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def connect(self) -> "InMemoryTransport":
        """Open a new connection to this broker."""
        self._ensure_running()
        return InMemoryTransport(self)

    def shutdown(self) -> None:
        """Simulate a broker outage. Every later operation fails."""
        with self._lock:
            self._running = False
            for q in self._queues.values():
                q.deleted.set()
            self._queues.clear()
            self._bindings.clear()
        logger.warning("In-memory broker shut down")

    @property
    def is_running(self) -> bool:
        return self._running

    def _ensure_running(self) -> None:
        if not self._running:
            raise TransportConnectionError("In-memory broker is not running")

    # =========================================================================
    # TOPOLOGY
    # =========================================================================

    def declare_exchange(self, exchange: str) -> None:
        with self._lock:
            self._ensure_running()
            self._exchanges.add(exchange)

    def declare_queue(
        self,
        name: str,
        durable: bool = False,
        owner: str | None = None,
    ) -> str:
        with self._lock:
            self._ensure_running()
            existing = self._queues.get(name)
            if existing is not None:
                if existing.owner is not None and existing.owner != owner:
                    raise TransportError(f"Queue '{name}' is exclusive to another connection")
                return name
            self._queues[name] = _MemoryQueue(name=name, durable=durable, owner=owner)
        logger.debug(f"Declared queue {name} (durable={durable}, exclusive={owner is not None})")
        return name

    def bind_queue(self, name: str, exchange: str, routing_key: str) -> None:
        with self._lock:
            self._ensure_running()
            if exchange not in self._exchanges:
                raise ExchangeNotFoundError(exchange)
            if name not in self._queues:
                raise QueueNotFoundError(name)
            self._bindings.setdefault((exchange, routing_key), set()).add(name)

    def delete_queue(self, name: str) -> None:
        with self._lock:
            q = self._queues.pop(name, None)
            if q is None:
                return
            q.deleted.set()
            for key in list(self._bindings):
                self._bindings[key].discard(name)
                if not self._bindings[key]:
                    del self._bindings[key]
        logger.debug(f"Deleted queue {name}")

    def get_queue(self, name: str) -> _MemoryQueue:
        with self._lock:
            self._ensure_running()
            q = self._queues.get(name)
        if q is None:
            raise QueueNotFoundError(name)
        return q

    def has_queue(self, name: str) -> bool:
        with self._lock:
            return name in self._queues

    def queue_depth(self, name: str) -> int:
        """Number of messages waiting in a queue."""
        return self.get_queue(name).messages.qsize()

    # =========================================================================
    # ROUTING
    # =========================================================================

    def route(
        self,
        exchange: str,
        routing_key: str,
        body: bytes,
        properties: MessageProperties,
    ) -> int:
        """Deliver a message to every queue bound under routing_key.

        Returns:
            Number of queues the message was appended to.
        """
        with self._lock:
            self._ensure_running()
            if exchange not in self._exchanges:
                raise ExchangeNotFoundError(exchange)
            targets = [
                self._queues[name]
                for name in self._bindings.get((exchange, routing_key), ())
                if name in self._queues
            ]
            self._published += 1
            if not targets:
                self._dropped += 1

        if not targets:
            logger.debug(f"Dropped unroutable message on {exchange}/{routing_key}")
            return 0

        for q in targets:
            q.messages.put(
                Delivery(
                    body=body,
                    properties=properties,
                    exchange=exchange,
                    routing_key=routing_key,
                    queue=q.name,
                )
            )
        return len(targets)

    def get_stats(self) -> dict[str, int]:
        """Get broker statistics."""
        with self._lock:
            return {
                "exchanges": len(self._exchanges),
                "queues": len(self._queues),
                "published": self._published,
                "dropped": self._dropped,
            }


class _Consumer:
    """Consumer thread pulling from one queue."""

    def __init__(
        self,
        handle: SubscriptionHandle,
        source: _MemoryQueue,
        handler: MessageHandler,
        poll_interval: float,
    ):
        self.handle = handle
        self.source = source
        self.handler = handler
        self.poll_interval = poll_interval
        self.stopped = threading.Event()
        self.thread = threading.Thread(
            target=self._run, name=f"memory-consumer-{handle.queue}", daemon=True
        )

    def _run(self) -> None:
        while not self.stopped.is_set() and not self.source.deleted.is_set():
            try:
                delivery = self.source.messages.get(timeout=self.poll_interval)
            except queue.Empty:
                continue
            try:
                self.handler(delivery)
            except Exception:
                logger.exception(f"Consumer {self.handle.consumer_tag} handler failed")

    def stop(self) -> None:
        self.stopped.set()
        if threading.current_thread() is not self.thread:
            self.thread.join(timeout=max(1.0, self.poll_interval * 4))


class InMemoryTransport(Transport):
    """A connection to an InMemoryBroker."""

    def __init__(self, broker: InMemoryBroker):
        self.broker = broker
        self.connection_id = f"conn-{uuid4()}"
        self._lock = threading.Lock()
        self._consumers: dict[str, _Consumer] = {}
        self._exclusive_queues: set[str] = set()
        self._closed = False

    @property
    def is_open(self) -> bool:
        return not self._closed and self.broker.is_running

    def _ensure_open(self) -> None:
        if self._closed:
            raise TransportClosedError("Transport is closed")

    def declare_exchange(self, exchange: str) -> None:
        self._ensure_open()
        self.broker.declare_exchange(exchange)

    def declare_queue(
        self,
        queue: str,
        durable: bool = False,
        exclusive: bool = False,
    ) -> str:
        self._ensure_open()
        owner = self.connection_id if exclusive else None
        name = self.broker.declare_queue(queue, durable=durable, owner=owner)
        if exclusive:
            with self._lock:
                self._exclusive_queues.add(name)
        return name

    def bind_queue(self, queue: str, exchange: str, routing_key: str) -> None:
        self._ensure_open()
        self.broker.bind_queue(queue, exchange, routing_key)

    def delete_queue(self, queue: str) -> None:
        self._ensure_open()
        self.broker.delete_queue(queue)
        with self._lock:
            self._exclusive_queues.discard(queue)

    def publish(
        self,
        exchange: str,
        routing_key: str,
        body: bytes,
        properties: MessageProperties | None = None,
    ) -> None:
        self._ensure_open()
        self.broker.route(exchange, routing_key, body, properties or MessageProperties())

    def subscribe(self, queue: str, on_message: MessageHandler) -> SubscriptionHandle:
        self._ensure_open()
        source = self.broker.get_queue(queue)
        handle = SubscriptionHandle(queue=queue)
        consumer = _Consumer(handle, source, on_message, self.broker.poll_interval)
        with self._lock:
            self._consumers[handle.consumer_tag] = consumer
        consumer.thread.start()
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> bool:
        with self._lock:
            consumer = self._consumers.pop(handle.consumer_tag, None)
        if consumer is None:
            return False
        consumer.stop()
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        with self._lock:
            consumers = list(self._consumers.values())
            self._consumers.clear()
            exclusive = list(self._exclusive_queues)
            self._exclusive_queues.clear()

        for consumer in consumers:
            consumer.stop()
        for name in exclusive:
            self.broker.delete_queue(name)

        logger.debug(f"Closed in-memory connection {self.connection_id}")
