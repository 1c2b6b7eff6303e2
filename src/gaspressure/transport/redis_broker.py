"""
GasPressure - Redis Message Broker Transport.

Redis-backed implementation of the transport port so that the server and
its clients can run as separate processes on separate hosts.

Layout (all keys under ``key_prefix``):
- ``{prefix}:exchanges``                       set of declared exchanges
- ``{prefix}:queue:{name}``                    list holding queued messages
- ``{prefix}:queue:{name}:meta``               hash with queue flags
- ``{prefix}:queue:{name}:bindings``           set of binding keys of the queue
- ``{prefix}:bind:{exchange}:{routing_key}``   set of queues bound under a key

Consumers are threads blocking on BLPOP, so each message on a queue is
taken by exactly one consumer.

Keys of an exclusive queue carry a TTL (``exclusive_queue_ttl``) that its
consumer keeps refreshing, so the queue of a process that died or lost its
connection disappears on its own.

Configuration via environment variables:
- GASPRESSURE_BROKER=redis (select this transport)
- GASPRESSURE_REDIS_URL=redis://localhost:6379/0
"""

import base64
import json
import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any
from uuid import uuid4

import redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from gaspressure.core.config import BrokerConfig
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


def encode_message(
    body: bytes,
    properties: MessageProperties,
    exchange: str,
    routing_key: str,
) -> bytes:
    """Serialize a message and its properties for storage in a Redis list."""
    return json.dumps(
        {
            "body": base64.b64encode(body).decode("ascii"),
            "correlation_id": properties.correlation_id,
            "reply_to": properties.reply_to,
            "exchange": exchange,
            "routing_key": routing_key,
        }
    ).encode("utf-8")


def _as_text(value: bytes | str) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


def decode_message(raw: bytes | str, queue: str) -> Delivery:
    """Inverse of encode_message."""
    data = json.loads(raw)
    return Delivery(
        body=base64.b64decode(data["body"]),
        properties=MessageProperties(
            correlation_id=data.get("correlation_id"),
            reply_to=data.get("reply_to"),
        ),
        exchange=data.get("exchange", ""),
        routing_key=data.get("routing_key", ""),
        queue=queue,
    )


class RedisTransport(Transport):
    """
    Broker connection backed by Redis lists and sets.

    Example:
        transport = RedisTransport(BrokerConfig(redis_url="redis://localhost:6379/0"))
        transport.declare_exchange("GasPressure.Exchange")
    """

    def __init__(self, config: BrokerConfig | None = None, client: Any = None):
        """Connect to Redis.

        Args:
            config: Broker configuration
            client: Pre-built redis client (tests)

        Raises:
            TransportConnectionError: If Redis does not answer PING.
        """
        self.config = config or BrokerConfig(backend="redis")
        self.connection_id = f"conn-{uuid4()}"
        self._lock = threading.Lock()
        self._consumers: dict[str, tuple[threading.Thread, threading.Event]] = {}
        self._exclusive_queues: set[str] = set()
        self._owned_bindings: dict[str, set[str]] = {}  # Binding keys named after a queue
        self._closed = False
        self._failed = False

        self._redis = client or redis.Redis.from_url(self.config.redis_url)
        with self._wrap_errors():
            self._redis.ping()
        logger.info(f"Redis transport connected: {self._sanitize_url()}")

    def _sanitize_url(self) -> str:
        """Sanitize Redis URL for logging (hide password)."""
        url = self.config.redis_url
        if "@" in url:
            parts = url.split("@")
            return f"redis://***@{parts[-1]}"
        return url

    # =========================================================================
    # KEY HELPERS
    # =========================================================================

    def _exchanges_key(self) -> str:
        return f"{self.config.key_prefix}:exchanges"

    def _queue_key(self, queue: str) -> str:
        return f"{self.config.key_prefix}:queue:{queue}"

    def _queue_meta_key(self, queue: str) -> str:
        return f"{self.config.key_prefix}:queue:{queue}:meta"

    def _queue_bindings_key(self, queue: str) -> str:
        return f"{self.config.key_prefix}:queue:{queue}:bindings"

    def _binding_key(self, exchange: str, routing_key: str) -> str:
        return f"{self.config.key_prefix}:bind:{exchange}:{routing_key}"

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def is_open(self) -> bool:
        return not self._closed and not self._failed

    def _ensure_open(self) -> None:
        if self._closed:
            raise TransportClosedError("Transport is closed")
        if self._failed:
            raise TransportConnectionError("Redis connection was lost")

    @contextmanager
    def _wrap_errors(self) -> Iterator[None]:
        try:
            yield
        except RedisConnectionError as e:
            self._failed = True
            raise TransportConnectionError(f"Redis connection failed: {e}") from e
        except RedisError as e:
            raise TransportError(f"Redis operation failed: {e}") from e

    # =========================================================================
    # TOPOLOGY
    # =========================================================================

    def declare_exchange(self, exchange: str) -> None:
        self._ensure_open()
        with self._wrap_errors():
            self._redis.sadd(self._exchanges_key(), exchange)

    def declare_queue(
        self,
        queue: str,
        durable: bool = False,
        exclusive: bool = False,
    ) -> str:
        self._ensure_open()
        owner = self.connection_id if exclusive else ""
        meta_key = self._queue_meta_key(queue)
        with self._wrap_errors():
            created = self._redis.hsetnx(meta_key, "owner", owner)
            if not created:
                current = _as_text(self._redis.hget(meta_key, "owner") or b"")
                if current and current != owner:
                    raise TransportError(f"Queue '{queue}' is exclusive to another connection")
            self._redis.hset(meta_key, "durable", "1" if durable else "0")

        if exclusive:
            with self._lock:
                self._exclusive_queues.add(queue)
            with self._wrap_errors():
                self._refresh_ttl(queue)
        logger.debug(f"Declared queue {queue} (durable={durable}, exclusive={exclusive})")
        return queue

    def bind_queue(self, queue: str, exchange: str, routing_key: str) -> None:
        self._ensure_open()
        with self._wrap_errors():
            if not self._redis.sismember(self._exchanges_key(), exchange):
                raise ExchangeNotFoundError(exchange)
            if not self._redis.exists(self._queue_meta_key(queue)):
                raise QueueNotFoundError(queue)
            binding = self._binding_key(exchange, routing_key)
            pipe = self._redis.pipeline()
            pipe.sadd(binding, queue)
            pipe.sadd(self._queue_bindings_key(queue), binding)
            pipe.execute()

        with self._lock:
            exclusive = queue in self._exclusive_queues
            if exclusive and routing_key == queue:
                self._owned_bindings.setdefault(queue, set()).add(binding)
        if exclusive:
            with self._wrap_errors():
                self._refresh_ttl(queue)

    def delete_queue(self, queue: str) -> None:
        self._ensure_open()
        self._delete_queue(queue)

    def _delete_queue(self, queue: str) -> None:
        with self._wrap_errors():
            bindings = self._redis.smembers(self._queue_bindings_key(queue))
            pipe = self._redis.pipeline()
            for binding in bindings:
                pipe.srem(binding, queue)
            pipe.delete(
                self._queue_key(queue),
                self._queue_meta_key(queue),
                self._queue_bindings_key(queue),
            )
            pipe.execute()
        with self._lock:
            self._exclusive_queues.discard(queue)
            self._owned_bindings.pop(queue, None)
        logger.debug(f"Deleted queue {queue}")

    def _refresh_ttl(self, queue: str) -> None:
        """Push back the expiry of an exclusive queue's keys."""
        with self._lock:
            owned = list(self._owned_bindings.get(queue, ()))
        keys = [
            self._queue_key(queue),
            self._queue_meta_key(queue),
            self._queue_bindings_key(queue),
            *owned,
        ]
        pipe = self._redis.pipeline()
        for key in keys:
            pipe.expire(key, self.config.exclusive_queue_ttl)
        pipe.execute()

    # =========================================================================
    # PUBLISH / CONSUME
    # =========================================================================

    def publish(
        self,
        exchange: str,
        routing_key: str,
        body: bytes,
        properties: MessageProperties | None = None,
    ) -> None:
        self._ensure_open()
        properties = properties or MessageProperties()
        binding = self._binding_key(exchange, routing_key)
        with self._wrap_errors():
            targets = [_as_text(t) for t in self._redis.smembers(binding)]
            if not targets:
                logger.debug(f"Dropped unroutable message on {exchange}/{routing_key}")
                return

            payload = encode_message(body, properties, exchange, routing_key)
            pipe = self._redis.pipeline()
            for name in targets:
                pipe.rpush(self._queue_key(name), payload)
                pipe.hget(self._queue_meta_key(name), "owner")
            owners = pipe.execute()[1::2]

            # A push can land after the queue was deleted or expired
            followup = self._redis.pipeline()
            stale = []
            for name, owner in zip(targets, owners):
                if owner is None:
                    stale.append(name)
                    followup.delete(self._queue_key(name))
                    followup.srem(binding, name)
                elif owner:
                    followup.expire(self._queue_key(name), self.config.exclusive_queue_ttl)
            followup.execute()

        if stale:
            logger.debug(f"Removed stale queues {stale} bound to {exchange}/{routing_key}")

    def subscribe(self, queue: str, on_message: MessageHandler) -> SubscriptionHandle:
        self._ensure_open()
        with self._wrap_errors():
            if not self._redis.exists(self._queue_meta_key(queue)):
                raise QueueNotFoundError(queue)

        handle = SubscriptionHandle(queue=queue)
        stopped = threading.Event()
        thread = threading.Thread(
            target=self._consume,
            args=(handle, on_message, stopped),
            name=f"redis-consumer-{queue}",
            daemon=True,
        )
        with self._lock:
            self._consumers[handle.consumer_tag] = (thread, stopped)
        thread.start()
        return handle

    def _consume(
        self,
        handle: SubscriptionHandle,
        on_message: MessageHandler,
        stopped: threading.Event,
    ) -> None:
        list_key = self._queue_key(handle.queue)
        with self._lock:
            exclusive = handle.queue in self._exclusive_queues
        refresh_every = self.config.exclusive_queue_ttl / 3
        last_refresh = time.monotonic()

        while not stopped.is_set():
            try:
                if exclusive and time.monotonic() - last_refresh >= refresh_every:
                    self._refresh_ttl(handle.queue)
                    last_refresh = time.monotonic()
                item = self._redis.blpop([list_key], timeout=self.config.poll_interval)
            except RedisError as e:
                self._failed = True
                logger.error(f"Consumer {handle.consumer_tag} lost Redis connection: {e}")
                return
            if item is None:
                continue

            _, raw = item
            try:
                delivery = decode_message(raw, handle.queue)
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Discarding undecodable message on {handle.queue}: {e}")
                continue

            try:
                on_message(delivery)
            except Exception:
                logger.exception(f"Consumer {handle.consumer_tag} handler failed")

    def unsubscribe(self, handle: SubscriptionHandle) -> bool:
        with self._lock:
            entry = self._consumers.pop(handle.consumer_tag, None)
        if entry is None:
            return False
        thread, stopped = entry
        stopped.set()
        if threading.current_thread() is not thread:
            thread.join(timeout=self.config.poll_interval * 2 + 1.0)
        return True

    def close(self) -> None:
        if self._closed:
            return

        with self._lock:
            handles = [SubscriptionHandle(queue="", consumer_tag=tag) for tag in self._consumers]
            exclusive = list(self._exclusive_queues)

        for handle in handles:
            self.unsubscribe(handle)

        # Attempted after a connection failure too; the keys expire otherwise
        for queue in exclusive:
            try:
                self._delete_queue(queue)
            except TransportError as e:
                logger.warning(f"Failed to delete exclusive queue {queue}: {e}")

        self._closed = True
        try:
            self._redis.close()
        except RedisError as e:
            logger.debug(f"Error closing Redis client: {e}")
        logger.info("Redis transport closed")
