"""
Message transport port.

Broker model with direct-routing exchanges and named queues. A message
published to an exchange under a routing key is appended to every queue
bound under that key; a key with no bound queue drops the message. Each
queue hands every message to exactly one of its consumers.

These are pure interfaces - no broker client imports allowed.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from uuid import uuid4


class TransportError(Exception):
    """Base exception for transport errors."""

    pass


class TransportClosedError(TransportError):
    """Raised when a closed transport is used."""

    pass


class TransportConnectionError(TransportError):
    """Raised when the broker is unreachable or the connection was lost."""

    pass


class QueueNotFoundError(TransportError):
    """Raised when subscribing or binding to an undeclared queue."""

    def __init__(self, queue: str):
        self.queue = queue
        super().__init__(f"Queue '{queue}' does not exist")


class ExchangeNotFoundError(TransportError):
    """Raised when binding or publishing to an undeclared exchange."""

    def __init__(self, exchange: str):
        self.exchange = exchange
        super().__init__(f"Exchange '{exchange}' does not exist")


@dataclass(frozen=True, slots=True)
class MessageProperties:
    """Transport-level metadata carried unchanged from publish to delivery."""

    correlation_id: str | None = None
    reply_to: str | None = None


@dataclass(frozen=True, slots=True)
class Delivery:
    """A message handed to a consumer."""

    body: bytes
    properties: MessageProperties = field(default_factory=MessageProperties)
    exchange: str = ""
    routing_key: str = ""
    queue: str = ""


MessageHandler = Callable[[Delivery], None]


@dataclass(frozen=True, slots=True)
class SubscriptionHandle:
    """Identifies an active consumer."""

    queue: str
    consumer_tag: str = field(default_factory=lambda: f"ctag-{uuid4()}")


class Transport(ABC):
    """
    Abstract connection to a message broker.

    Handlers are invoked on transport-owned threads. A handler must not let
    exceptions escape; any that do are logged by the transport and the
    consumer keeps running.
    """

    @abstractmethod
    def declare_exchange(self, exchange: str) -> None:
        """Declare a direct-routing exchange (idempotent)."""
        ...

    @abstractmethod
    def declare_queue(
        self,
        queue: str,
        durable: bool = False,
        exclusive: bool = False,
    ) -> str:
        """
        Declare a queue (idempotent).

        Args:
            queue: Queue name.
            durable: Survives broker restarts.
            exclusive: Owned by this connection and deleted when it closes.

        Returns:
            The queue name.
        """
        ...

    @abstractmethod
    def bind_queue(self, queue: str, exchange: str, routing_key: str) -> None:
        """Route messages published to exchange under routing_key into queue."""
        ...

    @abstractmethod
    def delete_queue(self, queue: str) -> None:
        """Delete a queue and its bindings. Pending messages are discarded."""
        ...

    @abstractmethod
    def publish(
        self,
        exchange: str,
        routing_key: str,
        body: bytes,
        properties: MessageProperties | None = None,
    ) -> None:
        """
        Publish a message.

        Raises:
            TransportClosedError: If the transport was closed.
            TransportConnectionError: If the broker cannot be reached.
        """
        ...

    @abstractmethod
    def subscribe(self, queue: str, on_message: MessageHandler) -> SubscriptionHandle:
        """
        Start consuming from a queue.

        Args:
            queue: Queue to consume from.
            on_message: Called once per delivered message.

        Returns:
            Handle for unsubscribe().
        """
        ...

    @abstractmethod
    def unsubscribe(self, handle: SubscriptionHandle) -> bool:
        """
        Stop a consumer.

        Returns:
            True if the consumer was active, False if unknown.
        """
        ...

    @abstractmethod
    def close(self) -> None:
        """Stop all consumers and delete exclusive queues."""
        ...

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the transport can still be used."""
        ...

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
