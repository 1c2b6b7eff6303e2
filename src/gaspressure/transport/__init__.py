"""
GasPressure transport - broker abstraction and adapters.

Usage:
    from gaspressure.transport import create_transport

    transport = create_transport(config.broker)
"""

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
from gaspressure.transport.memory import InMemoryBroker, InMemoryTransport


def create_transport(
    config: BrokerConfig,
    broker: InMemoryBroker | None = None,
) -> Transport:
    """
    Open a transport for the configured backend.

    Args:
        config: Broker configuration
        broker: Shared in-memory broker (required for the memory backend
            when several connections must see each other)

    Raises:
        ValueError: If the backend is unknown.
        TransportConnectionError: If the broker cannot be reached.
    """
    if config.backend == "memory":
        return (broker or InMemoryBroker()).connect()
    if config.backend == "redis":
        from gaspressure.transport.redis_broker import RedisTransport

        return RedisTransport(config)
    raise ValueError(f"Unknown broker backend: {config.backend}")


__all__ = [
    "Transport",
    "Delivery",
    "MessageHandler",
    "MessageProperties",
    "SubscriptionHandle",
    "TransportError",
    "TransportClosedError",
    "TransportConnectionError",
    "QueueNotFoundError",
    "ExchangeNotFoundError",
    "InMemoryBroker",
    "InMemoryTransport",
    "create_transport",
]
