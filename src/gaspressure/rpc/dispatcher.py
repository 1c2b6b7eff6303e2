"""
Service dispatcher.

Consumes request envelopes from the server queue, runs the named container
operation and publishes the correlated result to the caller's reply queue.
Malformed or unroutable requests are logged and dropped; the caller's
timeout covers them.
"""

import logging
import threading
from collections.abc import Callable
from typing import Any

from gaspressure.core.container import ContainerStateEngine
from gaspressure.rpc.contract import (
    EXCHANGE_NAME,
    DecodeError,
    Method,
    RpcCall,
    RpcMessage,
    UnknownActionError,
    decode_call,
    encode_result,
)
from gaspressure.transport.base import Delivery, MessageProperties, Transport

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Any]


class ServiceDispatcher:
    """
    Routes RPC requests to one container engine.

    The dispatcher has no threads of its own; on_delivery runs on whichever
    consumer thread the transport delivers on.

    Example:
        dispatcher = ServiceDispatcher(engine, transport)
        transport.subscribe("GasPressure.Service", dispatcher.on_delivery)
    """

    def __init__(
        self,
        engine: ContainerStateEngine,
        transport: Transport,
        exchange: str = EXCHANGE_NAME,
    ):
        self.engine = engine
        self.transport = transport
        self.exchange = exchange
        self._handlers: dict[Method, Handler] = {
            Method.GET_PRESSURE: lambda _: engine.get_pressure(),
            Method.IS_DESTROYED: lambda _: engine.is_destroyed(),
            Method.INCREASE_MASS: lambda args: engine.increase_mass(args.mass),
            Method.DECREASE_MASS: lambda args: engine.decrease_mass(args.mass),
        }
        self.handled = 0
        self.dropped = 0
        self._stats_lock = threading.Lock()

    def handle(self, message: RpcMessage) -> RpcMessage | None:
        """Run the call named by a request envelope.

        Returns:
            The response envelope, or None when the request is dropped.
        """
        try:
            call: RpcCall = decode_call(message)
        except UnknownActionError:
            logger.warning(f"Unsupported RPC action '{message.action}'. Ignoring.")
            return None
        except DecodeError as e:
            logger.warning(f"Malformed '{message.action}' request dropped: {e}")
            return None

        handler = self._handlers[call.method]
        return encode_result(call.method, handler(call.args))

    def on_delivery(self, delivery: Delivery) -> None:
        """Transport callback for the server queue. Never raises."""
        try:
            self._process(delivery)
        except Exception:
            self._count_dropped()
            logger.exception(
                "Unhandled exception while processing a message. "
                "The message was not processed."
            )

    def _process(self, delivery: Delivery) -> None:
        try:
            request = RpcMessage.from_bytes(delivery.body)
        except DecodeError as e:
            self._count_dropped()
            logger.warning(f"Undecodable message dropped: {e}")
            return

        reply_to = delivery.properties.reply_to
        if not reply_to:
            self._count_dropped()
            logger.warning(f"Request '{request.action}' has no reply address. Dropped.")
            return

        response = self.handle(request)
        if response is None:
            self._count_dropped()
            return

        self.transport.publish(
            self.exchange,
            reply_to,
            response.to_bytes(),
            MessageProperties(correlation_id=delivery.properties.correlation_id),
        )
        with self._stats_lock:
            self.handled += 1
        logger.debug(
            f"Replied {response.action} to {reply_to} "
            f"(correlation: {delivery.properties.correlation_id})"
        )

    def _count_dropped(self) -> None:
        with self._stats_lock:
            self.dropped += 1

    def get_stats(self) -> dict[str, int]:
        """Get dispatcher statistics."""
        with self._stats_lock:
            return {"handled": self.handled, "dropped": self.dropped}
