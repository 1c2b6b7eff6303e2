"""
Client RPC stub for the GasPressure service.

Each stub owns one exclusive reply queue for its whole lifetime and one
consumer on it. A call registers a pending entry keyed by a fresh
correlation id, publishes the request and blocks on a future that the
consumer resolves once, when a reply with that correlation id and the
expected result action arrives. Replies for unknown or already finished
calls are ignored.
"""

import logging
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from gaspressure.core.config import GasPressureConfig
from gaspressure.core.container import MassAdjustmentResult
from gaspressure.rpc.contract import (
    EXCHANGE_NAME,
    SERVER_QUEUE_NAME,
    DecodeError,
    MassRequest,
    Method,
    RpcCancelledError,
    RpcMessage,
    RpcTimeoutError,
    client_queue_name,
    decode_result,
    encode_call,
)
from gaspressure.transport.base import (
    Delivery,
    MessageProperties,
    Transport,
    TransportError,
)

logger = logging.getLogger(__name__)

DEFAULT_CALL_TIMEOUT = 10.0  # seconds


@dataclass
class PendingCall:
    """A call waiting for its reply."""

    method: Method
    correlation_id: str
    future: Future = field(default_factory=Future)


class GasPressureClient:
    """
    RPC-style client for the gas pressure service.

    Thread-safe: several threads may issue calls through one stub.

    Example:
        with GasPressureClient(transport, role="Input") as client:
            if client.get_pressure() < 100:
                result = client.increase_mass(2)
    """

    def __init__(
        self,
        transport: Transport,
        role: str = "Input",
        timeout: float = DEFAULT_CALL_TIMEOUT,
        exchange: str = EXCHANGE_NAME,
        server_queue: str = SERVER_QUEUE_NAME,
    ):
        """Declare and start consuming the reply queue.

        Args:
            transport: Open broker connection
            role: Client role used in the reply queue name
            timeout: Default bound on every call, in seconds
            exchange: Direct exchange shared with the server
            server_queue: Routing key of the server queue

        Raises:
            TransportError: If the reply queue cannot be set up.
        """
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")

        self.transport = transport
        self.role = role
        self.timeout = timeout
        self.exchange = exchange
        self.server_queue = server_queue
        self.queue_name = client_queue_name(role)
        self._pending: dict[str, PendingCall] = {}
        self._lock = threading.Lock()
        self._closed = False

        logger.info(f"Initializing GasPressureClient with queue '{self.queue_name}'.")

        transport.declare_exchange(exchange)
        transport.declare_queue(self.queue_name, durable=False, exclusive=True)
        transport.bind_queue(self.queue_name, exchange, self.queue_name)
        self._subscription = transport.subscribe(self.queue_name, self._on_reply)

    @classmethod
    def from_config(
        cls,
        transport: Transport,
        config: GasPressureConfig,
        role: str = "Input",
    ) -> "GasPressureClient":
        """Create a stub using configured topology and timeout."""
        return cls(
            transport,
            role=role,
            timeout=config.rpc.call_timeout,
            exchange=config.broker.exchange,
            server_queue=config.broker.server_queue,
        )

    @property
    def pending_count(self) -> int:
        """Number of calls waiting for a reply."""
        with self._lock:
            return len(self._pending)

    # =========================================================================
    # GENERIC CALL
    # =========================================================================

    def call(
        self,
        method: Method,
        args: Any = None,
        expect_result: bool = True,
        timeout: float | None = None,
    ) -> Any:
        """
        Invoke a remote method.

        Args:
            method: Method to invoke
            args: Typed request payload (None for methods without one)
            expect_result: Wait for a reply; False returns right after publishing
            timeout: Override of the default timeout, in seconds

        Returns:
            The decoded result, or None when no result is expected.

        Raises:
            RpcTimeoutError: If no matching reply arrives in time.
            RpcCancelledError: If the stub is closed while waiting.
            TransportError: If the request cannot be published.
        """
        correlation_id = str(uuid4())
        pending: PendingCall | None = None
        with self._lock:
            # Same critical section as close()
            if self._closed:
                raise RpcCancelledError(method.value, correlation_id)
            if expect_result:
                pending = PendingCall(method=method, correlation_id=correlation_id)
                self._pending[correlation_id] = pending

        try:
            self.transport.publish(
                self.exchange,
                self.server_queue,
                encode_call(method, args).to_bytes(),
                MessageProperties(correlation_id=correlation_id, reply_to=self.queue_name),
            )
            if pending is None:
                return None

            wait = self.timeout if timeout is None else timeout
            try:
                return pending.future.result(timeout=wait)
            except FutureTimeoutError:
                logger.warning(f"RPC call '{method.value}' ({correlation_id}) timed out")
                raise RpcTimeoutError(method.value, correlation_id, wait) from None
        finally:
            if pending is not None:
                with self._lock:
                    self._pending.pop(correlation_id, None)

    def _on_reply(self, delivery: Delivery) -> None:
        """Consumer callback for the reply queue."""
        correlation_id = delivery.properties.correlation_id
        with self._lock:
            pending = self._pending.get(correlation_id) if correlation_id else None

        if pending is None:
            logger.info(f"Reply for unknown or completed call '{correlation_id}'. Ignoring.")
            return

        try:
            message = RpcMessage.from_bytes(delivery.body)
        except DecodeError as e:
            logger.warning(f"Undecodable reply for '{correlation_id}' ignored: {e}")
            return

        if message.action != pending.method.result_action:
            logger.info(f"Unexpected RPC action '{message.action}' received. Ignoring.")
            return

        try:
            value = decode_result(message, pending.method)
        except DecodeError as e:
            logger.warning(f"Malformed '{message.action}' reply ignored: {e}")
            return

        # Whoever removes the entry owns completing the future
        with self._lock:
            if self._pending.pop(correlation_id, None) is None:
                return
        pending.future.set_result(value)

    # =========================================================================
    # SERVICE METHODS
    # =========================================================================

    def get_pressure(self, timeout: float | None = None) -> float:
        """Current container pressure."""
        return self.call(Method.GET_PRESSURE, timeout=timeout)

    def is_destroyed(self, timeout: float | None = None) -> bool:
        """Whether the container is destroyed."""
        return self.call(Method.IS_DESTROYED, timeout=timeout)

    def increase_mass(self, mass: float, timeout: float | None = None) -> MassAdjustmentResult:
        """Request adding mass. A rejection is returned, not raised."""
        return self.call(Method.INCREASE_MASS, MassRequest(mass=float(mass)), timeout=timeout)

    def decrease_mass(self, mass: float, timeout: float | None = None) -> MassAdjustmentResult:
        """Request removing mass. A rejection is returned, not raised."""
        return self.call(Method.DECREASE_MASS, MassRequest(mass=float(mass)), timeout=timeout)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def cancel_pending(self) -> int:
        """Fail every waiting call with RpcCancelledError.

        Returns:
            Number of calls cancelled.
        """
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for call in pending:
            call.future.set_exception(RpcCancelledError(call.method.value, call.correlation_id))
        return len(pending)

    def close(self) -> None:
        """Cancel waiting calls and tear down the reply queue."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.cancel_pending()

        if not self.transport.is_open:
            return
        try:
            self.transport.unsubscribe(self._subscription)
            self.transport.delete_queue(self.queue_name)
        except TransportError as e:
            logger.debug(f"Reply queue teardown failed: {e}")
        logger.info(f"GasPressureClient '{self.queue_name}' closed")

    def __enter__(self) -> "GasPressureClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
