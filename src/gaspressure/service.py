"""
Gas Pressure Service - server-side wiring.

Owns the container engine, its temperature driver and the dispatcher, and
connects them to the broker topology:
- Direct exchange ``GasPressure.Exchange``
- Durable shared queue ``GasPressure.Service`` bound under its own name
"""

import logging
import random

from gaspressure.core.config import GasPressureConfig
from gaspressure.core.container import ContainerSnapshot, ContainerStateEngine
from gaspressure.core.driver import TemperatureDriver
from gaspressure.rpc.dispatcher import ServiceDispatcher
from gaspressure.transport.base import SubscriptionHandle, Transport

logger = logging.getLogger(__name__)


class GasPressureService:
    """
    Gas pressure service handling RPC calls against one container.

    Example:
        service = GasPressureService(transport, config)
        service.start()
        ...
        service.stop()
    """

    def __init__(
        self,
        transport: Transport,
        config: GasPressureConfig | None = None,
        engine: ContainerStateEngine | None = None,
        rng: random.Random | None = None,
    ):
        self.config = config or GasPressureConfig()
        self.transport = transport

        container = self.config.container
        self.engine = engine or ContainerStateEngine(
            limits=container.limits(),
            initial_temperature=container.initial_temperature,
            initial_mass=container.initial_mass,
        )
        self.driver = TemperatureDriver(
            self.engine,
            period=self.config.driver.period_seconds,
            min_delta=self.config.driver.min_delta,
            max_delta=self.config.driver.max_delta,
            rng=rng,
        )
        self.dispatcher = ServiceDispatcher(
            self.engine, transport, exchange=self.config.broker.exchange
        )
        self._subscriptions: list[SubscriptionHandle] = []
        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started

    def declare_topology(self) -> None:
        """Declare the exchange and the durable server queue."""
        broker = self.config.broker
        self.transport.declare_exchange(broker.exchange)
        self.transport.declare_queue(broker.server_queue, durable=True, exclusive=False)
        self.transport.bind_queue(broker.server_queue, broker.exchange, broker.server_queue)

    def start(self, run_driver: bool = True) -> None:
        """Declare topology, start consumers and the temperature driver.

        Args:
            run_driver: Start the background driver thread (tests drive
                cycles by hand with ``driver.run_once()``)
        """
        if self._started:
            return

        self.declare_topology()
        queue = self.config.broker.server_queue
        for _ in range(max(1, self.config.service.consumer_count)):
            self._subscriptions.append(
                self.transport.subscribe(queue, self.dispatcher.on_delivery)
            )
        if run_driver:
            self.driver.start()

        self._started = True
        logger.info(
            f"Gas Pressure Service started on {queue} "
            f"with {len(self._subscriptions)} consumers"
        )

    def stop(self) -> None:
        """Stop consumers and the driver. The transport stays open."""
        if not self._started:
            return

        self.driver.stop()
        if self.transport.is_open:
            for handle in self._subscriptions:
                self.transport.unsubscribe(handle)
        self._subscriptions.clear()

        self._started = False
        logger.info("Gas Pressure Service stopped")

    def snapshot(self) -> ContainerSnapshot:
        """Current container state."""
        return self.engine.snapshot()

    def get_stats(self) -> dict:
        """Get service statistics."""
        return {
            "running": self._started,
            "consumers": len(self._subscriptions),
            "driver_cycles": self.driver.cycles,
            "container": self.engine.snapshot().to_dict(),
            **self.dispatcher.get_stats(),
        }

    def __enter__(self) -> "GasPressureService":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
