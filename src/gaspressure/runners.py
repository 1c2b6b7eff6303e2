"""
Process-level run loops for the server and the input/output clients.

Each loop builds a fresh transport and endpoint, runs until the stop event
is set, and on any failure logs, closes everything, pauses and rebuilds
from scratch. Nothing here reconnects in place.
"""

import logging
import random
import threading
from collections.abc import Callable
from dataclasses import dataclass

from gaspressure.core.config import GasPressureConfig
from gaspressure.core.container import MassAdjustmentResult
from gaspressure.rpc.client import GasPressureClient
from gaspressure.service import GasPressureService
from gaspressure.transport.base import Transport, TransportConnectionError
from gaspressure.transport.memory import InMemoryBroker

logger = logging.getLogger(__name__)

TransportFactory = Callable[[], Transport]

SERVER_HEARTBEAT_SECONDS = 1.0


# =============================================================================
# SERVER
# =============================================================================


def run_server(
    config: GasPressureConfig,
    transport_factory: TransportFactory,
    stop_event: threading.Event,
    rng: random.Random | None = None,
) -> None:
    """Run the gas pressure service until stop_event is set, restarting on failure."""
    logger.info("Starting Gas Pressure Management Server...")

    while not stop_event.is_set():
        transport: Transport | None = None
        service: GasPressureService | None = None
        try:
            transport = transport_factory()
            service = GasPressureService(transport, config, rng=rng)
            service.start()
            logger.info("Gas Pressure Service has started successfully.")

            while not stop_event.wait(SERVER_HEARTBEAT_SECONDS):
                if not transport.is_open:
                    raise TransportConnectionError("Broker connection lost")
        except Exception:
            logger.exception("Unhandled exception caught. Server will now restart.")
            stop_event.wait(config.client.retry_delay_seconds)
        finally:
            if service is not None:
                service.stop()
            if transport is not None:
                transport.close()

    logger.info("Gas Pressure Management Server stopped")


# =============================================================================
# CLIENTS
# =============================================================================


@dataclass(frozen=True)
class AdjustmentPolicy:
    """How a client role decides and applies mass changes."""

    role: str
    should_adjust: Callable[[float], bool]
    adjust: Callable[[GasPressureClient, float], MassAdjustmentResult]
    done_message: str
    idle_message: str


def input_policy(config: GasPressureConfig) -> AdjustmentPolicy:
    """Add mass while pressure is below the lower limit."""
    threshold = config.container.lower_limit
    return AdjustmentPolicy(
        role="Input",
        should_adjust=lambda pressure: pressure < threshold,
        adjust=lambda client, amount: client.increase_mass(amount),
        done_message="Added {amount} units of mass to the container.",
        idle_message="Pressure is above the threshold, no mass added.",
    )


def output_policy(config: GasPressureConfig) -> AdjustmentPolicy:
    """Remove mass while pressure is above the upper limit."""
    threshold = config.container.upper_limit
    return AdjustmentPolicy(
        role="Output",
        should_adjust=lambda pressure: pressure > threshold,
        adjust=lambda client, amount: client.decrease_mass(amount),
        done_message="Removed {amount} units of mass from the container.",
        idle_message="Pressure is below the threshold, no mass removed.",
    )


def client_step(
    client: GasPressureClient,
    policy: AdjustmentPolicy,
    config: GasPressureConfig,
    rng: random.Random,
) -> bool:
    """One polling step.

    Returns:
        False when the container is destroyed and the client should reconnect.
    """
    if client.is_destroyed():
        logger.warning("The gas container has been destroyed. Stopping operations.")
        return False

    pressure = client.get_pressure()
    logger.info(f"Current pressure: {pressure} units.")

    if not policy.should_adjust(pressure):
        logger.info(policy.idle_message)
        return True

    amount = rng.randint(config.client.min_mass_step, config.client.max_mass_step)
    result = policy.adjust(client, amount)
    if result.success:
        logger.info(policy.done_message.format(amount=amount))
    else:
        logger.info(f"Mass adjustment of {amount} units rejected: {result.failure_reason}")
    return True


def run_client(
    config: GasPressureConfig,
    transport_factory: TransportFactory,
    stop_event: threading.Event,
    policy: AdjustmentPolicy,
    rng: random.Random | None = None,
) -> None:
    """Poll the service and adjust mass until stop_event is set."""
    rng = rng or random.Random()
    logger.info(f"Starting {policy.role} Client for Gas Pressure Management...")

    while not stop_event.is_set():
        transport: Transport | None = None
        client: GasPressureClient | None = None
        try:
            transport = transport_factory()
            client = GasPressureClient.from_config(transport, config, role=policy.role)
            logger.info("Connected to Gas Pressure Service.")

            while not stop_event.is_set():
                if not client_step(client, policy, config, rng):
                    break
                stop_event.wait(config.client.poll_interval_seconds)
        except Exception as e:
            logger.warning(f"Unhandled exception caught. Restarting main loop... ({e})")
        finally:
            if client is not None:
                client.close()
            if transport is not None:
                transport.close()

        stop_event.wait(config.client.retry_delay_seconds)

    logger.info(f"{policy.role} Client stopped")


def run_input_client(
    config: GasPressureConfig,
    transport_factory: TransportFactory,
    stop_event: threading.Event,
    rng: random.Random | None = None,
) -> None:
    """Input client: keeps pressure up by adding mass."""
    run_client(config, transport_factory, stop_event, input_policy(config), rng)


def run_output_client(
    config: GasPressureConfig,
    transport_factory: TransportFactory,
    stop_event: threading.Event,
    rng: random.Random | None = None,
) -> None:
    """Output client: keeps pressure down by removing mass."""
    run_client(config, transport_factory, stop_event, output_policy(config), rng)


# =============================================================================
# DEMO
# =============================================================================


def run_demo(
    config: GasPressureConfig,
    duration: float,
    stop_event: threading.Event | None = None,
) -> InMemoryBroker:
    """Run server, input and output clients in one process on an in-memory broker.

    Returns:
        The broker, for inspecting statistics afterwards.
    """
    broker = InMemoryBroker()
    stop_event = stop_event or threading.Event()

    threads = [
        threading.Thread(
            target=run_server,
            args=(config, broker.connect, stop_event),
            name="demo-server",
            daemon=True,
        ),
        threading.Thread(
            target=run_input_client,
            args=(config, broker.connect, stop_event),
            name="demo-input-client",
            daemon=True,
        ),
        threading.Thread(
            target=run_output_client,
            args=(config, broker.connect, stop_event),
            name="demo-output-client",
            daemon=True,
        ),
    ]
    for thread in threads:
        thread.start()

    stop_event.wait(duration)
    stop_event.set()
    for thread in threads:
        thread.join(timeout=config.rpc.call_timeout + SERVER_HEARTBEAT_SECONDS * 2)

    return broker
