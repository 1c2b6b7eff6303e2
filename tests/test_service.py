"""
End-to-end tests: service and client stubs over one in-memory broker.
"""

import random
import threading

import pytest

from gaspressure.core.config import GasPressureConfig
from gaspressure.core.container import (
    REASON_DESTROYED,
    REASON_PRESSURE_TOO_HIGH,
    ContainerState,
    ContainerStateEngine,
)
from gaspressure.rpc.client import GasPressureClient
from gaspressure.rpc.contract import RpcTimeoutError
from gaspressure.service import GasPressureService
from gaspressure.transport.memory import InMemoryBroker

# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def config():
    config = GasPressureConfig()
    config.broker.poll_interval = 0.01
    config.rpc.call_timeout = 2.0
    return config


@pytest.fixture
def broker():
    return InMemoryBroker(poll_interval=0.01)


def start_service(broker, config, engine=None):
    service = GasPressureService(broker.connect(), config, engine=engine, rng=random.Random(7))
    service.start(run_driver=False)
    return service


@pytest.fixture
def service(broker, config):
    service = start_service(broker, config)
    yield service
    service.stop()
    service.transport.close()


@pytest.fixture
def client(broker, config, service):
    transport = broker.connect()
    stub = GasPressureClient.from_config(transport, config, role="Input")
    yield stub
    stub.close()
    transport.close()


# =============================================================================
# TESTS
# =============================================================================


class TestServiceLifecycle:
    """Tests for GasPressureService start/stop."""

    def test_start_declares_topology(self, broker, service, config):
        assert broker.has_queue(config.broker.server_queue)
        stats = service.get_stats()
        assert stats["running"] is True
        assert stats["consumers"] == config.service.consumer_count

    def test_stop_keeps_durable_queue(self, broker, config):
        service = start_service(broker, config)
        service.stop()
        assert service.is_running is False
        assert broker.has_queue(config.broker.server_queue)
        service.transport.close()

    def test_requests_wait_for_server(self, broker, config):
        """Requests published while the server is stopped are served on restart."""
        first = start_service(broker, config)
        first.stop()

        transport = broker.connect()
        stub = GasPressureClient.from_config(transport, config)
        thread_result: dict = {}
        thread = threading.Thread(
            target=lambda: thread_result.setdefault("value", stub.get_pressure())
        )
        thread.start()

        second = start_service(broker, config)
        thread.join(3)
        assert thread_result["value"] == pytest.approx(130.8, abs=0.05)

        second.stop()
        stub.close()
        transport.close()
        first.transport.close()
        second.transport.close()


class TestEndToEnd:
    """Tests for full request/reply round trips."""

    def test_initial_pressure(self, client):
        assert client.get_pressure() == pytest.approx(130.8, abs=0.05)
        assert client.is_destroyed() is False

    def test_increase_rejected_at_initial_state(self, client, service):
        result = client.increase_mass(5)
        assert result.success is False
        assert result.failure_reason == REASON_PRESSURE_TOO_HIGH
        assert service.snapshot().mass == 10.0

    def test_destroyed_container_rejects(self, broker, config):
        engine = ContainerStateEngine(
            state=ContainerState(temperature=100.0, mass=2.0)
        )
        service = start_service(broker, config, engine=engine)
        transport = broker.connect()
        stub = GasPressureClient.from_config(transport, config)

        service.driver.run_once()
        assert stub.is_destroyed() is True
        assert stub.decrease_mass(1).failure_reason == REASON_DESTROYED

        service.driver.run_once()
        assert stub.is_destroyed() is False
        assert stub.get_pressure() == pytest.approx(130.8, abs=0.05)

        stub.close()
        transport.close()
        service.stop()
        service.transport.close()

    def test_no_server_times_out(self, broker, config):
        transport = broker.connect()
        stub = GasPressureClient.from_config(transport, config)
        with pytest.raises(RpcTimeoutError):
            stub.get_pressure(timeout=0.2)
        stub.close()
        transport.close()

    def test_concurrent_clients_see_consistent_state(self, broker, config):
        """Interleaved IncreaseMass(3) and GetPressure only observe whole increments."""
        engine = ContainerStateEngine(
            state=ContainerState(temperature=22.4, mass=0.0)  # pressure == mass
        )
        service = start_service(broker, config, engine=engine)

        transports = [broker.connect() for _ in range(2)]
        writer = GasPressureClient.from_config(transports[0], config, role="Input")
        reader = GasPressureClient.from_config(transports[1], config, role="Output")

        observed: list[float] = []

        def write():
            for _ in range(10):
                assert writer.increase_mass(3).success

        def read():
            for _ in range(20):
                observed.append(reader.get_pressure())

        threads = [threading.Thread(target=write), threading.Thread(target=read)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)

        assert service.snapshot().mass == 30.0
        assert all(round(p, 6) % 3 == 0 for p in observed)

        writer.close()
        reader.close()
        for t in transports:
            t.close()
        service.stop()
        service.transport.close()

    def test_replies_routed_to_their_caller(self, broker, config, service):
        stubs = []
        for role in ("Input", "Output"):
            stubs.append(GasPressureClient.from_config(broker.connect(), config, role=role))

        results: dict[str, float] = {}
        threads = [
            threading.Thread(
                target=lambda s=s: results.setdefault(s.queue_name, s.get_pressure())
            )
            for s in stubs
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        assert set(results) == {s.queue_name for s in stubs}
        for stub in stubs:
            stub.close()
            stub.transport.close()
