"""
Tests for the container state engine and the temperature driver.

Tests cover:
- Pressure formula and limits validation
- Mass adjustment rules and rejection reasons
- Driver cycles: perturbation, implosion, explosion, reset
- Lock-serialized concurrent access
"""

import random
import threading

import pytest

from gaspressure.core.container import (
    REASON_DESTROYED,
    REASON_PRESSURE_TOO_HIGH,
    REASON_PRESSURE_TOO_LOW,
    ContainerLimits,
    ContainerState,
    ContainerStateEngine,
    CycleOutcome,
    MassAdjustmentResult,
    compute_pressure,
)
from gaspressure.core.driver import TemperatureDriver

# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def engine():
    """Engine in its initial state (mass 10, temperature 293)."""
    return ContainerStateEngine()


def make_engine(mass: float, temperature: float, destroyed: bool = False) -> ContainerStateEngine:
    """Engine starting from an arbitrary state, resetting to the defaults."""
    return ContainerStateEngine(
        state=ContainerState(temperature=temperature, mass=mass, destroyed=destroyed)
    )


def fixed_delta(value: int):
    return lambda: value


# =============================================================================
# PRESSURE & LIMITS
# =============================================================================


class TestPressure:
    """Tests for the derived pressure."""

    @pytest.mark.parametrize(
        "mass,temperature",
        [(10.0, 293.0), (0.0, 293.0), (2.0, 100.0), (50.0, 293.0), (7.5, 312.0)],
    )
    def test_formula(self, mass, temperature):
        """Pressure is mass * temperature / 22.4."""
        assert compute_pressure(mass, temperature) == mass * temperature / 22.4
        assert make_engine(mass, temperature).get_pressure() == mass * temperature / 22.4

    def test_initial_pressure(self, engine):
        """Initial state gives roughly 130.8."""
        assert engine.get_pressure() == pytest.approx(130.8, abs=0.05)
        assert engine.is_destroyed() is False

    def test_snapshot(self, engine):
        """Snapshot mirrors the state."""
        snap = engine.snapshot()
        assert snap.mass == 10.0
        assert snap.temperature == 293.0
        assert snap.pressure == pytest.approx(130.8, abs=0.05)
        assert snap.destroyed is False
        assert snap.to_dict()["mass"] == 10.0


class TestContainerLimits:
    """Tests for threshold validation."""

    def test_defaults(self):
        limits = ContainerLimits()
        assert limits.implosion_limit == 10.0
        assert limits.lower_limit == 100.0
        assert limits.upper_limit == 150.0
        assert limits.explosion_limit == 200.0

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"lower_limit": 160.0},  # lower > upper
            {"implosion_limit": 120.0},  # implosion > lower
            {"explosion_limit": 140.0},  # explosion < upper
            {"lower_limit": 150.0},  # lower == upper
        ],
    )
    def test_ordering_violations_rejected(self, kwargs):
        with pytest.raises(ValueError):
            ContainerLimits(**kwargs)


# =============================================================================
# MASS ADJUSTMENTS
# =============================================================================


class TestIncreaseMass:
    """Tests for increase_mass."""

    def test_rejected_when_pressure_high(self, engine):
        """mass=10, T=293 (~130.8) is not below 100."""
        result = engine.increase_mass(5)
        assert result == MassAdjustmentResult(False, REASON_PRESSURE_TOO_HIGH)
        assert engine.snapshot().mass == 10.0

    def test_succeeds_below_lower_limit(self):
        engine = make_engine(mass=5, temperature=293)  # ~65.4
        result = engine.increase_mass(3)
        assert result.success is True
        assert result.failure_reason is None
        assert engine.snapshot().mass == 8.0

    def test_rejected_at_exact_lower_limit(self):
        pressure = compute_pressure(7.0, 320.0)
        engine = ContainerStateEngine(
            limits=ContainerLimits(lower_limit=pressure),
            state=ContainerState(temperature=320.0, mass=7.0),
        )
        assert engine.increase_mass(1).failure_reason == REASON_PRESSURE_TOO_HIGH

    def test_rejected_when_destroyed(self):
        engine = make_engine(mass=5, temperature=293, destroyed=True)
        result = engine.increase_mass(1)
        assert result == MassAdjustmentResult(False, REASON_DESTROYED)
        assert engine.snapshot().mass == 5.0

    def test_no_recheck_after_mutation(self):
        """Limits are checked before the change only (intentional approximation)."""
        engine = make_engine(mass=5, temperature=293)
        assert engine.increase_mass(100).success is True
        assert engine.get_pressure() > engine.limits.explosion_limit
        # Destruction is left to the driver
        assert engine.is_destroyed() is False


class TestDecreaseMass:
    """Tests for decrease_mass."""

    def test_rejected_when_pressure_low(self, engine):
        result = engine.decrease_mass(1)
        assert result == MassAdjustmentResult(False, REASON_PRESSURE_TOO_LOW)

    def test_succeeds_above_upper_limit(self):
        engine = make_engine(mass=13, temperature=293)  # ~170
        result = engine.decrease_mass(2)
        assert result.success is True
        assert engine.snapshot().mass == 11.0

    def test_rejected_when_destroyed(self):
        engine = make_engine(mass=13, temperature=293, destroyed=True)
        assert engine.decrease_mass(1).failure_reason == REASON_DESTROYED

    def test_adjustments_never_destroy(self):
        """Only the driver flips the destroyed flag."""
        engine = make_engine(mass=13, temperature=293)
        engine.decrease_mass(12.9)
        assert engine.get_pressure() < engine.limits.implosion_limit
        assert engine.is_destroyed() is False


# =============================================================================
# DRIVER CYCLES
# =============================================================================


class TestAdvance:
    """Tests for the atomic driver cycle."""

    def test_temperature_perturbed(self, engine):
        report = engine.advance(fixed_delta(7))
        assert report.outcome == CycleOutcome.ADJUSTED
        assert report.temperature_delta == 7
        assert engine.snapshot().temperature == 300.0

    def test_implosion_scenario(self):
        """mass=2, T=100 (~8.9) is destroyed whatever the delta, then reset."""
        for delta in (-15, 0, 15):
            engine = make_engine(mass=2, temperature=100)
            report = engine.advance(fixed_delta(delta))
            assert report.outcome == CycleOutcome.IMPLODED
            assert engine.is_destroyed() is True

            report = engine.advance(fixed_delta(delta))
            assert report.outcome == CycleOutcome.RESET
            snap = engine.snapshot()
            assert (snap.mass, snap.temperature, snap.destroyed) == (10.0, 293.0, False)

    def test_explosion_scenario(self):
        """mass=50, T=293 (~654) explodes on the next cycle."""
        engine = make_engine(mass=50, temperature=293)
        report = engine.advance(fixed_delta(0))
        assert report.outcome == CycleOutcome.EXPLODED
        assert report.destroyed_now is True
        assert engine.is_destroyed() is True

    def test_delta_pushes_past_explosion(self):
        engine = make_engine(mass=15, temperature=295)  # ~197.5
        report = engine.advance(fixed_delta(10))  # ~204.2
        assert report.outcome == CycleOutcome.EXPLODED
        assert report.temperature_delta == 10

    def test_delta_pushes_below_implosion(self):
        engine = make_engine(mass=1, temperature=230)  # ~10.27
        report = engine.advance(fixed_delta(-15))  # ~9.6
        assert report.outcome == CycleOutcome.IMPLODED

    def test_reset_only_on_following_cycle(self):
        engine = make_engine(mass=50, temperature=293)
        engine.advance(fixed_delta(0))
        assert engine.snapshot().mass == 50.0
        engine.advance(fixed_delta(0))
        assert engine.snapshot().mass == 10.0

    def test_reset(self):
        engine = make_engine(mass=3, temperature=150, destroyed=True)
        engine.reset()
        snap = engine.snapshot()
        assert (snap.mass, snap.temperature, snap.destroyed) == (10.0, 293.0, False)

    def test_custom_initial_values(self):
        engine = ContainerStateEngine(
            initial_temperature=300.0,
            initial_mass=5.0,
            state=ContainerState(temperature=10, mass=1, destroyed=True),
        )
        engine.advance(fixed_delta(0))
        snap = engine.snapshot()
        assert (snap.mass, snap.temperature) == (5.0, 300.0)


class TestTemperatureDriver:
    """Tests for TemperatureDriver."""

    def test_delta_within_range(self, engine):
        driver = TemperatureDriver(engine, rng=random.Random(42))
        for _ in range(200):
            before = engine.snapshot()
            report = driver.run_once()
            if report.temperature_delta is not None:
                assert -15 <= report.temperature_delta <= 15
                assert report.snapshot.temperature == before.temperature + report.temperature_delta
        assert driver.cycles == 200

    def test_invalid_range(self, engine):
        with pytest.raises(ValueError):
            TemperatureDriver(engine, min_delta=5, max_delta=-5)

    def test_logs_explosion(self, caplog):
        engine = make_engine(mass=50, temperature=293)
        driver = TemperatureDriver(engine, rng=random.Random(1))
        with caplog.at_level("WARNING"):
            driver.run_once()
        assert "exploded" in caplog.text

    def test_background_thread_runs_cycles(self, engine):
        driver = TemperatureDriver(engine, period=0.01, rng=random.Random(3))
        driver.start()
        assert driver.is_running
        try:
            deadline = threading.Event()
            for _ in range(200):
                if driver.cycles >= 3:
                    break
                deadline.wait(0.01)
        finally:
            driver.stop(timeout=2)
        assert driver.cycles >= 3
        assert not driver.is_running

    def test_start_twice_is_noop(self, engine):
        driver = TemperatureDriver(engine, period=10)
        driver.start()
        thread = driver._thread
        driver.start()
        assert driver._thread is thread
        driver.stop(timeout=2)


# =============================================================================
# CONCURRENCY
# =============================================================================


class TestConcurrency:
    """Tests for lock-serialized access."""

    def test_concurrent_increases_all_applied(self):
        """Every accepted increase is applied exactly once."""
        engine = make_engine(mass=0.0, temperature=1.0)  # pressure stays tiny
        threads = [
            threading.Thread(target=lambda: [engine.increase_mass(1) for _ in range(100)])
            for _ in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert engine.snapshot().mass == 800.0

    def test_reads_never_see_partial_mass(self):
        """Readers only ever observe whole multiples of the increment."""
        engine = make_engine(mass=0.0, temperature=22.4)  # pressure == mass
        seen: list[float] = []
        stop = threading.Event()

        def writer():
            for _ in range(500):
                engine.increase_mass(3)
            stop.set()

        def reader():
            while not stop.is_set():
                seen.append(engine.get_pressure())

        threads = [threading.Thread(target=writer), threading.Thread(target=reader)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # pressure stays below 100 only for the first 34 increments
        assert all(round(p, 6) % 3 == 0 for p in seen)
