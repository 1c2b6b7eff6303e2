"""
Gas container state engine.

Holds the single authoritative container state of a server process and
serializes every read and mutation through one lock. Mass adjustments only
observe the destroyed flag; the periodic driver cycle (``advance``) is the
only path that destroys or resets the container.

Nothing inside the lock performs I/O. Callers log from the returned values
after the lock is released.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

# Ideal gas approximation: pressure = mass * temperature / 22.4
MOLAR_VOLUME = 22.4

INITIAL_TEMPERATURE = 293.0
INITIAL_MASS = 10.0

REASON_DESTROYED = "Container destroyed."
REASON_PRESSURE_TOO_HIGH = "Pressure too high to add mass."
REASON_PRESSURE_TOO_LOW = "Pressure too low to remove mass."


def compute_pressure(mass: float, temperature: float) -> float:
    """Pressure derived from mass and temperature."""
    return mass * temperature / MOLAR_VOLUME


# =============================================================================
# STATE TYPES
# =============================================================================


@dataclass(frozen=True, slots=True)
class ContainerLimits:
    """Pressure thresholds, fixed for the lifetime of the process.

    Attributes:
        lower_limit: Mass may be added only below this pressure
        upper_limit: Mass may be removed only above this pressure
        explosion_limit: Container explodes above this pressure
        implosion_limit: Container implodes below this pressure
    """

    lower_limit: float = 100.0
    upper_limit: float = 150.0
    explosion_limit: float = 200.0
    implosion_limit: float = 10.0

    def __post_init__(self) -> None:
        if not (
            self.implosion_limit
            < self.lower_limit
            < self.upper_limit
            < self.explosion_limit
        ):
            raise ValueError(
                "Container limits must satisfy implosion < lower < upper < explosion, "
                f"got {self.implosion_limit} / {self.lower_limit} / "
                f"{self.upper_limit} / {self.explosion_limit}"
            )


@dataclass(slots=True)
class ContainerState:
    """Mutable container state. Owned by exactly one engine."""

    temperature: float = INITIAL_TEMPERATURE
    mass: float = INITIAL_MASS
    destroyed: bool = False

    @property
    def pressure(self) -> float:
        return compute_pressure(self.mass, self.temperature)


@dataclass(frozen=True, slots=True)
class ContainerSnapshot:
    """Consistent copy of the state taken under the engine lock."""

    temperature: float
    mass: float
    pressure: float
    destroyed: bool

    def to_dict(self) -> dict[str, float | bool]:
        """Convert to dictionary for display."""
        return {
            "temperature": self.temperature,
            "mass": self.mass,
            "pressure": self.pressure,
            "destroyed": self.destroyed,
        }


@dataclass(frozen=True, slots=True)
class MassAdjustmentResult:
    """Outcome of a mass adjustment request.

    A rejection is a normal result, not an error.
    """

    success: bool
    failure_reason: str | None = None

    @classmethod
    def ok(cls) -> "MassAdjustmentResult":
        return cls(success=True)

    @classmethod
    def rejected(cls, reason: str) -> "MassAdjustmentResult":
        return cls(success=False, failure_reason=reason)


class CycleOutcome(str, Enum):
    """What a single driver cycle did to the container."""

    ADJUSTED = "adjusted"  # Temperature changed, container intact
    IMPLODED = "imploded"  # Pressure fell below the implosion limit
    EXPLODED = "exploded"  # Pressure rose above the explosion limit
    RESET = "reset"  # Destroyed container restored to initial state


@dataclass(frozen=True, slots=True)
class CycleReport:
    """Result of one driver cycle, for logging outside the lock."""

    outcome: CycleOutcome
    temperature_delta: int | None
    snapshot: ContainerSnapshot

    @property
    def destroyed_now(self) -> bool:
        return self.outcome in (CycleOutcome.IMPLODED, CycleOutcome.EXPLODED)


# =============================================================================
# ENGINE
# =============================================================================


class ContainerStateEngine:
    """
    Thread-safe gas container.

    Example:
        engine = ContainerStateEngine()
        result = engine.increase_mass(2.0)
        if not result.success:
            print(result.failure_reason)
    """

    def __init__(
        self,
        limits: ContainerLimits | None = None,
        initial_temperature: float = INITIAL_TEMPERATURE,
        initial_mass: float = INITIAL_MASS,
        state: ContainerState | None = None,
    ):
        """Initialize the engine.

        Args:
            limits: Pressure thresholds
            initial_temperature: Temperature restored on reset
            initial_mass: Mass restored on reset
            state: Starting state (defaults to the initial values)
        """
        self.limits = limits or ContainerLimits()
        self._initial_temperature = initial_temperature
        self._initial_mass = initial_mass
        self._state = state or ContainerState(
            temperature=initial_temperature, mass=initial_mass
        )
        self._lock = threading.Lock()

    @property
    def initial_temperature(self) -> float:
        return self._initial_temperature

    @property
    def initial_mass(self) -> float:
        return self._initial_mass

    # =========================================================================
    # READS
    # =========================================================================

    def get_pressure(self) -> float:
        """Current pressure."""
        with self._lock:
            return self._state.pressure

    def is_destroyed(self) -> bool:
        """Whether the container is currently destroyed."""
        with self._lock:
            return self._state.destroyed

    def snapshot(self) -> ContainerSnapshot:
        """Consistent copy of the full state."""
        with self._lock:
            return self._snapshot_locked()

    def _snapshot_locked(self) -> ContainerSnapshot:
        return ContainerSnapshot(
            temperature=self._state.temperature,
            mass=self._state.mass,
            pressure=self._state.pressure,
            destroyed=self._state.destroyed,
        )

    # =========================================================================
    # MASS ADJUSTMENTS
    # =========================================================================

    def increase_mass(self, amount: float) -> MassAdjustmentResult:
        """Add mass if the container is intact and pressure is below the lower limit.

        The limit is checked against the pressure before the change only.
        """
        with self._lock:
            if self._state.destroyed:
                result = MassAdjustmentResult.rejected(REASON_DESTROYED)
            elif self._state.pressure < self.limits.lower_limit:
                self._state.mass += amount
                result = MassAdjustmentResult.ok()
            else:
                result = MassAdjustmentResult.rejected(REASON_PRESSURE_TOO_HIGH)
            mass = self._state.mass

        if result.success:
            logger.info(f"Mass increased by {amount} units. New mass: {mass} units.")
        else:
            logger.info(f"IncreaseMass failed: {result.failure_reason}")
        return result

    def decrease_mass(self, amount: float) -> MassAdjustmentResult:
        """Remove mass if the container is intact and pressure is above the upper limit.

        The limit is checked against the pressure before the change only.
        """
        with self._lock:
            if self._state.destroyed:
                result = MassAdjustmentResult.rejected(REASON_DESTROYED)
            elif self._state.pressure > self.limits.upper_limit:
                self._state.mass -= amount
                result = MassAdjustmentResult.ok()
            else:
                result = MassAdjustmentResult.rejected(REASON_PRESSURE_TOO_LOW)
            mass = self._state.mass

        if result.success:
            logger.info(f"Mass decreased by {amount} units. New mass: {mass} units.")
        else:
            logger.info(f"DecreaseMass failed: {result.failure_reason}")
        return result

    # =========================================================================
    # DRIVER CYCLE
    # =========================================================================

    def reset(self) -> None:
        """Restore initial mass and temperature and clear the destroyed flag."""
        with self._lock:
            self._reset_locked()

    def _reset_locked(self) -> None:
        self._state.mass = self._initial_mass
        self._state.temperature = self._initial_temperature
        self._state.destroyed = False

    def _check_limits_locked(self) -> CycleOutcome | None:
        pressure = self._state.pressure
        if pressure < self.limits.implosion_limit:
            self._state.destroyed = True
            return CycleOutcome.IMPLODED
        if pressure > self.limits.explosion_limit:
            self._state.destroyed = True
            return CycleOutcome.EXPLODED
        return None

    def advance(self, draw_delta: Callable[[], int]) -> CycleReport:
        """Run one driver cycle atomically.

        A container destroyed on a previous cycle is reset. Otherwise the
        current pressure is checked first, so mass adjustments made since the
        last cycle that left the safe band destroy the container before any
        temperature change; if it is still intact the temperature is perturbed
        by ``draw_delta()`` and the limits are checked again.

        Args:
            draw_delta: Returns the temperature change for this cycle

        Returns:
            CycleReport describing what happened
        """
        with self._lock:
            if self._state.destroyed:
                self._reset_locked()
                return CycleReport(CycleOutcome.RESET, None, self._snapshot_locked())

            outcome = self._check_limits_locked()
            if outcome is not None:
                return CycleReport(outcome, None, self._snapshot_locked())

            delta = draw_delta()
            self._state.temperature += delta
            outcome = self._check_limits_locked() or CycleOutcome.ADJUSTED
            return CycleReport(outcome, delta, self._snapshot_locked())
