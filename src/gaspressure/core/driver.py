"""
Background temperature driver.

A single daemon thread that wakes every period, perturbs the container
temperature and lets the engine decide destruction and reset.
"""

import logging
import random
import threading

from gaspressure.core.container import ContainerStateEngine, CycleOutcome, CycleReport

logger = logging.getLogger(__name__)

DEFAULT_PERIOD_SECONDS = 2.0
DEFAULT_MIN_DELTA = -15
DEFAULT_MAX_DELTA = 15


class TemperatureDriver:
    """
    Periodic temperature perturbation for one container engine.

    Not reentrant: start() on a running driver is a no-op.

    Example:
        driver = TemperatureDriver(engine, period=2.0)
        driver.start()
        ...
        driver.stop()
    """

    def __init__(
        self,
        engine: ContainerStateEngine,
        period: float = DEFAULT_PERIOD_SECONDS,
        min_delta: int = DEFAULT_MIN_DELTA,
        max_delta: int = DEFAULT_MAX_DELTA,
        rng: random.Random | None = None,
    ):
        if min_delta > max_delta:
            raise ValueError(f"min_delta ({min_delta}) exceeds max_delta ({max_delta})")
        self.engine = engine
        self.period = period
        self.min_delta = min_delta
        self.max_delta = max_delta
        self._rng = rng or random.Random()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._cycles = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def cycles(self) -> int:
        """Number of completed cycles."""
        return self._cycles

    def _draw_delta(self) -> int:
        # Inclusive on both ends
        return self._rng.randint(self.min_delta, self.max_delta)

    def run_once(self) -> CycleReport:
        """Execute one cycle and log its outcome."""
        report = self.engine.advance(self._draw_delta)
        self._cycles += 1
        self._log_report(report)
        return report

    def _log_report(self, report: CycleReport) -> None:
        snap = report.snapshot
        if report.outcome == CycleOutcome.RESET:
            logger.info("Container destroyed. Resetting state.")
            return

        if report.temperature_delta is not None:
            logger.info(
                f"Temperature changed by {report.temperature_delta}K. "
                f"New temperature: {snap.temperature}K"
            )
        logger.info(f"Current pressure: {snap.pressure}")

        if report.outcome == CycleOutcome.IMPLODED:
            logger.warning("Pressure dropped below implosion limit. Container imploded!")
        elif report.outcome == CycleOutcome.EXPLODED:
            logger.warning("Pressure exceeded explosion limit. Container exploded!")

    def _run(self) -> None:
        while not self._stop.wait(self.period):
            try:
                self.run_once()
            except Exception:
                logger.exception("Temperature driver cycle failed")

    def start(self) -> None:
        """Start the background thread."""
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="gaspressure-temperature-driver", daemon=True
        )
        self._thread.start()
        logger.info(f"Temperature driver started (period: {self.period}s)")

    def stop(self, timeout: float | None = None) -> None:
        """Stop the background thread and wait for it to exit."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            logger.info("Temperature driver stopped")
