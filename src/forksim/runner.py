"""Fixed-cadence driver that ticks the simulation engine."""

import logging
import threading
from collections.abc import Sequence
from queue import Empty, Queue

from forksim.engine import SimulationEngine
from forksim.models import TickResult

logger = logging.getLogger(__name__)

MIN_TICK_INTERVAL = 0.05


class SimulationRunner:
    """
    Drives a SimulationEngine from a background thread.

    Runs in a separate daemon thread, calls ``tick()`` once per interval and
    pushes every TickResult to a thread-safe Queue. The thread exits on its
    own once the run completes.
    """

    def __init__(
        self,
        update_queue: Queue[TickResult],
        tick_interval: float = 1.0,
        engine: SimulationEngine | None = None,
    ) -> None:
        """
        Initialize the SimulationRunner.

        Args:
            update_queue: Thread-safe queue to push tick results to.
            tick_interval: Delay between ticks (in seconds). Default 1.0s.
            engine: Engine to drive. A fresh one is created if omitted.
        """
        self._queue = update_queue
        self._tick_interval = max(MIN_TICK_INTERVAL, tick_interval)
        self._engine = engine if engine is not None else SimulationEngine()
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def engine(self) -> SimulationEngine:
        return self._engine

    @property
    def tick_interval(self) -> float:
        """Get the current tick interval."""
        return self._tick_interval

    @tick_interval.setter
    def tick_interval(self, value: float) -> None:
        """Set the tick interval."""
        self._tick_interval = max(MIN_TICK_INTERVAL, value)

    @property
    def is_running(self) -> bool:
        """Check if the ticking thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self, source_lines: Sequence[str]) -> None:
        """Initialize a run over ``source_lines`` and start ticking."""
        if self.is_running:
            return

        with self._lock:
            self._engine.initialize(source_lines)
            self._queue.put(self._engine.snapshot())

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._tick_loop,
            daemon=True,
            name="SimulationRunner",
        )
        self._thread.start()
        logger.debug("Runner started, interval %.2fs", self._tick_interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the ticking thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def reset(self) -> None:
        """Stop ticking, discard the run and any undelivered results."""
        self.stop()
        with self._lock:
            self._engine.reset()
            while True:
                try:
                    self._queue.get_nowait()
                except Empty:
                    break
            self._queue.put(self._engine.snapshot())
        logger.debug("Runner reset")

    def _tick_loop(self) -> None:
        """Main ticking loop running in the background thread."""
        # Wait one interval before each tick or until stop is requested
        while not self._stop_event.wait(timeout=self._tick_interval):
            try:
                with self._lock:
                    result = self._engine.tick()
            except Exception:
                logger.exception("Simulation tick failed; stopping runner")
                return

            self._queue.put(result)
            if result.complete:
                logger.debug("Runner finished after %d ticks", result.tick)
                return
