from __future__ import annotations

from collections.abc import Callable
import logging
import threading

from labelwatch.observability import log_event, log_warning_event


LOGGER = logging.getLogger("labelwatch.scheduler")


class SingleFlight:
    """Process-wide flag that is set while a poll cycle runs.

    A caller that finds it set is turned away; it does not wait or queue.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active = False

    def try_acquire(self) -> bool:
        with self._lock:
            if self._active:
                return False
            self._active = True
            return True

    def release(self) -> None:
        with self._lock:
            self._active = False

    def run(self, fn: Callable[[], object]) -> bool:
        """Run ``fn`` unless another run is in flight. Returns whether it ran."""
        if not self.try_acquire():
            return False
        try:
            fn()
        finally:
            self.release()
        return True


class PollScheduler:
    """Fires ``cycle`` every ``interval_seconds`` on a worker thread.

    A tick that lands while the previous cycle is still running is dropped.
    """

    def __init__(
        self,
        cycle: Callable[[], object],
        *,
        interval_seconds: float,
        guard: SingleFlight | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        self._cycle = cycle
        self._interval_seconds = interval_seconds
        self._guard = guard or SingleFlight()
        self._stop_event = stop_event or threading.Event()
        self._workers: list[threading.Thread] = []

    def stop(self) -> None:
        self._stop_event.set()

    def tick(self) -> bool:
        try:
            ran = self._guard.run(self._cycle)
        except Exception as exc:  # noqa: BLE001
            log_warning_event(
                LOGGER,
                "poll_cycle_crashed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return True
        if not ran:
            log_event(LOGGER, "poll_tick_skipped", reason="cycle_in_progress")
        return ran

    def run_forever(self) -> None:
        """Fire ticks until :meth:`stop` is called.

        A normal stop waits for the running cycle to finish. On Ctrl-C the loop stops
        at once and re-raises; a busy worker is a daemon thread and dies with the
        process, leaving its item unrecorded for the next run.
        """
        log_event(LOGGER, "scheduler_started", interval_seconds=self._interval_seconds)
        try:
            while True:
                self._fire()
                if self._stop_event.wait(self._interval_seconds):
                    break
        except KeyboardInterrupt:
            self.stop()
            busy = [worker for worker in self._workers if worker.is_alive()]
            log_warning_event(LOGGER, "scheduler_interrupted", busy_workers=len(busy))
            raise
        self._join_workers()
        log_event(LOGGER, "scheduler_stopped")

    def _fire(self) -> None:
        self._workers = [worker for worker in self._workers if worker.is_alive()]
        worker = threading.Thread(target=self.tick, name="labelwatch-poll", daemon=True)
        self._workers.append(worker)
        worker.start()

    def _join_workers(self) -> None:
        for worker in self._workers:
            worker.join()
        self._workers = []
