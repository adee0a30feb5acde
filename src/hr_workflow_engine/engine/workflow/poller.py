"""Background polling for delay steps whose wake-up time has passed."""

from __future__ import annotations

import logging
import threading

from hr_workflow_engine.engine.collaborators import ExecutionStore

from .coordinator import ExecutionCoordinator
from .state_machine import ExecutionStatus
from .steps import Clock, utc_now

logger = logging.getLogger(__name__)


class DelayResumptionPoller:
    """Hands due delay steps back to the coordinator.

    One failing resume is logged and skipped; it never stops the rest of the
    tick, and a failing tick never stops the loop.
    """

    def __init__(
        self,
        *,
        coordinator: ExecutionCoordinator,
        executions: ExecutionStore,
        clock: Clock = utc_now,
    ) -> None:
        self._coordinator = coordinator
        self._executions = executions
        self._clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def tick(self) -> int:
        """Resume every execution with a due delay step. Returns how many resumed."""

        due = self._executions.find_due_delay_steps(self._clock())
        if due:
            logger.info("Found due delay steps", extra={"count": len(due)})

        resumed = 0
        for record in due:
            fields = {"execution_id": record.execution_id, "step_execution_id": record.id}
            try:
                execution = self._executions.get_execution(record.execution_id)
                if execution is None or execution.status is not ExecutionStatus.RUNNING:
                    logger.info("Skipping delay step; execution not running", extra=fields)
                    continue
                self._coordinator.resume(record.execution_id)
                resumed += 1
            except Exception:
                logger.exception("Failed to resume delayed step", extra=fields)
        return resumed

    def run_forever(self, interval_seconds: float) -> None:
        """Tick immediately, then every `interval_seconds` until `stop()`."""

        logger.info("Delay poller started", extra={"interval_seconds": interval_seconds})
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("Delay poller tick failed")
            self._stop.wait(interval_seconds)
        logger.info("Delay poller stopped")

    def start(self, interval_seconds: float) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self._thread = threading.Thread(
            target=self.run_forever,
            name="workflow-delay-poller",
            daemon=True,
            kwargs={"interval_seconds": interval_seconds},
        )
        self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
