"""Execution substrate boundary: where phase runs are started and tracked.

The router only talks to ``ExecutionSubstrate``. ``LocalSubstrate`` runs
phases on an in-process thread pool; a durable workflow engine can be plugged
in by implementing the same three calls.
"""

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import BaseModel, Field

from flowgate.core.errors import RunAlreadyExistsError
from flowgate.core.workflow.taxonomy import Phase

logger = logging.getLogger(__name__)

PhaseCallable = Callable[[Phase, str, Optional[str], Dict[str, Any]], Any]


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def make_run_id(phase: Phase, ticket_id: str) -> str:
    """Deterministic run id: one live run per (phase, ticket)."""
    return f"{phase.value}-{ticket_id}"


class RunHandle(BaseModel):
    """Reference to a phase run started on a substrate."""

    run_id: str
    phase: Phase
    ticket_id: str
    project_id: Optional[str] = None
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ExecutionSubstrate(ABC):
    """Interface of an execution substrate."""

    @abstractmethod
    def start_phase(
        self,
        phase: Phase,
        ticket_id: str,
        project_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> RunHandle:
        """Start a phase run.

        Raises:
            RunAlreadyExistsError: If a run with the same id is still live
        """

    @abstractmethod
    def describe(self, handle: RunHandle) -> RunStatus:
        """Return the current status of a run."""

    @abstractmethod
    def cancel(self, handle: RunHandle) -> bool:
        """Request cancellation; returns True if the run will not execute."""


class LocalSubstrate(ExecutionSubstrate):
    """Thread-pool substrate for a single process.

    Runs are keyed by ``make_run_id``. Starting a run whose id is still
    running raises ``RunAlreadyExistsError``; a finished run can be started
    again under the same id. Only the ``keep_finished`` most recently
    started finished runs are remembered.
    """

    def __init__(
        self, runner: PhaseCallable, max_workers: int = 4, keep_finished: int = 100
    ) -> None:
        self._runner = runner
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="flowgate-phase"
        )
        self._runs: Dict[str, Tuple[RunHandle, Future]] = {}
        self._lock = threading.Lock()
        self._keep_finished = keep_finished

    def start_phase(
        self,
        phase: Phase,
        ticket_id: str,
        project_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> RunHandle:
        run_id = make_run_id(phase, ticket_id)
        with self._lock:
            existing = self._runs.get(run_id)
            if existing is not None and not existing[1].done():
                raise RunAlreadyExistsError(existing[0])

            handle = RunHandle(
                run_id=run_id, phase=phase, ticket_id=ticket_id, project_id=project_id
            )
            future = self._executor.submit(
                self._execute, handle, dict(context or {})
            )
            # Re-insert so a replaced run moves to the newest position
            self._runs.pop(run_id, None)
            self._runs[run_id] = (handle, future)
            self._prune(run_id)

        logger.info("Started run %s", run_id)
        return handle

    def _prune(self, current: str) -> None:
        """Forget the oldest finished runs beyond ``keep_finished``; caller holds the lock."""
        finished = [
            run_id
            for run_id, (_, future) in self._runs.items()
            if run_id != current and future.done()
        ]
        for run_id in finished[: max(0, len(finished) - self._keep_finished)]:
            del self._runs[run_id]

    def _execute(self, handle: RunHandle, context: Dict[str, Any]) -> Any:
        try:
            result = self._runner(handle.phase, handle.ticket_id, handle.project_id, context)
        except Exception:
            logger.exception("Run %s failed", handle.run_id)
            raise
        logger.info("Run %s completed", handle.run_id)
        return result

    def get_handle(self, run_id: str) -> Optional[RunHandle]:
        with self._lock:
            entry = self._runs.get(run_id)
        return entry[0] if entry else None

    def _future(self, handle: RunHandle) -> Future:
        with self._lock:
            entry = self._runs.get(handle.run_id)
        if entry is None:
            raise KeyError(f"Unknown run {handle.run_id}")
        return entry[1]

    @staticmethod
    def _status_of(future: Future) -> RunStatus:
        if future.cancelled():
            return RunStatus.CANCELLED
        if not future.done():
            return RunStatus.RUNNING
        if future.exception() is not None:
            return RunStatus.FAILED
        return RunStatus.COMPLETED

    def describe(self, handle: RunHandle) -> RunStatus:
        return self._status_of(self._future(handle))

    def cancel(self, handle: RunHandle) -> bool:
        """Cancel a run that has not started executing yet."""
        cancelled = self._future(handle).cancel()
        if cancelled:
            logger.info("Cancelled run %s", handle.run_id)
        return cancelled

    def wait(self, handle: RunHandle, timeout: Optional[float] = None) -> RunStatus:
        """Block until the run finishes (or ``timeout`` elapses) and return its status."""
        future = self._future(handle)
        try:
            future.exception(timeout=timeout)
        except FutureTimeoutError:
            return RunStatus.RUNNING
        except CancelledError:
            return RunStatus.CANCELLED
        return self._status_of(future)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
