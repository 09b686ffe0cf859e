"""Task worker: fetch one task, render it, upload the result, repeat."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from dcn_node.compute.kernel import DEFAULT_MAX_ITERATIONS, render_png
from dcn_node.coordinator.outcomes import (
    FetchFailed,
    FetchOutcome,
    NoTaskAvailable,
    SubmitAccepted,
    SubmitOutcome,
    TaskFetched,
)
from dcn_node.models import NodeSnapshot, RenderJob, ResultArtifact, WorkerState
from dcn_node.worker.status import NodeStatus

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY_SECONDS = 10.0
DEFAULT_STOP_TIMEOUT_SECONDS = 15.0


class CoordinatorApi(Protocol):
    """Coordinator calls the worker depends on."""

    def fetch_task(self, node_id: str) -> FetchOutcome:
        """Return the next task outcome for ``node_id``."""

    def submit_result(self, node_id: str, artifact: ResultArtifact) -> SubmitOutcome:
        """Upload ``artifact`` and return the submit outcome."""


Renderer = Callable[[RenderJob, int], bytes]
SnapshotProvider = Callable[[], NodeSnapshot]


class IterationOutcome(str, Enum):
    """How one fetch/compute/submit pass ended."""

    COMPLETED = "completed"
    NO_TASK = "no_task"
    FAILED = "failed"


_DELAYED_OUTCOMES = frozenset({IterationOutcome.NO_TASK, IterationOutcome.FAILED})


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate loop counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    idle_polls: int = 0

    def record(self, outcome: IterationOutcome, *, fetched: bool) -> None:
        if fetched:
            self.processed += 1
        if outcome is IterationOutcome.COMPLETED:
            self.succeeded += 1
        elif outcome is IterationOutcome.FAILED:
            self.failed += 1
        else:
            self.idle_polls += 1


class TaskWorker:
    """Runs the node's task loop on a cancellable background thread.

    The worker never holds more than one fetched task: the next fetch starts
    only after the previous task was submitted or abandoned. Each iteration
    works on a :class:`NodeSnapshot` taken at its start, and every UI-visible
    change goes through the :class:`NodeStatus` channel.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        client: CoordinatorApi,
        snapshot_provider: SnapshotProvider,
        status: NodeStatus,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        stop_timeout_seconds: float = DEFAULT_STOP_TIMEOUT_SECONDS,
        renderer: Renderer = render_png,
    ) -> None:
        self.client = client
        self.status = status
        self.retry_delay_seconds = retry_delay_seconds
        self.max_iterations = max_iterations
        self.stop_timeout_seconds = stop_timeout_seconds
        self._snapshot_provider = snapshot_provider
        self._renderer = renderer
        self._lock = threading.Lock()
        self._state = WorkerState.IDLE
        self._thread: threading.Thread | None = None
        self._cancel: threading.Event | None = None
        self._last_summary = WorkerRunSummary()

    @property
    def state(self) -> WorkerState:
        with self._lock:
            return self._state

    @property
    def last_summary(self) -> WorkerRunSummary:
        return self._last_summary

    def start(self, *, max_tasks: int | None = None) -> bool:
        """Start the loop thread; returns False when the loop cannot start."""

        snapshot = self._snapshot_provider()
        refusal: str | None = None
        with self._lock:
            if self._state is WorkerState.LOOPING:
                return True
            if self._state is WorkerState.STOPPING:
                refusal = "Cannot start task loop: previous loop is still stopping."
            elif not snapshot.node_id:
                refusal = "Cannot start task loop: node id is not set."
            else:
                cancel = threading.Event()
                summary = WorkerRunSummary()
                thread = threading.Thread(
                    target=self._thread_main,
                    args=(cancel, max_tasks, summary),
                    daemon=True,
                    name="dcn-task-worker",
                )
                self._cancel = cancel
                self._thread = thread
                self._last_summary = summary
                self._state = WorkerState.LOOPING
                thread.start()

        if refusal is not None:
            self.status.publish(refusal, level="error")
            return False
        logger.info("Task loop started for node %s", snapshot.node_id)
        return True

    def stop(self, *, timeout: float | None = None) -> WorkerState:
        """Cancel the loop and wait up to the grace period for it to exit."""

        with self._lock:
            thread = self._thread
            if thread is None or self._cancel is None:
                return self._state
            self._cancel.set()
            self._state = WorkerState.STOPPING

        if thread is not threading.current_thread():
            thread.join(timeout=self.stop_timeout_seconds if timeout is None else timeout)
            if thread.is_alive():
                logger.warning("Task loop is still finishing its current task")

        return self.state

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the loop thread exits; returns True if it has."""

        with self._lock:
            thread = self._thread
        if thread is None:
            return True
        thread.join(timeout=timeout)
        return not thread.is_alive()

    def run_loop(
        self,
        cancel: threading.Event,
        *,
        max_tasks: int | None = None,
        summary: WorkerRunSummary | None = None,
    ) -> WorkerRunSummary:
        """Iterate until cancelled, paused, or ``max_tasks`` tasks were fetched.

        Counters are recorded into ``summary`` as each pass ends, so a caller
        holding it sees progress while the loop is still running.
        """

        if summary is None:
            summary = WorkerRunSummary()
        while not cancel.is_set():
            if max_tasks is not None and summary.processed >= max_tasks:
                break
            snapshot = self._snapshot_provider()
            if not snapshot.is_running:
                break
            if not snapshot.node_id:
                self.status.publish("Stopping task loop: node id is not set.", level="error")
                break

            outcome, fetched = self._iterate(snapshot)
            summary.record(outcome, fetched=fetched)
            if outcome in _DELAYED_OUTCOMES and cancel.wait(self.retry_delay_seconds):
                break
        return summary

    def run_iteration(self, snapshot: NodeSnapshot) -> IterationOutcome:
        """Run one fetch/compute/submit pass without the retry delay."""

        outcome, _ = self._iterate(snapshot)
        return outcome

    def _thread_main(
        self,
        cancel: threading.Event,
        max_tasks: int | None,
        summary: WorkerRunSummary,
    ) -> None:
        try:
            self.run_loop(cancel, max_tasks=max_tasks, summary=summary)
        finally:
            with self._lock:
                if self._thread is threading.current_thread():
                    self._thread = None
                    self._cancel = None
                    self._state = WorkerState.IDLE
            logger.info("Task loop exited")

    def _iterate(self, snapshot: NodeSnapshot) -> tuple[IterationOutcome, bool]:
        fetched = False
        try:
            outcome = self.client.fetch_task(snapshot.node_id)
            if isinstance(outcome, NoTaskAvailable):
                self.status.publish(
                    f"No tasks available, waiting {self.retry_delay_seconds:g} seconds...",
                    processing=False,
                )
                return IterationOutcome.NO_TASK, fetched
            if isinstance(outcome, FetchFailed):
                self.status.publish(
                    f"{outcome.detail} ({outcome.kind.value}), "
                    f"retrying in {self.retry_delay_seconds:g} seconds...",
                    level="error",
                    processing=False,
                )
                return IterationOutcome.FAILED, fetched
            if not isinstance(outcome, TaskFetched):
                raise TypeError(f"Unexpected fetch outcome: {outcome!r}")

            fetched = True
            return self._process(snapshot.node_id, outcome), fetched
        except Exception as error:
            logger.exception("Task iteration failed")
            self.status.publish(
                f"Failed to process task - {error}",
                level="error",
                processing=False,
            )
            return IterationOutcome.FAILED, fetched

    def _process(self, node_id: str, fetched: TaskFetched) -> IterationOutcome:
        assignment = fetched.assignment
        task_id = assignment.task_id
        self.status.publish(f"Task data received for task {task_id}...", processing=True)

        image_bytes = self._renderer(assignment.job, self.max_iterations)
        self.status.publish(f"Image successfully created for task {task_id}...")

        artifact = ResultArtifact.build(
            node_id=node_id,
            assignment=assignment,
            image_bytes=image_bytes,
        )
        self.status.publish(f"About to stream image for task {task_id}...")
        result = self.client.submit_result(node_id, artifact)
        if isinstance(result, SubmitAccepted):
            self.status.publish(
                f"Successfully processed and submitted task {task_id} "
                f"(image_id={result.result_id})",
                processing=False,
            )
            return IterationOutcome.COMPLETED

        self.status.publish(
            f"{result.detail} for task {task_id} ({result.kind.value}), "
            f"retrying in {self.retry_delay_seconds:g} seconds...",
            level="error",
            processing=False,
        )
        return IterationOutcome.FAILED
