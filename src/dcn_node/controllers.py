"""Lifecycle and CLI controllers for the compute node."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from dcn_node.compute.kernel import encode_png, render, render_png
from dcn_node.config import Settings, WorkerSettings
from dcn_node.coordinator.client import CoordinatorClient
from dcn_node.coordinator.outcomes import (
    AvailabilityFailed,
    AvailabilityOutcome,
    Registered,
    RegisterOutcome,
)
from dcn_node.coordinator.specs import detect_compute_specs
from dcn_node.models import (
    ComputeSpecs,
    NodeSnapshot,
    PreconditionError,
    RenderJob,
    RunState,
    WorkerState,
)
from dcn_node.worker.loop import CoordinatorApi, Renderer, TaskWorker, WorkerRunSummary
from dcn_node.worker.status import NodeStatus

logger = logging.getLogger(__name__)

_MISSING_NODE_ID = (
    "Node id is not set. Run `dcn-node register --name <name>` and pass --node-id "
    "or set DCN_NODE_ID."
)
_WAIT_POLL_SECONDS = 0.2


class RegistrationError(RuntimeError):
    """Coordinator did not confirm the node registration."""


class NodeApi(CoordinatorApi, Protocol):
    """Full coordinator surface used by the lifecycle controller."""

    def register_node(self, name: str, specs: ComputeSpecs | None = None) -> RegisterOutcome:
        """Register the node and return the registration outcome."""

    def update_availability(self, node_id: str, *, available: bool) -> AvailabilityOutcome:
        """Report whether the node currently accepts work."""


class LifecycleController:
    """Owns the node identity and run state, and drives the task worker.

    The worker never reads this object's fields directly; it receives a
    :class:`NodeSnapshot` per iteration through :meth:`snapshot`.
    """

    def __init__(
        self,
        *,
        client: NodeApi,
        status: NodeStatus,
        node_id: str = "",
        worker_settings: WorkerSettings | None = None,
        renderer: Renderer = render_png,
        report_availability: bool = True,
    ) -> None:
        ws = worker_settings or WorkerSettings()
        self.client = client
        self.status = status
        self.report_availability = report_availability
        self._lock = threading.Lock()
        self._node_id = node_id.strip()
        self._run_state = RunState.STOPPED
        self.worker = TaskWorker(
            client=client,
            snapshot_provider=self.snapshot,
            status=status,
            retry_delay_seconds=ws.retry_delay_seconds,
            max_iterations=ws.max_iterations,
            stop_timeout_seconds=ws.stop_timeout_seconds,
            renderer=renderer,
        )

    def snapshot(self) -> NodeSnapshot:
        with self._lock:
            return NodeSnapshot(node_id=self._node_id, run_state=self._run_state)

    @property
    def run_state(self) -> RunState:
        with self._lock:
            return self._run_state

    def set_node_id(self, node_id: str) -> None:
        with self._lock:
            self._node_id = node_id.strip()

    def register(self, name: str, specs: ComputeSpecs | None = None) -> RegisterOutcome:
        """Register with the coordinator and adopt the issued node id."""

        outcome = self.client.register_node(name, specs)
        if isinstance(outcome, Registered):
            self.set_node_id(outcome.node_id)
            self.status.publish(f"Node ID received: {outcome.node_id}")
        else:
            self.status.publish(outcome.detail, level="error")
        return outcome

    def resume(self, *, max_tasks: int | None = None) -> bool:
        """Switch to running and start the worker loop."""

        with self._lock:
            self._run_state = RunState.RUNNING
        if not self.worker.start(max_tasks=max_tasks):
            with self._lock:
                self._run_state = RunState.STOPPED
            return False
        self.status.publish("Running state changed to running")
        self._report_availability(available=True)
        return True

    def pause(self) -> WorkerState:
        """Switch to stopped and wait for the worker loop to exit."""

        with self._lock:
            was_running = self._run_state is RunState.RUNNING
            self._run_state = RunState.STOPPED
        state = self.worker.stop()
        if was_running:
            self.status.publish("Running state changed to stopped")
            self._report_availability(available=False)
        return state

    def toggle(self) -> RunState:
        if self.run_state is RunState.RUNNING:
            self.pause()
        else:
            self.resume()
        return self.run_state

    def shutdown(self) -> WorkerState:
        return self.pause()

    def reset(self) -> WorkerState:
        """Stop the node, forget its identity and start a fresh log."""

        state = self.pause()
        self.set_node_id("")
        self.status.clear()
        self.status.publish("Node has been reset to default settings.")
        return state

    def _report_availability(self, *, available: bool) -> None:
        if not self.report_availability:
            return
        node_id = self.snapshot().node_id
        if not node_id:
            return
        outcome = self.client.update_availability(node_id, available=available)
        if isinstance(outcome, AvailabilityFailed):
            logger.warning("%s", outcome.detail)


@dataclass(slots=True)
class RegisterCommand:
    """CLI input for node registration."""

    name: str | None
    cpu: str | None = None
    gpu: str | None = None
    cores: int | None = None
    ram: str | None = None


@dataclass(slots=True)
class RunWorkerCommand:
    """CLI input for the long-running worker loop."""

    node_id: str | None
    max_tasks: int | None = None
    retry_delay_seconds: float | None = None


@dataclass(slots=True)
class RunOnceCommand:
    """CLI input for a single fetch/compute/submit pass."""

    node_id: str | None


@dataclass(slots=True)
class RenderCommand:
    """CLI input for an offline render."""

    job: RenderJob
    output_path: Path
    max_iterations: int


class NodeCliController:
    """Coordinates registration, worker, and render CLI operations."""

    def __init__(
        self,
        *,
        settings_loader: Callable[[], Settings] | None = None,
        client_factory: Callable[[Settings], CoordinatorClient] | None = None,
    ) -> None:
        self._settings_loader = settings_loader
        self._client_factory = client_factory or _default_client

    def register(self, command: RegisterCommand) -> list[str]:
        settings = self._load_settings()
        name = (command.name or settings.node.name).strip()
        if not name:
            raise PreconditionError("Node name is required. Pass --name or set DCN_NODE_NAME.")
        specs = detect_compute_specs(
            cpu=command.cpu,
            gpu=command.gpu,
            cores=command.cores,
            ram=command.ram,
        )
        with self._client(settings) as client:
            controller = self._controller(settings, client, node_id="")
            outcome = controller.register(name, specs)
        if not isinstance(outcome, Registered):
            raise RegistrationError(outcome.detail)
        return [
            f"Node registered: name={name} node_id={outcome.node_id}",
            f"Compute specs: cpu={specs.cpu} gpu={specs.gpu} "
            f"cores={specs.cores} ram={specs.ram}",
            f"Export it for later runs: DCN_NODE_ID={outcome.node_id}",
        ]

    def run_worker(self, command: RunWorkerCommand) -> list[str]:
        settings = self._load_settings()
        if command.retry_delay_seconds is not None:
            settings.worker.retry_delay_seconds = command.retry_delay_seconds
        node_id = _resolve_node_id(command.node_id, settings)
        with self._client(settings) as client:
            controller = self._controller(settings, client, node_id=node_id)
            if not controller.resume(max_tasks=command.max_tasks):
                raise PreconditionError(_MISSING_NODE_ID)
            stop_requested = threading.Event()
            with _signal_handlers(stop_requested.set):
                while not stop_requested.is_set():
                    if controller.worker.wait(timeout=_WAIT_POLL_SECONDS):
                        break
            final_state = controller.shutdown()
            summary = controller.worker.last_summary

        return [_format_summary(summary, final_state)]

    def run_once(self, command: RunOnceCommand) -> list[str]:
        settings = self._load_settings()
        node_id = _resolve_node_id(command.node_id, settings)
        with self._client(settings) as client:
            controller = self._controller(settings, client, node_id=node_id)
            outcome = controller.worker.run_iteration(
                NodeSnapshot(node_id=node_id, run_state=RunState.RUNNING),
            )
            logs = controller.status.snapshot().logs

        lines = [entry.format() for entry in logs]
        lines.append(f"Iteration outcome: {outcome.value}")
        return lines

    def render(self, command: RenderCommand) -> list[str]:
        raster = render(command.job, command.max_iterations)
        png = encode_png(raster)
        command.output_path.parent.mkdir(parents=True, exist_ok=True)
        command.output_path.write_bytes(png)
        return [
            f"Rendered {command.job.width}x{command.job.height} image "
            f"(max_iterations={command.max_iterations}, "
            f"black_pixels={int((raster == 0).sum())}) to {command.output_path}",
        ]

    def _load_settings(self) -> Settings:
        loader = self._settings_loader or Settings.from_env
        settings = loader()
        settings.validate_for_worker()
        return settings

    @contextmanager
    def _client(self, settings: Settings) -> Iterator[CoordinatorClient]:
        client = self._client_factory(settings)
        try:
            yield client
        finally:
            client.close()

    def _controller(
        self,
        settings: Settings,
        client: NodeApi,
        *,
        node_id: str,
    ) -> LifecycleController:
        return LifecycleController(
            client=client,
            status=NodeStatus(max_logs=settings.worker.max_log_entries),
            node_id=node_id,
            worker_settings=settings.worker,
        )


def _default_client(settings: Settings) -> CoordinatorClient:
    return CoordinatorClient(
        settings.coordinator.base_url,
        timeout_seconds=settings.coordinator.request_timeout_seconds,
        max_retries=settings.coordinator.max_retries,
    )


def _format_summary(summary: WorkerRunSummary, state: WorkerState) -> str:
    line = (
        "Worker summary: "
        f"processed={summary.processed} succeeded={summary.succeeded} "
        f"failed={summary.failed} idle_polls={summary.idle_polls} "
        f"state={state.value}"
    )
    if state is WorkerState.STOPPING:
        line = f"{line} (current task still finishing, counters are partial)"
    return line


def _resolve_node_id(override: str | None, settings: Settings) -> str:
    node_id = (override or settings.node.node_id).strip()
    if not node_id:
        raise PreconditionError(_MISSING_NODE_ID)
    return node_id


@contextmanager
def _signal_handlers(on_stop: Callable[[], None]) -> Iterator[None]:
    if not hasattr(signal, "SIGINT"):
        yield
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        logger.info("Received %s, stopping task loop", name)
        on_stop()

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except ValueError:
        # Signal handlers can only be installed in main thread.
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)
