"""Shared test fixtures."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field

import pytest

from dcn_node.coordinator.outcomes import (
    AvailabilityOutcome,
    AvailabilityUpdated,
    FetchOutcome,
    NoTaskAvailable,
    Registered,
    RegisterOutcome,
    SubmitAccepted,
    SubmitOutcome,
)
from dcn_node.models import ComputeSpecs, NodeSnapshot, ResultArtifact, RunState

@dataclass
class FakeCoordinator:
    """Scripted in-memory coordinator that records every call."""

    fetch_script: list[FetchOutcome | Exception] = field(default_factory=list)
    submit_script: list[SubmitOutcome] = field(default_factory=list)
    default_fetch: FetchOutcome = field(default_factory=NoTaskAvailable)
    on_fetch: Callable[[int], None] | None = None
    calls: list[tuple[str, str]] = field(default_factory=list)
    submitted: list[ResultArtifact] = field(default_factory=list)
    availability: list[bool] = field(default_factory=list)
    fetched_event: threading.Event = field(default_factory=threading.Event)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def fetch_task(self, node_id: str) -> FetchOutcome:
        with self._lock:
            self.calls.append(("fetch", node_id))
            fetch_count = sum(1 for kind, _ in self.calls if kind == "fetch")
            item = self.fetch_script.pop(0) if self.fetch_script else self.default_fetch
        self.fetched_event.set()
        if self.on_fetch is not None:
            self.on_fetch(fetch_count)
        if isinstance(item, Exception):
            raise item
        return item

    def submit_result(self, node_id: str, artifact: ResultArtifact) -> SubmitOutcome:
        with self._lock:
            self.calls.append(("submit", node_id))
            self.submitted.append(artifact)
            if self.submit_script:
                return self.submit_script.pop(0)
        return SubmitAccepted(result_id=f"img-{artifact.task_id}")

    def register_node(self, name: str, specs: ComputeSpecs | None = None) -> RegisterOutcome:
        with self._lock:
            self.calls.append(("register", name))
        return Registered(node_id=f"node-{name}", payload={"node_id": f"node-{name}"})

    def update_availability(self, node_id: str, *, available: bool) -> AvailabilityOutcome:
        with self._lock:
            self.calls.append(("availability", node_id))
            self.availability.append(available)
        return AvailabilityUpdated(available=available)

    def call_kinds(self) -> list[str]:
        with self._lock:
            return [kind for kind, _ in self.calls]

    def count(self, kind: str) -> int:
        return self.call_kinds().count(kind)


class SnapshotHolder:
    """Mutable stand-in for the lifecycle controller's snapshot provider."""

    def __init__(self, node_id: str = "node-1", run_state: RunState = RunState.RUNNING) -> None:
        self._lock = threading.Lock()
        self.node_id = node_id
        self.run_state = run_state

    def __call__(self) -> NodeSnapshot:
        with self._lock:
            return NodeSnapshot(node_id=self.node_id, run_state=self.run_state)

    def update(self, *, node_id: str | None = None, run_state: RunState | None = None) -> None:
        with self._lock:
            if node_id is not None:
                self.node_id = node_id
            if run_state is not None:
                self.run_state = run_state


class RecordingEvent(threading.Event):
    """Cancellation token that records waits and returns without sleeping."""

    def __init__(self, *, cancel_after_waits: int | None = None) -> None:
        super().__init__()
        self.waits: list[float | None] = []
        self._cancel_after_waits = cancel_after_waits

    def wait(self, timeout: float | None = None) -> bool:
        self.waits.append(timeout)
        if self._cancel_after_waits is not None and len(self.waits) >= self._cancel_after_waits:
            self.set()
        return self.is_set()


@pytest.fixture()
def coordinator() -> FakeCoordinator:
    return FakeCoordinator()


@pytest.fixture()
def snapshots() -> SnapshotHolder:
    return SnapshotHolder()


@pytest.fixture()
def make_snapshots() -> type[SnapshotHolder]:
    """Factory for snapshot providers with a custom node id or run state."""
    return SnapshotHolder


@pytest.fixture()
def make_cancel_token() -> type[RecordingEvent]:
    """Factory for cancellation tokens that record waits instead of sleeping."""
    return RecordingEvent
