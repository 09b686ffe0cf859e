"""Explicit result types returned by coordinator calls."""

from __future__ import annotations

from dataclasses import dataclass

from dcn_node.models import ErrorKind, TaskAssignment


@dataclass(frozen=True, slots=True)
class TaskFetched:
    assignment: TaskAssignment


@dataclass(frozen=True, slots=True)
class NoTaskAvailable:
    """Queue is empty; the expected steady state, not an error."""


@dataclass(frozen=True, slots=True)
class FetchFailed:
    kind: ErrorKind
    detail: str


@dataclass(frozen=True, slots=True)
class SubmitAccepted:
    result_id: str


@dataclass(frozen=True, slots=True)
class SubmitFailed:
    kind: ErrorKind
    detail: str


@dataclass(frozen=True, slots=True)
class Registered:
    node_id: str
    payload: dict[str, object]


@dataclass(frozen=True, slots=True)
class RegistrationFailed:
    kind: ErrorKind
    detail: str


@dataclass(frozen=True, slots=True)
class AvailabilityUpdated:
    available: bool


@dataclass(frozen=True, slots=True)
class AvailabilityFailed:
    kind: ErrorKind
    detail: str


FetchOutcome = TaskFetched | NoTaskAvailable | FetchFailed
SubmitOutcome = SubmitAccepted | SubmitFailed
RegisterOutcome = Registered | RegistrationFailed
AvailabilityOutcome = AvailabilityUpdated | AvailabilityFailed
