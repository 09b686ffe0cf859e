"""Domain models shared by the compute kernel, coordinator client, and worker."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

_JOB_FLOAT_FIELDS: tuple[str, ...] = ("x_min", "x_max", "y_min", "y_max")
_JOB_INT_FIELDS: tuple[str, ...] = ("width", "height")


class RunState(str, Enum):
    """Desired run state owned by the lifecycle controller."""

    STOPPED = "stopped"
    RUNNING = "running"


class WorkerState(str, Enum):
    """Task worker lifecycle states."""

    IDLE = "idle"
    LOOPING = "looping"
    STOPPING = "stopping"


class ErrorKind(str, Enum):
    """Normalized failure classes for coordinator calls."""

    TRANSIENT_NETWORK = "transient_network"
    MALFORMED_RESPONSE = "malformed_response"


class InvalidPayloadError(ValueError):
    """Coordinator payload does not match the expected shape."""


class PreconditionError(RuntimeError):
    """Operation cannot run in the node's current state."""


@dataclass(frozen=True, slots=True)
class RenderJob:
    """Numeric domain and raster size of one render task."""

    x_min: float
    x_max: float
    y_min: float
    y_max: float
    width: int
    height: int

    @classmethod
    def from_payload(cls, payload: object) -> RenderJob:
        """Decode the coordinator's ``instruction_data`` object."""

        if not isinstance(payload, dict):
            raise InvalidPayloadError("instruction_data must be a JSON object")
        values: dict[str, Any] = {}
        for name in _JOB_FLOAT_FIELDS:
            value = payload.get(name)
            if isinstance(value, bool) or not isinstance(value, int | float):
                raise InvalidPayloadError(f"instruction_data.{name} must be a number")
            try:
                as_float = float(value)
            except OverflowError as error:
                raise InvalidPayloadError(
                    f"instruction_data.{name} is out of range for a float",
                ) from error
            if not math.isfinite(as_float):
                raise InvalidPayloadError(f"instruction_data.{name} must be finite")
            values[name] = as_float
        for name in _JOB_INT_FIELDS:
            value = payload.get(name)
            if isinstance(value, float) and value.is_integer():
                value = int(value)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidPayloadError(f"instruction_data.{name} must be an integer")
            if value <= 0:
                raise InvalidPayloadError(f"instruction_data.{name} must be > 0")
            values[name] = value
        return cls(**values)

    def to_payload(self) -> dict[str, float | int]:
        return {
            "x_min": self.x_min,
            "x_max": self.x_max,
            "y_min": self.y_min,
            "y_max": self.y_max,
            "width": self.width,
            "height": self.height,
        }


@dataclass(frozen=True, slots=True)
class TaskAssignment:
    """One fetched task: coordinator task id plus its render job."""

    task_id: str
    job: RenderJob


@dataclass(frozen=True, slots=True)
class ResultMetadata:
    """Metadata uploaded next to the rendered image."""

    uploaded_by: str
    task_id: str
    job: RenderJob

    @property
    def filename(self) -> str:
        return f"{self.task_id}.png"

    def to_payload(self) -> dict[str, object]:
        return {
            "uploaded_by": self.uploaded_by,
            "task_id": self.task_id,
            "instruction_data": self.job.to_payload(),
            "filename": self.filename,
        }


@dataclass(frozen=True, slots=True)
class ResultArtifact:
    """Encoded image plus metadata, consumed once by the submit call."""

    image_bytes: bytes
    metadata: ResultMetadata

    @classmethod
    def build(
        cls,
        *,
        node_id: str,
        assignment: TaskAssignment,
        image_bytes: bytes,
    ) -> ResultArtifact:
        return cls(
            image_bytes=image_bytes,
            metadata=ResultMetadata(
                uploaded_by=node_id,
                task_id=assignment.task_id,
                job=assignment.job,
            ),
        )

    @property
    def task_id(self) -> str:
        return self.metadata.task_id

    @property
    def filename(self) -> str:
        return self.metadata.filename


@dataclass(frozen=True, slots=True)
class NodeSnapshot:
    """Point-in-time copy of controller-owned state read by one loop iteration."""

    node_id: str
    run_state: RunState

    @property
    def is_running(self) -> bool:
        return self.run_state is RunState.RUNNING


@dataclass(frozen=True, slots=True)
class ComputeSpecs:
    """Hardware description sent at registration."""

    cpu: str = "Not specified"
    gpu: str = "Not specified"
    cores: int = 1
    ram: str = "Not specified"

    def to_payload(self) -> dict[str, str | int]:
        return {"cpu": self.cpu, "gpu": self.gpu, "cores": self.cores, "ram": self.ram}


@dataclass(frozen=True, slots=True)
class LogEntry:
    """Log event surfaced to the presentation layer."""

    timestamp: datetime
    level: str
    message: str

    def format(self) -> str:
        return f"[{self.timestamp.strftime('%H:%M:%S')}] {self.message}"
