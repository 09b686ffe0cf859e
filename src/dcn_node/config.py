"""Runtime configuration for the compute node."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

DEFAULT_COORDINATOR_URL = "https://dcn-server-800570186400.us-east4.run.app"
_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass(slots=True)
class CoordinatorSettings:
    """Coordinator endpoint and HTTP transport settings."""

    base_url: str = DEFAULT_COORDINATOR_URL
    request_timeout_seconds: float = 30.0
    max_retries: int = 3


@dataclass(slots=True)
class NodeSettings:
    """Identity of this node as issued by the coordinator."""

    node_id: str = ""
    name: str = ""


@dataclass(slots=True)
class WorkerSettings:
    """Task loop tunables."""

    retry_delay_seconds: float = 10.0
    max_iterations: int = 100
    stop_timeout_seconds: float = 15.0
    max_log_entries: int = 50


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    coordinator: CoordinatorSettings = field(default_factory=CoordinatorSettings)
    node: NodeSettings = field(default_factory=NodeSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from ``DCN_NODE_*`` environment variables."""

        return cls(
            coordinator=CoordinatorSettings(
                base_url=os.getenv("DCN_NODE_COORDINATOR_URL", DEFAULT_COORDINATOR_URL).strip(),
                request_timeout_seconds=_env_float("DCN_NODE_REQUEST_TIMEOUT_SECONDS", 30.0),
                max_retries=_env_int("DCN_NODE_MAX_RETRIES", 3),
            ),
            node=NodeSettings(
                node_id=os.getenv("DCN_NODE_ID", "").strip(),
                name=os.getenv("DCN_NODE_NAME", "").strip(),
            ),
            worker=WorkerSettings(
                retry_delay_seconds=_env_float("DCN_NODE_RETRY_DELAY_SECONDS", 10.0),
                max_iterations=_env_int("DCN_NODE_MAX_ITERATIONS", 100),
                stop_timeout_seconds=_env_float("DCN_NODE_STOP_TIMEOUT_SECONDS", 15.0),
                max_log_entries=_env_int("DCN_NODE_MAX_LOG_ENTRIES", 50),
            ),
            log_level=os.getenv("DCN_NODE_LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )

    def validate_for_worker(self) -> None:
        """Raise configuration error if the worker cannot run with these settings."""

        _validate_base_url(self.coordinator.base_url)
        if self.coordinator.request_timeout_seconds <= 0:
            raise ValueError("DCN_NODE_REQUEST_TIMEOUT_SECONDS must be > 0.")
        if self.coordinator.max_retries < 0:
            raise ValueError("DCN_NODE_MAX_RETRIES must be >= 0.")
        if self.worker.retry_delay_seconds < 0:
            raise ValueError("DCN_NODE_RETRY_DELAY_SECONDS must be >= 0.")
        if self.worker.max_iterations <= 0:
            raise ValueError("DCN_NODE_MAX_ITERATIONS must be a positive integer.")
        if self.worker.stop_timeout_seconds < 0:
            raise ValueError("DCN_NODE_STOP_TIMEOUT_SECONDS must be >= 0.")
        if self.worker.max_log_entries <= 0:
            raise ValueError("DCN_NODE_MAX_LOG_ENTRIES must be a positive integer.")
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(
                f"Invalid DCN_NODE_LOG_LEVEL: {self.log_level!r}. "
                f"Expected one of {', '.join(sorted(_LOG_LEVELS))}.",
            )


def _validate_base_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid coordinator URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid numeric value for {name}: {value!r}") from error
