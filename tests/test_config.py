from __future__ import annotations

import os

import allure
import pytest

from dcn_node.config import (
    DEFAULT_COORDINATOR_URL,
    CoordinatorSettings,
    Settings,
    WorkerSettings,
)

pytestmark = [
    allure.epic("Node Configuration"),
    allure.feature("Environment settings"),
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("DCN_NODE_"):
            monkeypatch.delenv(name)


def test_from_env_uses_defaults() -> None:
    settings = Settings.from_env()

    assert settings.coordinator.base_url == DEFAULT_COORDINATOR_URL
    assert settings.coordinator.request_timeout_seconds == 30.0
    assert settings.coordinator.max_retries == 3
    assert settings.node.node_id == ""
    assert settings.worker.retry_delay_seconds == 10.0
    assert settings.worker.max_iterations == 100
    assert settings.worker.stop_timeout_seconds == 15.0
    assert settings.worker.max_log_entries == 50
    assert settings.log_level == "INFO"
    settings.validate_for_worker()


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DCN_NODE_COORDINATOR_URL", " http://localhost:8080 ")
    monkeypatch.setenv("DCN_NODE_ID", " node-7 ")
    monkeypatch.setenv("DCN_NODE_NAME", "studio")
    monkeypatch.setenv("DCN_NODE_RETRY_DELAY_SECONDS", "2.5")
    monkeypatch.setenv("DCN_NODE_MAX_ITERATIONS", "250")
    monkeypatch.setenv("DCN_NODE_MAX_RETRIES", "0")
    monkeypatch.setenv("DCN_NODE_LOG_LEVEL", "debug")

    settings = Settings.from_env()

    assert settings.coordinator.base_url == "http://localhost:8080"
    assert settings.coordinator.max_retries == 0
    assert settings.node.node_id == "node-7"
    assert settings.node.name == "studio"
    assert settings.worker.retry_delay_seconds == 2.5
    assert settings.worker.max_iterations == 250
    assert settings.log_level == "DEBUG"
    settings.validate_for_worker()


def test_blank_numeric_values_fall_back_to_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DCN_NODE_MAX_ITERATIONS", "  ")

    assert Settings.from_env().worker.max_iterations == 100


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("DCN_NODE_MAX_ITERATIONS", "many", "Invalid integer value for DCN_NODE_MAX_ITERATIONS"),
        ("DCN_NODE_RETRY_DELAY_SECONDS", "soon", "Invalid numeric value"),
    ],
)
def test_from_env_rejects_non_numeric_values(
    monkeypatch: pytest.MonkeyPatch,
    name: str,
    value: str,
    message: str,
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=message):
        Settings.from_env()


@pytest.mark.parametrize("url", ["ftp://coordinator.test", "coordinator.test", "https://"])
def test_validate_rejects_invalid_coordinator_url(url: str) -> None:
    settings = Settings(coordinator=CoordinatorSettings(base_url=url))

    with pytest.raises(ValueError, match="Invalid coordinator URL"):
        settings.validate_for_worker()


@pytest.mark.parametrize(
    ("worker", "message"),
    [
        (WorkerSettings(retry_delay_seconds=-1), "RETRY_DELAY_SECONDS"),
        (WorkerSettings(max_iterations=0), "MAX_ITERATIONS"),
        (WorkerSettings(stop_timeout_seconds=-0.5), "STOP_TIMEOUT_SECONDS"),
        (WorkerSettings(max_log_entries=0), "MAX_LOG_ENTRIES"),
    ],
)
def test_validate_rejects_out_of_range_worker_settings(
    worker: WorkerSettings,
    message: str,
) -> None:
    with pytest.raises(ValueError, match=message):
        Settings(worker=worker).validate_for_worker()


def test_validate_rejects_bad_transport_settings() -> None:
    with pytest.raises(ValueError, match="REQUEST_TIMEOUT_SECONDS"):
        Settings(
            coordinator=CoordinatorSettings(request_timeout_seconds=0),
        ).validate_for_worker()
    with pytest.raises(ValueError, match="MAX_RETRIES"):
        Settings(coordinator=CoordinatorSettings(max_retries=-1)).validate_for_worker()


def test_validate_rejects_unknown_log_level() -> None:
    with pytest.raises(ValueError, match="DCN_NODE_LOG_LEVEL"):
        Settings(log_level="CHATTY").validate_for_worker()
