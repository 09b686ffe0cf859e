from __future__ import annotations

from pathlib import Path

import allure

from dcn_node.coordinator.specs import _detect_ram, detect_compute_specs

pytestmark = [
    allure.epic("Node Lifecycle"),
    allure.feature("Registration specs"),
]


def test_explicit_values_win() -> None:
    specs = detect_compute_specs(cpu="M2", gpu="integrated", cores=8, ram="16.0 GB")

    assert specs.to_payload() == {"cpu": "M2", "gpu": "integrated", "cores": 8, "ram": "16.0 GB"}


def test_missing_values_are_filled() -> None:
    specs = detect_compute_specs()

    assert specs.cpu
    assert specs.gpu == "Not specified"
    assert specs.cores >= 1
    assert specs.ram


def test_ram_is_read_from_meminfo(tmp_path: Path) -> None:
    meminfo = tmp_path / "meminfo"
    meminfo.write_text("MemTotal:       16777216 kB\nMemFree:        1024 kB\n", "utf-8")

    assert _detect_ram(meminfo) == "16.0 GB"


def test_ram_falls_back_when_unreadable(tmp_path: Path) -> None:
    assert _detect_ram(tmp_path / "missing") == "Not specified"
    garbled = tmp_path / "garbled"
    garbled.write_text("MemTotal: lots\n", "utf-8")
    assert _detect_ram(garbled) == "Not specified"
