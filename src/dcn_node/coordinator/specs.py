"""Best-effort detection of local hardware for node registration."""

from __future__ import annotations

import os
import platform
from pathlib import Path

from dcn_node.models import ComputeSpecs

_NOT_SPECIFIED = "Not specified"
_MEMINFO_PATH = Path("/proc/meminfo")


def detect_compute_specs(
    *,
    cpu: str | None = None,
    gpu: str | None = None,
    cores: int | None = None,
    ram: str | None = None,
) -> ComputeSpecs:
    """Build registration specs, filling unset fields from the local machine."""

    return ComputeSpecs(
        cpu=cpu or _detect_cpu(),
        gpu=gpu or _NOT_SPECIFIED,
        cores=cores if cores is not None else max(1, os.cpu_count() or 1),
        ram=ram or _detect_ram(),
    )


def _detect_cpu() -> str:
    name = platform.processor().strip() or platform.machine().strip()
    return name or _NOT_SPECIFIED


def _detect_ram(meminfo_path: Path = _MEMINFO_PATH) -> str:
    try:
        lines = meminfo_path.read_text("utf-8").splitlines()
    except OSError:
        return _NOT_SPECIFIED
    for line in lines:
        if not line.startswith("MemTotal:"):
            continue
        parts = line.split()
        if len(parts) >= 2 and parts[1].isdigit():
            gib = int(parts[1]) / (1024 * 1024)
            return f"{gib:.1f} GB"
    return _NOT_SPECIFIED
