"""Escape-time renderer producing grayscale PNG images for render jobs."""

from __future__ import annotations

from io import BytesIO

import numpy as np
from PIL import Image

from dcn_node.models import RenderJob

DEFAULT_MAX_ITERATIONS = 100
ESCAPE_RADIUS_SQUARED = 4.0


def escape_counts(job: RenderJob, max_iterations: int = DEFAULT_MAX_ITERATIONS) -> np.ndarray:
    """Return per-pixel recurrence step counts as a ``height x width`` array.

    Pixel ``(px, py)`` maps to ``c = x_min + px/width * (x_max - x_min)`` and
    ``y_min + py/height * (y_max - y_min)``. A pixel keeps stepping
    ``z <- z^2 + c`` while ``|z|^2 <= 4`` and the cap is not reached.
    """

    if max_iterations < 1:
        raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")

    xs = job.x_min + (np.arange(job.width, dtype=np.float64) / job.width) * (job.x_max - job.x_min)
    ys = job.y_min + (np.arange(job.height, dtype=np.float64) / job.height) * (
        job.y_max - job.y_min
    )
    cx, cy = np.meshgrid(xs, ys)

    zx = np.zeros_like(cx)
    zy = np.zeros_like(cy)
    counts = np.zeros(cx.shape, dtype=np.int32)
    active = np.ones(cx.shape, dtype=bool)

    for _ in range(max_iterations):
        xx = zx * zx
        yy = zy * zy
        active &= (xx + yy) <= ESCAPE_RADIUS_SQUARED
        if not active.any():
            break
        # Escaped pixels are frozen so their values never grow further.
        next_x = xx - yy + cx
        zy = np.where(active, 2.0 * zx * zy + cy, zy)
        zx = np.where(active, next_x, zx)
        counts += active
    return counts


def intensity_from_counts(counts: np.ndarray, max_iterations: int) -> np.ndarray:
    """Map step counts to 8-bit gray; a count at the cap is black."""

    if max_iterations < 1:
        raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
    clipped = np.clip(counts.astype(np.int64), 0, max_iterations)
    return (255 - (clipped * 255) // max_iterations).astype(np.uint8)


def render(job: RenderJob, max_iterations: int = DEFAULT_MAX_ITERATIONS) -> np.ndarray:
    """Render the job into a row-major grayscale raster."""

    return intensity_from_counts(escape_counts(job, max_iterations), max_iterations)


def encode_png(raster: np.ndarray) -> bytes:
    if raster.ndim != 2 or raster.dtype != np.uint8:
        raise ValueError("raster must be a 2-D uint8 array")
    buf = BytesIO()
    Image.fromarray(raster).save(buf, format="PNG")
    return buf.getvalue()


def render_png(job: RenderJob, max_iterations: int = DEFAULT_MAX_ITERATIONS) -> bytes:
    """Render the job and return PNG bytes ready for upload."""

    return encode_png(render(job, max_iterations))
