# dithering.py — error-diffusion dithering over RGBA buffers
# -----------------------------------------------------------------------------
# Each color channel is reduced to `levels` evenly spaced values (2 = one bit
# per channel) and the reduction error is pushed onto not-yet-visited
# neighbours in raster order. Kernels use integer weights and a right shift,
# so the result is identical for identical input.
#
# Atkinson spreads 6/8 of the error (1/8 to each of six neighbours) and
# drops the remaining quarter, which keeps highlights and shadows clean.
# -----------------------------------------------------------------------------
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

import numpy as np

from raster import RasterBuffer

__all__ = ["DiffusionKernel", "KernelRegistry", "KERNELS", "ATKINSON", "dither"]


@dataclass(frozen=True)
class DiffusionKernel:
    name: str
    offsets: Tuple[Tuple[int, int], ...]  # (dx, dy), dy >= 0
    weights: Tuple[int, ...]
    shift: int

    def __post_init__(self) -> None:
        if len(self.offsets) != len(self.weights):
            raise ValueError(f"{self.name}: offsets/weights length mismatch")
        for dx, dy in self.offsets:
            if dy < 0 or (dy == 0 and dx <= 0):
                raise ValueError(f"{self.name}: offset ({dx},{dy}) points at a visited pixel")


# =============== Registry ===============
class KernelRegistry:
    def __init__(self) -> None:
        self._by_name: Dict[str, DiffusionKernel] = {}

    def register(self, kernel: DiffusionKernel) -> None:
        self._by_name[kernel.name.strip().lower()] = kernel

    def names(self) -> List[str]:
        return sorted(self._by_name.keys())

    def get(self, name: str) -> DiffusionKernel:
        key = name.strip().lower()
        if key not in self._by_name:
            raise KeyError(f"Unknown kernel '{name}'. Available: {', '.join(self.names()) or '(none)'}")
        return self._by_name[key]


KERNELS = KernelRegistry()

ATKINSON = DiffusionKernel(
    name="atkinson",
    offsets=((1, 0), (2, 0), (-1, 1), (0, 1), (1, 1), (0, 2)),
    weights=(1, 1, 1, 1, 1, 1),
    shift=3,
)
FLOYD_STEINBERG = DiffusionKernel(
    name="floyd_steinberg",
    offsets=((1, 0), (-1, 1), (0, 1), (1, 1)),
    weights=(7, 3, 5, 1),
    shift=4,
)
SIERRA_LITE = DiffusionKernel(
    name="sierra_lite",
    offsets=((1, 0), (-1, 1), (0, 1)),
    weights=(2, 1, 1),
    shift=2,
)

KERNELS.register(ATKINSON)
KERNELS.register(FLOYD_STEINBERG)
KERNELS.register(SIERRA_LITE)


# ============================ core ============================
def _diffuse_channel(
    values: List[int],
    width: int,
    height: int,
    kernel: DiffusionKernel,
    levels: int,
) -> List[int]:
    """In-place diffusion over one flattened channel; returns the same list."""
    top = levels - 1
    taps = [(dx, dy, dy * width + dx, w) for (dx, dy), w in zip(kernel.offsets, kernel.weights)]
    shift = kernel.shift

    for y in range(height):
        row = y * width
        for x in range(width):
            i = row + x
            v = values[i]
            # v > 128 rounds up for two levels; the same bias carries to more levels
            q = (v * top + 126) // 255
            if q < 0:
                q = 0
            elif q > top:
                q = top
            out = (q * 255) // top
            values[i] = out
            err = v - out
            if err == 0:
                continue
            for dx, dy, off, w in taps:
                nx = x + dx
                if nx < 0 or nx >= width or y + dy >= height:
                    continue
                values[i + off] += (err * w) >> shift
    return values


def dither(
    buf: RasterBuffer,
    kernel: DiffusionKernel | str = ATKINSON,
    *,
    levels: int = 2,
    channels: Sequence[int] = (0, 1, 2),
) -> RasterBuffer:
    """
    Error-diffuse the given channels of an RGBA buffer. Returns a new buffer
    with the same shape; channels not listed (alpha by default) are copied.
    """
    if isinstance(kernel, str):
        kernel = KERNELS.get(kernel)
    if levels < 2:
        raise ValueError("levels must be >= 2")
    h, w = buf.shape[:2]
    out = np.array(buf, dtype=np.uint8, copy=True)
    for ch in channels:
        plane = out[..., ch].astype(np.int64).ravel().tolist()
        _diffuse_channel(plane, w, h, kernel, levels)
        out[..., ch] = np.clip(np.asarray(plane, dtype=np.int64), 0, 255).reshape(h, w).astype(np.uint8)
    return out
