from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from raster import RasterBuffer, pack_argb, unpack_argb

log = logging.getLogger("dithercache.palettes")

__all__ = ["Palette", "extract_palette", "sample_pixels", "kmeans", "rng_from_seed"]

DEFAULT_COLORS = 16
DEFAULT_ITERATIONS = 10
DEFAULT_SAMPLE_CAP = 10_000


# =============== Palette ===============
@dataclass(frozen=True)
class Palette:
    """Ordered, frozen list of packed ARGB colors (0xAARRGGBB)."""
    colors: Tuple[int, ...]

    def __post_init__(self) -> None:
        if not self.colors:
            raise ValueError("Palette needs at least one color")

    def __len__(self) -> int:
        return len(self.colors)

    def __iter__(self):
        return iter(self.colors)

    def rgb(self) -> np.ndarray:
        """(N,3) int32 view, palette order preserved."""
        return np.array([unpack_argb(c)[:3] for c in self.colors], dtype=np.int32).reshape(-1, 3)

    def rgba(self) -> np.ndarray:
        """(N,4) uint8 RGBA rows."""
        return np.array([unpack_argb(c) for c in self.colors], dtype=np.uint8).reshape(-1, 4)

    def to_hex(self) -> List[str]:
        return ["#%02x%02x%02x" % unpack_argb(c)[:3] for c in self.colors]

    @classmethod
    def from_rgb(cls, rows) -> "Palette":
        return cls(tuple(pack_argb(int(r), int(g), int(b), 255) for r, g, b in rows))


# =============== Base & common utils ===============
def rng_from_seed(seed: Optional[int]) -> np.random.Generator:
    return np.random.default_rng(seed if seed is not None else np.random.SeedSequence().entropy)


def sample_pixels(buf: RasterBuffer, cap: int = DEFAULT_SAMPLE_CAP) -> np.ndarray:
    """
    Fixed-stride subsample of at most `cap` pixels, as (N,3) int64 RGB.
    stride = total // min(cap, total), at least 1.
    """
    flat = buf.reshape(-1, buf.shape[-1])[:, :3]
    total = flat.shape[0]
    if total == 0:
        return np.zeros((0, 3), dtype=np.int64)
    step = max(1, total // min(cap, total))
    return flat[::step][:cap].astype(np.int64)


def _round_half_up(x: np.ndarray) -> np.ndarray:
    return np.floor(x + 0.5)


def kmeans(
    samples: np.ndarray,
    k: int,
    *,
    iterations: int = DEFAULT_ITERATIONS,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """
    Plain k-means over RGB rows. Seeds are k uniform draws with replacement;
    every round assigns each sample to its nearest centroid (first index wins
    on ties) and moves each centroid to the rounded mean of its members.
    Empty clusters keep their previous centroid. Always runs `iterations`
    rounds. Returns (k,3) int64 centroids.
    """
    rng = rng or rng_from_seed(None)
    data = np.asarray(samples, dtype=np.int64).reshape(-1, 3)
    n = data.shape[0]
    if n == 0:
        return np.zeros((k, 3), dtype=np.int64)

    centers = data[rng.integers(0, n, size=k)].astype(np.float64)
    fdata = data.astype(np.float64)

    for _ in range(iterations):
        d2 = ((fdata[:, None, :] - centers[None, :, :]) ** 2).sum(2)
        labels = np.argmin(d2, axis=1)
        counts = np.bincount(labels, minlength=k)
        for ch in range(3):
            sums = np.bincount(labels, weights=fdata[:, ch], minlength=k)
            filled = counts > 0
            centers[filled, ch] = _round_half_up(sums[filled] / counts[filled])

    return centers.astype(np.int64)


def extract_palette(
    buf: RasterBuffer,
    k: int = DEFAULT_COLORS,
    *,
    iterations: int = DEFAULT_ITERATIONS,
    sample_cap: int = DEFAULT_SAMPLE_CAP,
    rng: Optional[np.random.Generator] = None,
) -> Palette:
    """Representative k-color opaque palette for `buf`, in centroid order."""
    samples = sample_pixels(buf, sample_cap)
    centers = kmeans(samples, k, iterations=iterations, rng=rng)
    palette = Palette.from_rgb(np.clip(centers, 0, 255))
    log.debug("Palette (%d from %d samples): %s", k, samples.shape[0], " ".join(palette.to_hex()))
    return palette
