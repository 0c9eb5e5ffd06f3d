from __future__ import annotations

import numpy as np

from palettes import Palette
from raster import RasterBuffer

__all__ = ["nearest_indices", "quantize"]


def nearest_indices(rgb: np.ndarray, palette_rgb: np.ndarray) -> np.ndarray:
    """
    For each (N,3) row, index of the nearest palette row by Euclidean RGB
    distance. Ties go to the earlier palette entry. Works for any palette
    size; memory stays O(N).
    """
    px = np.asarray(rgb, dtype=np.int64).reshape(-1, 3)
    pal = np.asarray(palette_rgb, dtype=np.int64).reshape(-1, 3)
    if pal.shape[0] == 0:
        raise ValueError("palette is empty")

    best = np.zeros(px.shape[0], dtype=np.int64)
    best_d = ((px - pal[0]) ** 2).sum(1)
    for j in range(1, pal.shape[0]):
        d = ((px - pal[j]) ** 2).sum(1)
        closer = d < best_d
        best[closer] = j
        best_d[closer] = d[closer]
    return best


def quantize(buf: RasterBuffer, palette: Palette) -> RasterBuffer:
    """Replace every pixel with its nearest palette entry (alpha ignored for matching)."""
    h, w = buf.shape[:2]
    idx = nearest_indices(buf[..., :3], palette.rgb())
    return palette.rgba()[idx].reshape(h, w, 4)
