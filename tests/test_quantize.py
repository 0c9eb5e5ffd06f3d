from __future__ import annotations

import numpy as np
import pytest

from palettes import Palette
from quantize import nearest_indices, quantize


def test_every_pixel_is_a_palette_member():
    rng = np.random.default_rng(2)
    buf = rng.integers(0, 256, size=(30, 40, 4), dtype=np.uint8)
    pal = Palette.from_rgb(rng.integers(0, 256, size=(7, 3)))
    out = quantize(buf, pal)
    members = {tuple(row) for row in pal.rgba().tolist()}
    assert {tuple(px) for px in out.reshape(-1, 4).tolist()} <= members
    assert out.shape == buf.shape


def test_nearest_choice_ignores_alpha():
    buf = np.array([[[10, 10, 10, 0], [240, 240, 240, 7]]], dtype=np.uint8)
    pal = Palette.from_rgb([(0, 0, 0), (255, 255, 255)])
    out = quantize(buf, pal)
    assert out[0].tolist() == [[0, 0, 0, 255], [255, 255, 255, 255]]


def test_ties_go_to_first_palette_entry():
    # (100,100,100) is equidistant from 90 and 110
    idx = nearest_indices(np.array([[100, 100, 100]]), np.array([[110, 110, 110], [90, 90, 90]]))
    assert idx.tolist() == [0]
    idx = nearest_indices(np.array([[100, 100, 100]]), np.array([[90, 90, 90], [110, 110, 110]]))
    assert idx.tolist() == [0]


@pytest.mark.parametrize("n", [1, 2, 16, 64])
def test_any_palette_size(n):
    rng = np.random.default_rng(n)
    pal_rgb = rng.integers(0, 256, size=(n, 3))
    px = rng.integers(0, 256, size=(200, 3))
    idx = nearest_indices(px, pal_rgb)
    d = ((px[:, None, :] - pal_rgb[None, :, :]) ** 2).sum(2)
    assert np.array_equal(idx, np.argmin(d, axis=1))


def test_empty_palette_rejected():
    with pytest.raises(ValueError):
        nearest_indices(np.zeros((1, 3)), np.zeros((0, 3)))
