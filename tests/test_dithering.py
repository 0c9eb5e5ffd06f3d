from __future__ import annotations

import numpy as np
import pytest

from dithering import ATKINSON, KERNELS, DiffusionKernel, dither


def _gray(value, h=16, w=16, alpha=255):
    buf = np.full((h, w, 4), value, dtype=np.uint8)
    buf[..., 3] = alpha
    return buf


def test_output_shape_and_new_buffer():
    buf = _gray(100)
    out = dither(buf)
    assert out.shape == buf.shape
    assert out is not buf
    assert (buf == 100)[..., :3].all()


def test_two_levels_gives_binary_channels():
    rng = np.random.default_rng(0)
    buf = rng.integers(0, 256, size=(20, 30, 4), dtype=np.uint8)
    out = dither(buf, levels=2)
    assert set(np.unique(out[..., :3]).tolist()) <= {0, 255}


def test_alpha_is_carried_through():
    buf = _gray(90, alpha=33)
    assert (dither(buf)[..., 3] == 33).all()


def test_deterministic():
    rng = np.random.default_rng(5)
    buf = rng.integers(0, 256, size=(25, 25, 4), dtype=np.uint8)
    assert np.array_equal(dither(buf), dither(buf))


def test_extremes_are_fixed_points():
    assert (dither(_gray(0))[..., :3] == 0).all()
    assert (dither(_gray(255))[..., :3] == 255).all()


def test_threshold_sits_above_128():
    # a lone pixel has nowhere to push its error
    assert dither(_gray(128, 1, 1))[0, 0, 0] == 0
    assert dither(_gray(129, 1, 1))[0, 0, 0] == 255


def test_atkinson_first_row_diffusion():
    buf = np.zeros((1, 3, 4), dtype=np.uint8)
    buf[0, :, :3] = [[100] * 3, [100] * 3, [100] * 3]
    out = dither(buf, ATKINSON)
    # 100 -> 0 pushes 12 right twice; 112 -> 0 pushes 14, so the last is 126 -> 0
    assert out[0, :, 0].tolist() == [0, 0, 0]
    buf[0, :, :3] = 120
    out = dither(buf, ATKINSON)
    # 120 -> 0, next is 135 -> 255 (err -120 -> -15), last 120+15-15=120 -> 0
    assert out[0, :, 0].tolist() == [0, 255, 0]


def test_mid_gray_mixes_levels():
    out = dither(_gray(128, 32, 32))
    frac = (out[..., 0] == 255).mean()
    assert 0.3 < frac < 0.7


def test_more_levels():
    out = dither(_gray(90, 8, 8), levels=4)
    assert set(np.unique(out[..., :3]).tolist()) <= {0, 85, 170, 255}


def test_kernel_registry():
    assert {"atkinson", "floyd_steinberg", "sierra_lite"} <= set(KERNELS.names())
    assert KERNELS.get(" Atkinson ") is ATKINSON
    with pytest.raises(KeyError):
        KERNELS.get("nope")
    out = dither(_gray(60), "floyd_steinberg")
    assert out.shape == (16, 16, 4)


def test_kernel_cannot_point_backwards():
    with pytest.raises(ValueError):
        DiffusionKernel("bad", offsets=((-1, 0),), weights=(1,), shift=1)
