from __future__ import annotations

from pathlib import Path

import pytest

from config import PipelineConfig


def test_defaults():
    cfg = PipelineConfig()
    assert cfg.dither is False
    assert cfg.max_width == 840
    assert cfg.palette_size == 16
    assert cfg.kmeans_iterations == 10
    assert cfg.sample_cap == 10_000
    assert (cfg.lossy_quality, cfg.lossless_quality, cfg.effort) == (90, 100, 6)
    assert cfg.cache_dir == Path("public") / "images"


@pytest.mark.parametrize("value, expected", [("true", True), ("false", False), ("TRUE", False), ("1", False), ("", False)])
def test_dither_switch_from_env(value, expected):
    assert PipelineConfig.from_env({"DITHER_IMAGES": value}).dither is expected


def test_env_missing_means_plain():
    assert PipelineConfig.from_env({}).dither is False


def test_overrides_skip_none():
    cfg = PipelineConfig().with_overrides(dither=True, max_width=None, cache_dir="/tmp/x")
    assert cfg.dither is True
    assert cfg.max_width == 840
    assert cfg.cache_dir == Path("/tmp/x")


@pytest.mark.parametrize(
    "field, value",
    [("resize_axis", "diagonal"), ("palette_size", 0), ("dither_levels", 1), ("max_concurrent", 0), ("effort", 7)],
)
def test_rejects_bad_values(field, value):
    with pytest.raises(ValueError):
        PipelineConfig(**{field: value})
