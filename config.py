"""
config.py — process-wide settings for the image pipeline.

One frozen value is built at startup (environment, then CLI overrides) and
handed to ImageCache. Nothing reads the environment after that.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

__all__ = ["PipelineConfig", "DITHER_ENV"]

DITHER_ENV = "DITHER_IMAGES"

RESIZE_AXES = ("width", "longest")


@dataclass(frozen=True)
class PipelineConfig:
    # mode switch
    dither: bool = False

    # persistence
    cache_dir: Path = Path("public") / "images"
    public_prefix: str = "/images"
    extension: str = "webp"

    # geometry
    max_width: int = 840
    resize_axis: str = "width"

    # palette / dithering
    palette_size: int = 16
    kmeans_iterations: int = 10
    sample_cap: int = 10_000
    dither_kernel: str = "atkinson"
    dither_levels: int = 2

    # encoders (effort maps to Pillow's WebP `method`, 0..6)
    lossy_quality: int = 90
    lossless_quality: int = 100
    effort: int = 6

    # resources
    max_concurrent: int = 4
    fetch_timeout: Tuple[float, float] = (10.0, 30.0)
    process_timeout: float = 60.0
    user_agent: str = "dithercache/1.0 (+https://local)"

    # preview
    placeholder_size: int = 4

    def __post_init__(self) -> None:
        if self.resize_axis not in RESIZE_AXES:
            raise ValueError(f"resize_axis must be one of {RESIZE_AXES}, got {self.resize_axis!r}")
        if self.max_width < 1:
            raise ValueError("max_width must be >= 1")
        if self.palette_size < 1:
            raise ValueError("palette_size must be >= 1")
        if self.kmeans_iterations < 0:
            raise ValueError("kmeans_iterations must be >= 0")
        if self.sample_cap < 1:
            raise ValueError("sample_cap must be >= 1")
        if self.dither_levels < 2:
            raise ValueError("dither_levels must be >= 2")
        if self.max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        if not 0 <= self.effort <= 6:
            raise ValueError("effort must be in 0..6")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "PipelineConfig":
        """Read the dithering switch once; `DITHER_IMAGES=true` enables it."""
        env = os.environ if environ is None else environ
        dither = env.get(DITHER_ENV, "") == "true"
        return cls(dither=dither, **overrides)

    def with_overrides(self, **changes: Any) -> "PipelineConfig":
        """Return a copy with every non-None keyword applied."""
        changes = {k: v for k, v in changes.items() if v is not None}
        if "cache_dir" in changes:
            changes["cache_dir"] = Path(changes["cache_dir"])
        return replace(self, **changes)
