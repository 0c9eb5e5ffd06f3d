"""
placeholder.py — tiny blurred preview tokens for progressive image loading.

The token is a base64 PNG data URL of a few-pixel thumbnail, contrast
normalised and slightly saturated so it reads well once the browser
stretches and blurs it.
"""
from __future__ import annotations

import base64
import io
import logging
from pathlib import Path
from typing import Optional, Union

import requests
from PIL import Image, ImageEnhance, ImageOps

from errors import PlaceholderFailure

log = logging.getLogger("dithercache.placeholder")

__all__ = ["blur_data_url", "blur_data_url_from_bytes"]

DEFAULT_SIZE = 4
SATURATION = 1.2


def blur_data_url_from_bytes(raw: bytes, size: int = DEFAULT_SIZE) -> str:
    try:
        img = Image.open(io.BytesIO(raw))
        img.load()
        img = img.convert("RGB")
        img.thumbnail((size, size), Image.Resampling.LANCZOS)
        img = ImageOps.autocontrast(img)
        img = ImageEnhance.Color(img).enhance(SATURATION)
        out = io.BytesIO()
        img.save(out, format="PNG", optimize=True)
    except Exception as e:
        raise PlaceholderFailure(f"Could not build placeholder: {e}") from e
    return "data:image/png;base64," + base64.b64encode(out.getvalue()).decode("ascii")


def blur_data_url(
    source: Union[str, Path],
    size: int = DEFAULT_SIZE,
    *,
    session: Optional[requests.Session] = None,
    timeout: float = 20.0,
) -> str:
    """Placeholder for a local file or an http(s) URL."""
    src = str(source)
    if src.lower().startswith(("http://", "https://")):
        sess = session or requests.Session()
        try:
            r = sess.get(src, timeout=timeout)
            r.raise_for_status()
            raw = r.content
        except requests.RequestException as e:
            raise PlaceholderFailure(f"Could not fetch {src}: {e}") from e
    else:
        try:
            raw = Path(src).read_bytes()
        except OSError as e:
            raise PlaceholderFailure(f"Could not read {src}: {e}") from e
    return blur_data_url_from_bytes(raw, size)
