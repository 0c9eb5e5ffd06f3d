from __future__ import annotations

import io
from typing import Dict, List, Optional, Tuple

import numpy as np
import pytest
import requests
from PIL import Image


def make_image_bytes(w: int, h: int, fmt: str = "PNG", mode: str = "RGB", seed: int = 0) -> bytes:
    """Smooth gradient plus a little noise so palettes have something to find."""
    rng = np.random.default_rng(seed)
    yy, xx = np.mgrid[0:h, 0:w]
    arr = np.zeros((h, w, 3), dtype=np.float64)
    arr[..., 0] = 255.0 * xx / max(1, w - 1)
    arr[..., 1] = 255.0 * yy / max(1, h - 1)
    arr[..., 2] = 128.0 + 60.0 * np.sin(xx / 17.0)
    arr += rng.normal(0, 6, size=arr.shape)
    img = Image.fromarray(np.clip(arr, 0, 255).astype(np.uint8), "RGB")
    if mode != "RGB":
        img = img.convert(mode)
    out = io.BytesIO()
    img.save(out, format=fmt)
    return out.getvalue()


def make_response(status: int = 200, body: bytes = b"", reason: str = "OK") -> requests.Response:
    r = requests.Response()
    r.status_code = status
    r.reason = reason
    r._content = body
    return r


class FakeSession:
    """Stands in for requests.Session; maps the URL without query to a response."""

    def __init__(self, routes: Optional[Dict[str, Tuple[int, bytes]]] = None) -> None:
        self.routes = routes or {}
        self.calls: List[str] = []
        self.timeouts: List[object] = []
        self.closed = False
        self.headers: Dict[str, str] = {}

    def get(self, url: str, timeout=None, **kwargs) -> requests.Response:
        self.calls.append(url)
        self.timeouts.append(timeout)
        base = url.split("?", 1)[0]
        if base not in self.routes:
            return make_response(404, b"", "Not Found")
        status, body = self.routes[base]
        return make_response(status, body, "OK" if status < 400 else "Error")

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def png_1680x1200() -> bytes:
    return make_image_bytes(1680, 1200)


@pytest.fixture
def small_png() -> bytes:
    return make_image_bytes(64, 48)
