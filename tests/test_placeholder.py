from __future__ import annotations

import base64
import io

import pytest
from PIL import Image

from conftest import FakeSession, make_image_bytes
from errors import PlaceholderFailure
from placeholder import blur_data_url, blur_data_url_from_bytes


def _decode(token: str) -> Image.Image:
    prefix = "data:image/png;base64,"
    assert token.startswith(prefix)
    return Image.open(io.BytesIO(base64.b64decode(token[len(prefix):])))


def test_token_is_tiny_png():
    img = _decode(blur_data_url_from_bytes(make_image_bytes(300, 150)))
    assert img.format == "PNG"
    assert img.size == (4, 2)
    assert img.mode == "RGB"


def test_custom_size():
    img = _decode(blur_data_url_from_bytes(make_image_bytes(100, 100), size=8))
    assert img.size == (8, 8)


def test_from_file(tmp_path):
    p = tmp_path / "x.webp"
    Image.open(io.BytesIO(make_image_bytes(40, 40))).save(p, format="WEBP")
    assert _decode(blur_data_url(p)).size == (4, 4)


def test_from_url():
    url = "https://cdn.example.com/a.png"
    session = FakeSession({url: (200, make_image_bytes(20, 10))})
    assert _decode(blur_data_url(url + "?sig=1", session=session)).size == (4, 2)
    assert session.calls == [url + "?sig=1"]


def test_failures_are_typed(tmp_path):
    with pytest.raises(PlaceholderFailure):
        blur_data_url(tmp_path / "missing.webp")
    with pytest.raises(PlaceholderFailure):
        blur_data_url_from_bytes(b"nope")
    with pytest.raises(PlaceholderFailure):
        blur_data_url("https://cdn.example.com/gone.png", session=FakeSession())
