"""
raster.py — bytes <-> RGBA pixel grid, plus packed 32-bit color helpers.

A RasterBuffer is a (H, W, 4) uint8 numpy array, row-major, top-left
origin. Stages never alias a buffer they were handed: they return a new one.
"""
from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Tuple, Union

import numpy as np
from numpy.typing import NDArray
from PIL import Image, UnidentifiedImageError

from errors import EncodeFailure, InvalidImage

try:
    from pillow_heif import register_heif_opener
    register_heif_opener()
except Exception:
    pass

log = logging.getLogger("dithercache.raster")

__all__ = [
    "RasterBuffer",
    "MAX_WIDTH",
    "fit_dimensions",
    "probe",
    "decode",
    "decode_file",
    "encode",
    "encode_raw",
    "pack_rgba",
    "unpack_rgba",
    "pack_argb",
    "unpack_argb",
    "rgba_to_argb",
    "argb_to_rgba",
]

RasterBuffer = NDArray[np.uint8]  # (H, W, 4) RGBA

MAX_WIDTH = 840


# =============== Packed colors ===============
# RGBA packing: 0xRRGGBBAA. ARGB packing: 0xAARRGGBB.

def pack_rgba(r: int, g: int, b: int, a: int = 255) -> int:
    return ((r & 0xFF) << 24) | ((g & 0xFF) << 16) | ((b & 0xFF) << 8) | (a & 0xFF)


def unpack_rgba(c: int) -> Tuple[int, int, int, int]:
    return (c >> 24) & 0xFF, (c >> 16) & 0xFF, (c >> 8) & 0xFF, c & 0xFF


def pack_argb(r: int, g: int, b: int, a: int = 255) -> int:
    return ((a & 0xFF) << 24) | ((r & 0xFF) << 16) | ((g & 0xFF) << 8) | (b & 0xFF)


def unpack_argb(c: int) -> Tuple[int, int, int, int]:
    """Returns (r, g, b, a)."""
    return (c >> 16) & 0xFF, (c >> 8) & 0xFF, c & 0xFF, (c >> 24) & 0xFF


def rgba_to_argb(c: int) -> int:
    return pack_argb(*unpack_rgba(c))


def argb_to_rgba(c: int) -> int:
    return pack_rgba(*unpack_argb(c))


# =============== Geometry ===============
def fit_dimensions(width: int, height: int, cap: int = MAX_WIDTH, axis: str = "width") -> Tuple[int, int]:
    """
    Target size for a `width` x `height` image. With axis="width" only the
    width is capped; with axis="longest" the longer side is. Never upscales.
    """
    if width <= 0 or height <= 0:
        raise InvalidImage(f"Invalid image dimensions: {width}x{height}")
    if axis == "longest" and height > width:
        if height <= cap:
            return width, height
        return max(1, int(round(width * cap / height))), cap
    if width <= cap:
        return width, height
    return cap, max(1, int(round(height * cap / width)))


# =============== Decode ===============
Source = Union[bytes, bytearray, memoryview, str, Path]


def _open(src: Source) -> Image.Image:
    try:
        if isinstance(src, (str, Path)):
            img = Image.open(src)
        else:
            img = Image.open(io.BytesIO(bytes(src)))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise InvalidImage(f"Failed to decode image: {e}") from e
    return img


def probe(src: Source) -> Tuple[int, int]:
    """Native (width, height) without decoding pixel data."""
    try:
        if isinstance(src, (str, Path)):
            with Image.open(src) as img:
                return img.size
        with Image.open(io.BytesIO(bytes(src))) as img:
            return img.size
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise InvalidImage(f"Failed to read image header: {e}") from e


def decode(src: Source, *, cap: int = MAX_WIDTH, axis: str = "width") -> Tuple[RasterBuffer, Tuple[int, int]]:
    """
    Decode bytes (or a file path, format sniffed from content) into an RGBA
    buffer resized to fit `cap`. Alpha is synthesized opaque when missing.
    Returns (buffer, (width, height)).
    """
    img = _open(src)
    w0, h0 = img.size
    tw, th = fit_dimensions(w0, h0, cap, axis)

    try:
        if img.mode != "RGBA":
            img = img.convert("RGBA")
        if (tw, th) != (w0, h0):
            img = img.resize((tw, th), Image.Resampling.LANCZOS)
    except (OSError, ValueError) as e:
        raise InvalidImage(f"Failed to convert image: {e}") from e

    buf = np.array(img, dtype=np.uint8)
    log.debug("Decoded %dx%d -> %dx%d", w0, h0, tw, th)
    return buf, (tw, th)


def decode_file(path: Path, **kwargs) -> Tuple[RasterBuffer, Tuple[int, int]]:
    """Decode a file on disk; the extension is ignored, content decides the format."""
    return decode(Path(path), **kwargs)


# =============== Encode ===============
def encode_raw(
    data: bytes,
    width: int,
    height: int,
    channels: int = 4,
    *,
    fmt: str = "WEBP",
    lossless: bool = False,
    quality: int = 90,
    effort: int = 6,
) -> bytes:
    """Encode raw interleaved 8-bit pixels. Only 4-channel input is accepted."""
    if channels != 4:
        raise EncodeFailure(f"Expected 4 channels, got {channels}")
    if len(data) != width * height * channels:
        raise EncodeFailure(f"Raw buffer is {len(data)} bytes, expected {width * height * channels}")
    try:
        img = Image.frombytes("RGBA", (width, height), bytes(data))
        out = io.BytesIO()
        if fmt.upper() == "WEBP":
            img.save(out, format="WEBP", lossless=lossless, quality=quality, method=effort)
        else:
            img.save(out, format=fmt.upper(), optimize=True)
    except (OSError, ValueError, KeyError) as e:
        raise EncodeFailure(f"Failed to encode {fmt}: {e}") from e
    return out.getvalue()


def encode(buf: RasterBuffer, fmt: str = "WEBP", *, lossless: bool = False, quality: int = 90, effort: int = 6) -> bytes:
    """
    Re-encode an RGBA buffer. Lossless max-effort is used for dithered
    output, lossy quality 90 for the plain path.
    """
    if buf.ndim != 3 or buf.dtype != np.uint8:
        raise EncodeFailure("expected uint8 (H,W,C) buffer")
    h, w, c = buf.shape
    return encode_raw(
        np.ascontiguousarray(buf).tobytes(), w, h, c,
        fmt=fmt, lossless=lossless, quality=quality, effort=effort,
    )
