"""
fetcher.py — download, transform and cache remote images by content address.

ImageCache.process(url) is the only entry point the rendering layer needs.
It never raises: any failure degrades to the original URL with no preview.

Flow per URL:
    key -> cache hit?  -> placeholder -> done
        -> cache miss  -> download -> dither path | plain path
                       -> atomic write -> placeholder -> done
    any PipelineError  -> original URL
"""
from __future__ import annotations

import hashlib
import logging
import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union
from uuid import uuid4

import numpy as np
import requests

import raster
from config import PipelineConfig
from dithering import dither
from errors import FetchFailure, FilesystemFailure, PipelineError, PlaceholderFailure, ProcessingTimeout
from palettes import extract_palette, rng_from_seed
from placeholder import blur_data_url
from quantize import quantize

log = logging.getLogger("dithercache.fetcher")

__all__ = [
    "ProcessingResult",
    "Resolved",
    "Failed",
    "ImageCache",
    "strip_query",
    "image_key",
    "render_plain",
    "render_dithered",
]


# =============== Keys ===============
def strip_query(url: str) -> str:
    """Drop everything from the first '?' on; expiring tokens live there."""
    return url.split("?", 1)[0]


def image_key(url: str) -> str:
    """128-bit hex content address of a URL, stable across token rotation."""
    return hashlib.md5(strip_query(url).encode("utf-8"), usedforsecurity=False).hexdigest()


# =============== Results ===============
@dataclass(frozen=True)
class ProcessingResult:
    url: str
    blur_data_url: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        out = {"url": self.url}
        if self.blur_data_url is not None:
            out["blurDataURL"] = self.blur_data_url
        return out


@dataclass(frozen=True)
class Resolved:
    key: str
    path: Path
    public_url: str
    cached: bool
    blur_data_url: Optional[str] = None


@dataclass(frozen=True)
class Failed:
    key: str
    error: PipelineError


Outcome = Union[Resolved, Failed]


# =============== Transforms ===============
def render_plain(raw: bytes, config: PipelineConfig) -> bytes:
    """Resize (width cap, no upscaling) and re-encode lossy."""
    buf, _ = raster.decode(raw, cap=config.max_width, axis="width")
    return raster.encode(buf, "WEBP", lossless=False, quality=config.lossy_quality, effort=config.effort)


def render_dithered(
    src: Union[bytes, Path],
    config: PipelineConfig,
    rng: Optional[np.random.Generator] = None,
) -> bytes:
    """Decode, extract palette, dither, quantize, re-encode lossless."""
    if isinstance(src, Path):
        buf, (w, h) = raster.decode_file(src, cap=config.max_width, axis=config.resize_axis)
    else:
        buf, (w, h) = raster.decode(src, cap=config.max_width, axis=config.resize_axis)
    t0 = time.perf_counter()
    palette = extract_palette(
        buf, config.palette_size,
        iterations=config.kmeans_iterations,
        sample_cap=config.sample_cap,
        rng=rng,
    )
    dithered = dither(buf, config.dither_kernel, levels=config.dither_levels)
    out = quantize(dithered, palette)
    log.debug("Dithered %dx%d with %s in %.2fs", w, h, config.dither_kernel, time.perf_counter() - t0)
    return raster.encode(out, "WEBP", lossless=True, quality=config.lossless_quality, effort=config.effort)


# =============== Cache ===============
class ImageCache:
    """Content-addressed local cache of processed remote images."""

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        *,
        session: Optional[requests.Session] = None,
        seed: Optional[int] = None,
    ) -> None:
        self.config = config or PipelineConfig.from_env()
        self.cache_dir = Path(self.config.cache_dir)
        if session is None:
            session = requests.Session()
            session.headers.update({"User-Agent": self.config.user_agent})
        self._session = session
        self._rng = rng_from_seed(seed)
        self._rng_lock = threading.Lock()

        self._slots = threading.BoundedSemaphore(self.config.max_concurrent)
        self._inflight: Dict[str, Future] = {}
        self._inflight_lock = threading.Lock()
        self._cpu = self._new_cpu_pool()
        self._cpu_lock = threading.Lock()

    # ---- context management ----
    def __enter__(self) -> "ImageCache":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        with self._cpu_lock:
            self._cpu.shutdown(wait=False)
        self._session.close()

    # ---- layout ----
    def cache_path(self, key: str) -> Path:
        return self.cache_dir / f"{key}.{self.config.extension}"

    def scratch_path(self, key: str) -> Path:
        return self.cache_dir / f"temp_{key}.tmp"

    def public_url(self, key: str) -> str:
        return f"{self.config.public_prefix.rstrip('/')}/{key}.{self.config.extension}"

    # ---- boundary ----
    def process(self, url: str) -> ProcessingResult:
        """Local URL plus preview token, or the original URL on any failure."""
        try:
            outcome = self._single_flight(url)
        except Exception as e:
            log.exception("Unexpected error processing image %s: %s", url, e)
            return ProcessingResult(url=url)

        if isinstance(outcome, Failed):
            log.error("Error downloading image from %s [%s]: %s", url, outcome.error.kind, outcome.error)
            return ProcessingResult(url=url)
        return ProcessingResult(url=outcome.public_url, blur_data_url=outcome.blur_data_url)

    def process_many(self, urls: Iterable[str]) -> List[ProcessingResult]:
        """Process URLs on a bounded pool; results keep input order."""
        urls = list(urls)
        if not urls:
            return []
        with ThreadPoolExecutor(
            max_workers=min(self.config.max_concurrent, len(urls)), thread_name_prefix="dithercache-io"
        ) as ex:
            return list(ex.map(self.process, urls))

    # ---- single flight ----
    def _single_flight(self, url: str) -> Outcome:
        key = image_key(url)
        with self._inflight_lock:
            fut = self._inflight.get(key)
            owner = fut is None
            if owner:
                fut = Future()
                self._inflight[key] = fut
        if not owner:
            log.debug("Joining in-flight request for %s", key)
            return fut.result()

        try:
            outcome = self._resolve(key, url)
        except BaseException as e:
            fut.set_exception(e)
            raise
        else:
            fut.set_result(outcome)
            return outcome
        finally:
            with self._inflight_lock:
                self._inflight.pop(key, None)

    def _resolve(self, key: str, url: str) -> Outcome:
        path = self.cache_path(key)
        if path.exists():
            log.info("Cache hit: %s", path.name)
            return Resolved(key, path, self.public_url(key), cached=True, blur_data_url=self._placeholder(path))

        try:
            with self._slots:
                raw = self._download(url)
                if self.config.dither:
                    data = self._dither_path(key, raw)
                else:
                    data = self._timed(render_plain, raw, self.config)
                self._persist(path, data)
        except PipelineError as e:
            return Failed(key, e)

        log.info("Downloaded and %s image: %s", "dithered" if self.config.dither else "optimized", path.name)
        return Resolved(key, path, self.public_url(key), cached=False, blur_data_url=self._placeholder(path))

    # ---- stages ----
    def _download(self, url: str) -> bytes:
        log.info("Fetching: %s", url)
        try:
            r = self._session.get(url, timeout=self.config.fetch_timeout)
        except requests.RequestException as e:
            raise FetchFailure(f"Failed to download image: {e}") from e
        if not r.ok:
            raise FetchFailure(f"Failed to download image: {r.status_code} {r.reason}", status=r.status_code)
        raw = r.content
        if not raw:
            raise FetchFailure("Failed to download image: response body is empty", status=r.status_code)
        return raw

    def _dither_path(self, key: str, raw: bytes) -> bytes:
        # Decoding from a file lets Pillow sniff the real format from content.
        scratch = self.scratch_path(key)
        self._ensure_dir()
        try:
            try:
                scratch.write_bytes(raw)
            except OSError as e:
                raise FilesystemFailure(f"Could not write scratch file {scratch.name}: {e}") from e
            data = self._timed(render_dithered, scratch, self.config, self._child_rng())
        except BaseException:
            # Keep the original error; a leftover scratch file is only logged.
            try:
                scratch.unlink(missing_ok=True)
            except OSError as e:
                log.warning("Could not remove scratch file %s: %s", scratch.name, e)
            raise
        try:
            scratch.unlink(missing_ok=True)
        except OSError as e:
            raise FilesystemFailure(f"Could not remove scratch file {scratch.name}: {e}") from e
        return data

    def _persist(self, path: Path, data: bytes) -> None:
        self._ensure_dir()
        tmp = path.with_name(f".{path.name}.{uuid4().hex}.part")
        try:
            tmp.write_bytes(data)
            os.replace(tmp, path)
        except OSError as e:
            try:
                tmp.unlink(missing_ok=True)
            except OSError:
                log.warning("Could not remove partial file %s", tmp.name)
            raise FilesystemFailure(f"Could not write {path.name}: {e}") from e

    def _ensure_dir(self) -> None:
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemFailure(f"Could not create cache directory {self.cache_dir}: {e}") from e

    def _new_cpu_pool(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=self.config.max_concurrent, thread_name_prefix="dithercache-cpu")

    def _timed(self, fn: Callable[..., bytes], *args: Any) -> bytes:
        with self._cpu_lock:
            pool = self._cpu
            fut = pool.submit(fn, *args)
        try:
            return fut.result(timeout=self.config.process_timeout)
        except FuturesTimeout as e:
            if not fut.cancel():
                # A running task cannot be stopped. Retire its pool so the
                # stuck worker does not hold up images queued behind it.
                with self._cpu_lock:
                    if self._cpu is pool:
                        self._cpu = self._new_cpu_pool()
                        log.warning("Replaced CPU pool after %s timed out", fn.__name__)
                pool.shutdown(wait=False)
            raise ProcessingTimeout(f"{fn.__name__} exceeded {self.config.process_timeout:.0f}s") from e

    def _child_rng(self) -> np.random.Generator:
        with self._rng_lock:
            return np.random.default_rng(int(self._rng.integers(0, 2**63 - 1)))

    def _placeholder(self, path: Path) -> Optional[str]:
        try:
            return blur_data_url(path, self.config.placeholder_size)
        except PlaceholderFailure as e:
            log.warning("Placeholder skipped for %s: %s", path.name, e)
            return None
