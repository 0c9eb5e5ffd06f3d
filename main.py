from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

import requests

import raster
from config import PipelineConfig
from dithering import KERNELS
from errors import FetchFailure, PipelineError
from fetcher import ImageCache, image_key, render_dithered, render_plain
from palettes import rng_from_seed

# =============== Logging ===============
log = logging.getLogger("dithercache")


def setup_logging(verbosity: int = 0) -> None:
    level = [logging.WARNING, logging.INFO, logging.DEBUG][min(verbosity, 2)]
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%H:%M:%S",
    )


# =============== Config ===============
def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    """Environment first, then any flag the user actually passed."""
    cfg = PipelineConfig.from_env()
    return cfg.with_overrides(
        dither=args.dither,
        cache_dir=args.cache_dir,
        public_prefix=getattr(args, "public_prefix", None),
        max_width=args.max_width,
        palette_size=args.colors,
        dither_kernel=args.kernel,
        max_concurrent=getattr(args, "workers", None),
        process_timeout=getattr(args, "timeout", None),
    )


def _read_source(src: str, timeout: float = 30.0) -> bytes:
    if src.lower().startswith(("http://", "https://")):
        try:
            r = requests.get(src, timeout=timeout)
        except requests.RequestException as e:
            raise FetchFailure(f"Failed to download image: {e}") from e
        if not r.ok:
            raise FetchFailure(f"Failed to download image: {r.status_code} {r.reason}", status=r.status_code)
        return r.content
    return Path(src).read_bytes()


# =============== CLI ===============
def _add_pipeline_args(p: argparse.ArgumentParser) -> None:
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--dither", dest="dither", action="store_true", default=None,
                      help="Palette + error-diffusion path (overrides DITHER_IMAGES).")
    mode.add_argument("--no-dither", dest="dither", action="store_false",
                      help="Plain resize + lossy path (overrides DITHER_IMAGES).")
    p.add_argument("--cache-dir", type=Path, default=None, help="Cache directory (default: public/images).")
    p.add_argument("--max-width", type=int, default=None, help="Maximum output width (default: 840).")
    p.add_argument("--colors", type=int, default=None, help="Palette size for dithering (default: 16).")
    p.add_argument("--kernel", choices=KERNELS.names(), default=None, help="Error-diffusion kernel.")
    p.add_argument("--seed", type=int, default=None, help="RNG seed for palette extraction.")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Cache remote images locally as compact (optionally dithered) WebP")
    p.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v, -vv).")

    sub = p.add_subparsers(dest="cmd", required=True)

    rp = sub.add_parser("run", help="Process one or more image URLs and print JSON results.")
    rp.add_argument("urls", nargs="+", help="Remote image URLs.")
    _add_pipeline_args(rp)
    rp.add_argument("--public-prefix", default=None, help="URL prefix for cached files (default: /images).")
    rp.add_argument("--workers", type=int, default=None, help="Max images processed at once (default: 4).")
    rp.add_argument("--timeout", type=float, default=None, help="Decode/encode timeout in seconds.")
    rp.set_defaults(func=cmd_run)

    kp = sub.add_parser("key", help="Print the cache key of a URL.")
    kp.add_argument("url")
    kp.set_defaults(func=cmd_key)

    bp = sub.add_parser("bench", help="Time the transform on a URL or local file (nothing is cached).")
    bp.add_argument("--url", required=True, help="HTTP(S) URL or local path.")
    bp.add_argument("--runs", type=int, default=3)
    _add_pipeline_args(bp)
    bp.set_defaults(func=cmd_bench)

    lp = sub.add_parser("kernels", help="List error-diffusion kernels.")
    lp.set_defaults(func=cmd_kernels)

    return p


# =============== Commands ===============
def cmd_run(args: argparse.Namespace) -> int:
    cfg = config_from_args(args)
    log.info("Processing %d image(s), dither=%s, cache=%s", len(args.urls), cfg.dither, cfg.cache_dir)
    with ImageCache(cfg, seed=args.seed) as cache:
        results = cache.process_many(args.urls)
    for res in results:
        print(json.dumps(res.to_dict()))
    failed = sum(1 for u, r in zip(args.urls, results) if r.url == u)
    if failed:
        log.warning("%d of %d image(s) fell back to the original URL", failed, len(results))
    return 0


def cmd_key(args: argparse.Namespace) -> int:
    print(image_key(args.url))
    return 0


def cmd_bench(args: argparse.Namespace) -> int:
    cfg = config_from_args(args)
    try:
        raw = _read_source(args.url)
        w, h = raster.probe(raw)
        rng = rng_from_seed(args.seed)
        times = []
        size = 0
        for _ in range(max(1, args.runs)):
            t0 = time.perf_counter()
            out = render_dithered(raw, cfg, rng) if cfg.dither else render_plain(raw, cfg)
            times.append(time.perf_counter() - t0)
            size = len(out)
    except (PipelineError, OSError) as e:
        log.error("Bench failed: %s", e)
        return 1

    avg = sum(times) / len(times)
    print(
        f"{'dither/' + cfg.dither_kernel if cfg.dither else 'plain'} {w}x{h}: {len(times)} run(s) — "
        f"avg {avg*1000:.2f} ms, min {min(times)*1000:.2f} ms, max {max(times)*1000:.2f} ms, "
        f"{size} bytes"
    )
    return 0


def cmd_kernels(_args: argparse.Namespace) -> int:
    print("Available kernels:", ", ".join(KERNELS.names()) or "(none)")
    return 0


# =============== Entry ===============
def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
