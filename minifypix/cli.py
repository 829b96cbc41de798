from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional

from .batch import process_batch
from .discovery import collect_paths, crawl_directory, filter_image_files, git_changed_files
from .errors import ConfigurationError, DiscoveryError
from .log import setup_logging
from .optimizer import SafeFileOptimizer
from .report import build_report, save_report
from .results import OptimizationResult
from .settings import RunSettings, load_config


APP_VERSION = "1.0.0"


def _parse_quality_range(text: str) -> list[float]:
    """
    Accept either:
      - "80-90"     (percent, pngquant style)
      - "0.8-0.9"
    """
    t = text.strip()
    if "-" not in t:
        raise argparse.ArgumentTypeError("expected MIN-MAX, e.g. 80-90")
    a, b = t.split("-", 1)
    try:
        lo, hi = float(a), float(b)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e
    if lo > 1 or hi > 1:
        lo, hi = lo / 100, hi / 100
    return [lo, hi]


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="minifypix",
        description="Shrink JPEG/PNG/GIF/SVG files in place (git changes or a directory tree)",
    )
    p.add_argument("paths", nargs="*", help="Files and/or folders to process (default: git changes)")
    p.add_argument("--version", action="store_true", help="Print version and exit")

    # Discovery
    p.add_argument("--destination", default=None, help="Optimize every image under this directory")
    p.add_argument(
        "--exclude",
        action="append",
        default=None,
        help="Skip directories whose path contains this text (repeatable, default: node_modules)",
    )
    p.add_argument(
        "--status",
        choices=["changed", "staged"],
        default=None,
        help="Which git changes to pick up (default: changed)",
    )

    # Output
    p.add_argument("--target", default=None, help="Also copy each optimized file into this directory")
    p.add_argument("--config", default=None, help="Config file (default: minifypix.config.json or package.json)")
    p.add_argument("--report", default=None, help="Write a JSON (or .csv) report")
    p.add_argument("--log-file", default=None, help="Also write DEBUG logs to this file")

    # Encoder knobs
    p.add_argument("--jpg-quality", type=int, default=None, help="JPEG quality (1-100), default 90")
    p.add_argument("--png-quality", type=_parse_quality_range, default=None, help="PNG quality range, default 80-90")
    p.add_argument("--gif-level", type=int, default=None, help="gifsicle optimization level (1-3), default 2")

    p.add_argument("--workers", type=int, default=None, help="Files optimized in parallel")

    verbosity = p.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Errors only")

    return p


def _merge_args(config: dict, args: argparse.Namespace) -> dict:
    merged = dict(config)

    if args.destination:
        merged["destination"] = args.destination
    if args.exclude:
        merged["exclude"] = args.exclude
    if args.status:
        merged["status"] = args.status
    if args.target:
        merged["target"] = args.target
    if args.workers is not None:
        merged["workers"] = args.workers

    for section, key, value in (
        ("jpg", "quality", args.jpg_quality),
        ("png", "quality", args.png_quality),
        ("gif", "optimization_level", args.gif_level),
    ):
        if value is not None:
            merged[section] = {**(merged.get(section) or {}), key: value}

    return merged


def _print_result(r: OptimizationResult) -> None:
    print(f"{r.file_path}: {r.original_size}B -> {r.optimized_size}B, saved {r.saving}B ({r.saving_percent})")


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(APP_VERSION)
        return 0

    setup_logging(
        "DEBUG" if args.verbose else "ERROR" if args.quiet else "WARNING",
        log_file=Path(args.log_file) if args.log_file else None,
    )

    cwd = Path.cwd()
    try:
        config = load_config(cwd, Path(args.config) if args.config else None)
        settings = RunSettings.from_mapping(_merge_args(config, args))
        optimizer = SafeFileOptimizer(settings.optimization_config(), cwd=cwd)
        # Validate overrides before touching any file
        optimizer.get_options()

        if args.paths:
            candidates = collect_paths([Path(p) for p in args.paths], settings.exclude)
        elif settings.destination is not None:
            candidates = crawl_directory(cwd / settings.destination, settings.exclude)
        else:
            candidates = git_changed_files(settings.status, cwd)
            if not candidates:
                print("No unstaged changes found")
                return 0
    except (ConfigurationError, DiscoveryError) as e:
        print(f"Error: {e}")
        return 1

    image_files = filter_image_files(candidates, settings.image_types)
    if not image_files:
        print("No matched image files found")
        return 0

    results, failures, summary = process_batch(
        image_files,
        optimizer,
        workers=settings.workers,
        on_result=_print_result,
    )

    if failures:
        print(f"\nSkipped {len(failures)} files due to errors:")
        for f in sorted(failures, key=lambda x: str(x.path)):
            print(f"- {f.path}\n  {f.reason}")

    print(
        f"DONE Optimization summary: {summary.optimized} files optimized, "
        f"total saving {summary.total_saving}B"
    )

    if args.report:
        report_path = cwd / args.report
        save_report(build_report(results, failures, summary), report_path)
        print("Report written:", report_path)

    return 0
