"""CLI entry point for viewfinder-core.

Provides the ``viewfinder`` console script with subcommands:

- ``analyze``: Run the live analyzers on a still image
- ``capture``: Run a capture request against the digital twin camera

Usage::

    # Histogram and zebra/peaking summary of a photo
    viewfinder analyze photo.jpg --grid 32x18 --zebra 245

    # Full result as JSON
    viewfinder analyze photo.jpg --json

    # HDR capture with a narrow device range and a failing +1 shot
    viewfinder capture --range=-1:1 --fail-index 1 --output-dir ./out

Exit codes: 0 success, 1 capture did not save an image, 2 usage or input
error.
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from viewfinder import __version__
from viewfinder.analysis.frame import LumaFrame
from viewfinder.analysis.worker import FrameAnalysis
from viewfinder.config import PipelineFactory, ViewfinderConfig
from viewfinder.devices.capture import CaptureMode, CaptureOutcome
from viewfinder.devices.exposure import ExposureRange
from viewfinder.drivers.twin import DEFAULT_TWIN_RANGE, DigitalTwinCameraConfig
from viewfinder.errors import DecodeError
from viewfinder.observability import configure_logging, get_logger

logger = get_logger(__name__)

PROG_NAME = "viewfinder"

EXIT_OK = 0
EXIT_NOT_SAVED = 1
EXIT_USAGE = 2


def _parse_grid(text: str) -> tuple[int, int]:
    """Parse ``WxH`` into a positive ``(width, height)`` pair.

    Example:
        >>> _parse_grid("64x36")
        (64, 36)
    """
    try:
        width_text, height_text = text.lower().split("x")
        width, height = int(width_text), int(height_text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"grid must look like 64x36, got {text!r}") from None
    if width <= 0 or height <= 0:
        raise argparse.ArgumentTypeError(f"grid dimensions must be positive, got {text!r}")
    return width, height


def _parse_range(text: str) -> ExposureRange | None:
    """Parse ``LO:HI`` into an ExposureRange, or ``none`` into None.

    Example:
        >>> _parse_range("-1:1")
        ExposureRange(lower=-1, upper=1)
    """
    if text.lower() == "none":
        return None
    try:
        lower_text, upper_text = text.split(":")
        return ExposureRange(int(lower_text), int(upper_text))
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"range must look like -2:2 (or 'none'), got {text!r}"
        ) from None


def _build_parser() -> argparse.ArgumentParser:
    """Create the argument parser with both subcommands."""
    parser = argparse.ArgumentParser(
        prog=PROG_NAME,
        description="Viewfinder analysis and HDR bracket capture",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        help="Minimum log level written to stderr (default: WARNING)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Write logs as JSON lines",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Analyze subcommand
    analyze = subparsers.add_parser("analyze", help="Analyse a still image as a viewfinder frame")
    analyze.add_argument("image", type=Path, help="Image file (converted to luma)")
    analyze.add_argument(
        "--grid",
        type=_parse_grid,
        default=None,
        metavar="WxH",
        help="Zebra/peaking grid size (default: 64x36)",
    )
    analyze.add_argument("--zebra", type=int, default=None, help="Zebra threshold 0-255")
    analyze.add_argument("--peaking", type=float, default=None, help="Peaking threshold")
    analyze.add_argument("--json", action="store_true", help="Print full result as JSON")

    # Capture subcommand
    capture = subparsers.add_parser("capture", help="Capture with the digital twin camera")
    capture.add_argument(
        "--mode",
        type=CaptureMode,
        default=None,
        choices=list(CaptureMode),
        metavar="{" + ",".join(m.value for m in CaptureMode) + "}",
        help="Capture mode (default: hdr)",
    )
    capture.add_argument(
        "--output-dir", type=Path, default=None, help="Directory for saved images"
    )
    capture.add_argument(
        "--range",
        dest="exposure_range",
        type=_parse_range,
        default=DEFAULT_TWIN_RANGE,
        metavar="LO:HI",
        help="Simulated exposure range, or 'none' (default: -4:4)",
    )
    capture.add_argument(
        "--fail-index",
        type=int,
        action="append",
        default=[],
        metavar="N",
        help="Exposure index at which the simulated capture fails (repeatable)",
    )
    capture.add_argument("--json", action="store_true", help="Print outcome as JSON")
    return parser


def _analysis_to_dict(result: FrameAnalysis) -> dict[str, Any]:
    """Full JSON-compatible view of an analysis result."""
    return {
        "width": result.width,
        "height": result.height,
        "duration_ms": result.duration_ms,
        "histogram": result.histogram.as_list(),
        "zebra": {
            "grid": [result.zebra.grid_width, result.zebra.grid_height],
            "threshold": result.zebra.threshold,
            "flagged": int(result.zebra.cells.sum()),
            "cells": result.zebra.cells.astype(int).tolist(),
        },
        "peaking": {
            "grid": [result.peaking.grid_width, result.peaking.grid_height],
            "threshold": result.peaking.threshold,
            "flagged": int(result.peaking.mask().sum()),
            "cells": [[round(v, 3) for v in row] for row in result.peaking.cells.tolist()],
        },
    }


def _print_analysis(result: FrameAnalysis) -> None:
    """Human readable analysis summary."""
    hist = result.histogram
    zebra = result.zebra
    peaking = result.peaking
    print(f"frame:      {result.width}x{result.height} ({hist.total} samples)")
    print(f"histogram:  peak at {hist.peak_bucket}, {hist.clipped_fraction():.2%} clipped")
    print(
        f"zebra:      {int(zebra.cells.sum())}/{zebra.cell_count} cells "
        f">= {zebra.threshold:g}"
    )
    print(
        f"peaking:    {int(peaking.mask().sum())}/{peaking.cell_count} cells "
        f">= {peaking.threshold:g} (max {float(peaking.cells.max()):.1f})"
    )
    print(f"analysis:   {result.duration_ms:.2f} ms")


def run_analyze(args: argparse.Namespace) -> int:
    """Handle ``viewfinder analyze``.

    Returns:
        EXIT_OK, or EXIT_USAGE if the image or settings are invalid.
    """
    from viewfinder.utils.image import load_luma

    overrides: dict[str, Any] = {}
    if args.grid is not None:
        overrides["grid_width"], overrides["grid_height"] = args.grid
    if args.zebra is not None:
        overrides["zebra_threshold"] = args.zebra
    if args.peaking is not None:
        overrides["peaking_threshold"] = args.peaking

    try:
        config = ViewfinderConfig(**overrides)
        luma = load_luma(args.image)
    except (ValueError, DecodeError) as e:
        print(f"{PROG_NAME}: error: {e}", file=sys.stderr)
        return EXIT_USAGE

    worker = PipelineFactory(config).create_worker()
    result = worker.analyse(LumaFrame.from_array(luma))

    if args.json:
        print(json.dumps(_analysis_to_dict(result)))
    else:
        _print_analysis(result)
    return EXIT_OK


def _print_outcome(outcome: CaptureOutcome) -> None:
    """Human readable capture outcome."""
    print(f"mode:   {outcome.mode.value}")
    print(f"status: {outcome.status.value}")
    print(f"shots:  {outcome.shots_captured}/{outcome.shots_requested}")
    if outcome.location:
        print(f"saved:  {outcome.location}")
    if outcome.error:
        print(f"reason: {outcome.error}")


def run_capture(args: argparse.Namespace) -> int:
    """Handle ``viewfinder capture``.

    Returns:
        EXIT_OK if an image was saved, EXIT_NOT_SAVED otherwise, EXIT_USAGE
        for invalid settings.
    """
    overrides: dict[str, Any] = {}
    if args.output_dir is not None:
        overrides["output_dir"] = args.output_dir
    try:
        config = ViewfinderConfig(**overrides)
    except ValueError as e:
        print(f"{PROG_NAME}: error: {e}", file=sys.stderr)
        return EXIT_USAGE

    factory = PipelineFactory(config)
    camera = factory.create_camera(
        DigitalTwinCameraConfig(
            exposure_range=args.exposure_range,
            fail_indices=frozenset(args.fail_index),
        )
    )
    stats = factory.create_stats()
    pipeline = factory.create_pipeline(camera, stats=stats)
    outcome = pipeline.capture(args.mode or config.default_mode)

    if args.json:
        payload = outcome.to_dict()
        payload["exposure_history"] = camera.exposure_history
        payload["stats"] = stats.get_summary().to_dict()
        print(json.dumps(payload))
    else:
        _print_outcome(outcome)
    return EXIT_OK if outcome.saved else EXIT_NOT_SAVED


def main(argv: Sequence[str] | None = None) -> int:
    """Main CLI entry point for viewfinder.

    Args:
        argv: Arguments without the program name. None reads ``sys.argv``.

    Returns:
        Process exit code.

    Raises:
        SystemExit: On --help, --version or argument parsing errors
            (code 2 for the latter).
    """
    args = _build_parser().parse_args(argv)
    configure_logging(level=args.log_level, json_format=args.log_json, force=True)
    logger.debug("CLI invoked", command=args.command)

    if args.command == "analyze":
        return run_analyze(args)
    return run_capture(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
