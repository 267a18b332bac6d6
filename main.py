"""Command-line entry point for the anomaly cascade tools."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys

from config import ConfigController
from core.errors import CascadeEngineError
from core.logging import enable_file_logging, logger
from vision.anomaly import AnomalyCell, ModelGeometry
from vision.anomaly_annotator import AnnotatorConfig, AnomalyAnnotator


def configure_logging(level_name: str) -> None:
    """Configure application logging."""

    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.setLevel(level)


def _parse_size(value: str) -> tuple[int, int]:
    try:
        width, height = (int(part) for part in value.lower().split("x", 1))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected WIDTHxHEIGHT, got {value!r}") from exc
    if width <= 0 or height <= 0:
        raise argparse.ArgumentTypeError(f"Size must be positive, got {value!r}")
    return width, height


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Raw command-line arguments.

    Returns:
        Parsed arguments namespace.
    """

    parser = argparse.ArgumentParser(
        description="Anomaly localization and cascade tooling."
    )
    parser.add_argument(
        "--diagnostics",
        action="store_true",
        help="Run diagnostics probes and exit.",
    )
    subparsers = parser.add_subparsers(dest="command")

    annotate = subparsers.add_parser(
        "annotate",
        help="Draw anomaly regions from a JSON cell list onto one image.",
    )
    annotate.add_argument("image", type=Path, help="Camera frame to annotate.")
    annotate.add_argument(
        "--cells",
        type=Path,
        required=True,
        help="JSON file with a list of {x, y, width, height} cells in model pixels.",
    )
    annotate.add_argument(
        "--input-size",
        type=_parse_size,
        required=True,
        help="Model input size as WIDTHxHEIGHT, e.g. 96x96.",
    )
    annotate.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Where to write the annotated image (defaults to <image>.annotated<suffix>).",
    )
    return parser.parse_args(argv)


def run_annotate(args: argparse.Namespace, config: dict) -> int:
    try:
        cells_payload = json.loads(args.cells.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.error("Cannot read cells from %s: %s", args.cells, exc)
        return 1
    if isinstance(cells_payload, dict):
        cells_payload = cells_payload.get("visual_anomaly_grid") or []
    if not isinstance(cells_payload, list):
        logger.error("Cells file %s must hold a list of cells", args.cells)
        return 1

    width, height = args.input_size
    geometry = ModelGeometry(input_width=width, input_height=height)
    annotator = AnomalyAnnotator(AnnotatorConfig.from_config(config))
    try:
        cells = [AnomalyCell.from_mapping(item) for item in cells_payload]
        annotated = annotator.annotate(args.image.read_bytes(), cells, geometry)
    except (CascadeEngineError, OSError) as exc:
        logger.error("Annotation failed: %s", exc)
        return 1

    output = args.output or args.image.with_name(f"{args.image.stem}.annotated{args.image.suffix}")
    output.write_bytes(annotated)
    logger.info("Wrote %s (%d cells)", output, len(cells))
    return 0


def main(argv: list[str] | None = None) -> int:
    """Application entry point.

    Args:
        argv: Optional list of command-line arguments.

    Returns:
        Process exit code.
    """

    if argv is None:
        argv = sys.argv[1:]

    config = ConfigController.get_instance().get_config()
    configure_logging(config.get("logging_level", "INFO"))
    if config.get("file_logging_enabled"):
        log_file_path = Path(config["log_file"])
        enable_file_logging(log_file_path)
        logger.info("Writing logs to %s", log_file_path)

    args = parse_args(argv)
    if args.diagnostics:
        from diagnostics import default_probes, format_results, has_failures, run_diagnostics

        results = run_diagnostics(default_probes())
        print(format_results(results))
        return 1 if has_failures(results) else 0

    if args.command == "annotate":
        return run_annotate(args, config)

    parse_args(["--help"])
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
