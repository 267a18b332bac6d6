"""Command-line entry point for running diagnostics."""

from __future__ import annotations

import argparse
from pathlib import Path
import shutil
import tempfile

from diagnostics.runner import default_probes, format_results, has_failures, run_diagnostics


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""

    parser = argparse.ArgumentParser(description="Run diagnostics probes.")
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Run probes against a temporary copy of the default config and a dummy API key.",
    )
    parser.add_argument(
        "--base-dir",
        type=Path,
        default=None,
        help="Directory holding config/default.yaml (defaults to the working directory).",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Run diagnostics and return an exit code."""

    args = parse_args(argv)

    if args.offline:
        with tempfile.TemporaryDirectory() as tmp_dir:
            tmp_base = Path(tmp_dir)
            config_dir = tmp_base / "config"
            config_dir.mkdir(parents=True, exist_ok=True)
            source_default = (args.base_dir or Path.cwd()) / "config" / "default.yaml"
            if source_default.exists():
                shutil.copy(source_default, config_dir / "default.yaml")
            else:
                (config_dir / "default.yaml").write_text("{}", encoding="utf-8")
            results = run_diagnostics(default_probes(base_dir=tmp_base, api_key="offline-test"))
    else:
        results = run_diagnostics(default_probes(base_dir=args.base_dir))

    print(format_results(results))
    return 1 if has_failures(results) else 0


if __name__ == "__main__":
    raise SystemExit(main())
