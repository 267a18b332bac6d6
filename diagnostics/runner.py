"""Diagnostics runner utilities."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from pathlib import Path

from core.logging import logger as LOGGER
from diagnostics.models import DiagnosticResult, DiagnosticStatus


Probe = Callable[[], DiagnosticResult]


def format_results(results: Iterable[DiagnosticResult]) -> str:
    """Return a human-friendly diagnostics report."""

    lines = ["Diagnostics report", "-" * 60]
    for result in results:
        lines.append(f"[{result.status.value}] {result.name}: {result.details}")
    lines.append("-" * 60)
    return "\n".join(lines)


def has_failures(results: Iterable[DiagnosticResult]) -> bool:
    return any(result.failed for result in results)


def default_probes(base_dir: Path | None = None, api_key: str | None = None) -> list[Probe]:
    """Probes for every subsystem, optionally against an offline base dir."""

    from ai.diagnostics import probe as ai_probe
    from config.diagnostics import probe as config_probe
    from core.diagnostics import probe as core_probe
    from vision.diagnostics import probe as vision_probe

    def config_probe_with_base() -> DiagnosticResult:
        return config_probe(base_dir=base_dir)

    def ai_probe_with_key() -> DiagnosticResult:
        return ai_probe(api_key=api_key)

    return [config_probe_with_base, ai_probe_with_key, core_probe, vision_probe]


def run_diagnostics(probes: Iterable[Probe]) -> list[DiagnosticResult]:
    """Run diagnostics probes and return results."""

    results: list[DiagnosticResult] = []
    for probe in probes:
        try:
            result = probe()
        except Exception as exc:  # noqa: BLE001 - diagnostics must keep running
            LOGGER.exception("Probe failed: %s", probe)
            result = DiagnosticResult(
                name=getattr(probe, "__name__", "unknown_probe"),
                status=DiagnosticStatus.FAIL,
                details=f"Probe raised exception: {exc}",
            )
        results.append(result)
    return results
