"""Diagnostics routines for the downstream vision model."""

from __future__ import annotations

import os

from ai.vision_client import _validate_outbound_endpoint
from core.errors import DownstreamCallError
from diagnostics.models import DiagnosticResult, DiagnosticStatus


def probe(
    api_key: str | None = None,
    endpoint: str = "https://api.openai.com/v1/chat/completions",
) -> DiagnosticResult:
    """Check that the vision model can be reached with the current settings.

    Args:
        api_key: Optional API key override for testing.
        endpoint: Chat Completions endpoint to validate.

    Returns:
        Diagnostic result indicating AI readiness.
    """

    name = "ai"
    resolved_key = api_key or os.getenv("OPENAI_API_KEY")
    if not resolved_key:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details="Missing OPENAI_API_KEY",
        )

    try:
        _validate_outbound_endpoint(endpoint)
    except DownstreamCallError as exc:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=str(exc),
        )

    return DiagnosticResult(
        name=name,
        status=DiagnosticStatus.PASS,
        details="Vision model configuration present",
    )
