"""Prompt text for the downstream vision model."""

from __future__ import annotations

BASE_PROMPT = """This image was flagged by an anomaly detection system, the anomaly is flagged in red. Can you explain what is off in this picture?

Reply with a very short response."""


def resolve_prompt(configured: str | None) -> str:
    """Return the configured prompt, or the base prompt when unset."""

    if configured is None:
        return BASE_PROMPT
    return configured
