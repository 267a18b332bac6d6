"""Inbound control messages and per-frame trigger signals."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from core.errors import ControlInputError


class ControlKind(str, Enum):
    """Control messages accepted from the control surface."""

    ENABLE_CASCADE = "cascade-enable"
    DISABLE_CASCADE = "cascade-disable"
    SET_PROMPT = "prompt"
    SET_THRESHOLD = "threshold-override"


@dataclass(frozen=True)
class ControlEvent:
    """A parsed control message."""

    kind: ControlKind
    value: Any = None

    @property
    def targets_cascade(self) -> bool:
        return self.kind is not ControlKind.SET_THRESHOLD


@dataclass(frozen=True)
class FrameSignal:
    """Per-frame anomaly flag plus the latest annotated image."""

    anomaly_present: bool
    image: bytes | None = None
    mime_type: str = "image/jpeg"


def parse_control_message(name: str, payload: Any = None) -> ControlEvent:
    """Turn a named control message into a :class:`ControlEvent`.

    Raises:
        ControlInputError: Unknown message name or a prompt that is not text.
    """

    try:
        kind = ControlKind(str(name).strip())
    except ValueError as exc:
        raise ControlInputError(f"Unknown control message {name!r}") from exc

    if kind is ControlKind.SET_PROMPT:
        if not isinstance(payload, str):
            raise ControlInputError(f"Prompt must be text, got {type(payload).__name__}")
        return ControlEvent(kind=kind, value=payload)
    if kind is ControlKind.SET_THRESHOLD:
        return ControlEvent(kind=kind, value=payload)
    return ControlEvent(kind=kind)
