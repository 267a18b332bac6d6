"""Tests for control message parsing."""

from __future__ import annotations

import pytest

from ai.control import ControlEvent, ControlKind, parse_control_message
from core.errors import ControlInputError


@pytest.mark.parametrize(
    ("name", "kind"),
    [
        ("cascade-enable", ControlKind.ENABLE_CASCADE),
        ("cascade-disable", ControlKind.DISABLE_CASCADE),
        (" cascade-enable ", ControlKind.ENABLE_CASCADE),
    ],
)
def test_toggle_messages_ignore_payload(name: str, kind: ControlKind) -> None:
    event = parse_control_message(name, {"ignored": True})

    assert event == ControlEvent(kind=kind)
    assert event.targets_cascade is True


def test_prompt_message_keeps_text() -> None:
    event = parse_control_message("prompt", "Is the label crooked?")

    assert event.kind is ControlKind.SET_PROMPT
    assert event.value == "Is the label crooked?"
    assert event.targets_cascade is True


def test_empty_prompt_is_allowed() -> None:
    assert parse_control_message("prompt", "").value == ""


def test_prompt_must_be_text() -> None:
    with pytest.raises(ControlInputError):
        parse_control_message("prompt", 42)


def test_threshold_override_passes_raw_value_through() -> None:
    event = parse_control_message("threshold-override", "3.5")

    assert event.kind is ControlKind.SET_THRESHOLD
    assert event.value == "3.5"
    assert event.targets_cascade is False


def test_unknown_message_is_rejected() -> None:
    with pytest.raises(ControlInputError):
        parse_control_message("reboot")
