"""Runtime control of the detector's learn-block anomaly threshold."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
import math
from typing import Any, Iterable, Mapping, Protocol

from ai.event_bus import Event, EventBus
from core.errors import ControlInputError
from core.logging import logger


ANOMALY_THRESHOLD_TYPE = "anomaly_gmm"


@dataclass(frozen=True)
class LearnBlockThreshold:
    """Anomaly threshold of one learning block in the detector."""

    id: int
    min_anomaly_score: float
    type: str = ANOMALY_THRESHOLD_TYPE


class DetectorBackend(Protocol):
    """The part of the detection runner that accepts threshold updates."""

    async def set_learn_block_threshold(self, threshold: LearnBlockThreshold) -> None: ...


def find_anomaly_threshold(thresholds: Iterable[Mapping[str, Any]]) -> LearnBlockThreshold | None:
    """Pick the first visual-anomaly threshold from model parameters."""

    for item in thresholds:
        if item.get("type") != ANOMALY_THRESHOLD_TYPE:
            continue
        try:
            return LearnBlockThreshold(
                id=int(item["id"]),
                min_anomaly_score=float(item["min_anomaly_score"]),
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("[THRESHOLD] Ignoring malformed threshold entry %r", item)
    return None


def parse_threshold_value(raw: Any) -> float:
    """Parse a threshold from a control payload.

    Raises:
        ControlInputError: Empty, non-numeric or NaN input.
    """

    if raw is None or isinstance(raw, bool) or (isinstance(raw, str) and not raw.strip()):
        raise ControlInputError(f"Threshold must be numeric, got {raw!r}")
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ControlInputError(f"Threshold must be numeric, got {raw!r}") from exc
    if math.isnan(value):
        raise ControlInputError("Threshold must not be NaN")
    return value


class ThresholdController:
    """Forwards threshold overrides and caches the confirmed value."""

    def __init__(
        self,
        backend: DetectorBackend | None,
        threshold: LearnBlockThreshold | None,
        event_bus: EventBus,
    ) -> None:
        self._backend = backend
        self._threshold = threshold
        self._event_bus = event_bus
        self._lock = asyncio.Lock()

    @property
    def can_set_threshold(self) -> bool:
        return self._backend is not None and self._threshold is not None

    @property
    def current(self) -> LearnBlockThreshold | None:
        return self._threshold

    async def apply(self, raw: Any) -> bool:
        """Forward a new threshold; returns True once the backend confirmed it."""

        if not self.can_set_threshold:
            logger.warning("[THRESHOLD] No adjustable anomaly threshold on this model")
            return False
        try:
            value = parse_threshold_value(raw)
        except ControlInputError as exc:
            logger.warning("[THRESHOLD] Ignoring override: %s", exc)
            return False

        async with self._lock:
            current = self._threshold
            if value == current.min_anomaly_score:
                return False

            logger.info(
                "[THRESHOLD] Updating threshold, now: %s, setting to: %s...",
                current.min_anomaly_score,
                value,
            )
            candidate = replace(current, min_anomaly_score=value)
            try:
                await self._backend.set_learn_block_threshold(candidate)
            except Exception as exc:  # noqa: BLE001 - keep the previous threshold
                logger.warning("[THRESHOLD] Failed to set threshold: %s", exc)
                return False

            self._threshold = candidate
        logger.info("[THRESHOLD] Updated threshold to %s", value)
        self._event_bus.publish(
            Event(
                source="threshold",
                kind="threshold",
                content=f"Threshold set to {value}",
                metadata={"id": candidate.id, "min_anomaly_score": value},
                dedupe_key="threshold",
            ),
            coalesce=True,
        )
        return True
