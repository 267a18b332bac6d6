"""Debounced, single-flight trigger for downstream anomaly analysis.

The trigger is owned by one asyncio task. Frame signals and control events
reach it through a queue; decisions are taken only on its own timer so the
downstream call rate is independent of the camera frame rate.

Phases::

    IDLE --(poll tick, anomaly + enabled + prompt + budget)--> DEBOUNCING
    DEBOUNCING --(settle delay, still anomalous)--> REQUESTING
    DEBOUNCING --(settle delay, signal cleared)--> IDLE
    REQUESTING --(result, failure or timeout)--> IDLE

Leaving IDLE claims the trigger, so at most one request is ever in flight.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from enum import Enum
import time
from typing import Any, Callable, Mapping

from ai.control import ControlEvent, ControlKind, FrameSignal
from ai.event_bus import Event, EventBus
from ai.prompts import resolve_prompt
from ai.vision_client import VisionClient
from core.budgeting import RequestBudget
from core.errors import DownstreamCallError
from core.logging import log_cascade_event, logger


class TriggerPhase(str, Enum):
    """Lifecycle phase of one cascade cycle."""

    IDLE = "idle"
    DEBOUNCING = "debouncing"
    REQUESTING = "requesting"


@dataclass
class CascadeState:
    """Mutable cascade state, touched only by the trigger's owner task."""

    enabled: bool = False
    prompt: str = ""
    anomaly_seen: bool = False
    request_in_flight: bool = False
    pending_image: bytes | None = None
    pending_mime_type: str = "image/jpeg"

    @property
    def armed(self) -> bool:
        return self.anomaly_seen and self.enabled and bool(self.prompt)


@dataclass(frozen=True)
class CascadeConfig:
    """Timing and budget settings for the trigger."""

    enabled: bool = False
    prompt: str | None = None
    poll_interval_s: float = 0.5
    settle_delay_s: float = 0.5
    request_timeout_s: float = 30.0
    max_requests: int = 0
    window_s: float = 60.0

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "CascadeConfig":
        cascade_cfg = config.get("cascade") or {}
        budget_cfg = cascade_cfg.get("budget") or {}
        return cls(
            enabled=bool(cascade_cfg.get("enabled", False)),
            prompt=cascade_cfg.get("prompt"),
            poll_interval_s=max(0.01, float(cascade_cfg.get("poll_interval_s", 0.5))),
            settle_delay_s=max(0.0, float(cascade_cfg.get("settle_delay_s", 0.5))),
            request_timeout_s=max(0.01, float(cascade_cfg.get("request_timeout_s", 30.0))),
            max_requests=int(budget_cfg.get("max_requests", 0)),
            window_s=float(budget_cfg.get("window_s", 60.0)),
        )


class CascadeTrigger:
    """Decides when to ask the vision model about the latest annotated frame."""

    def __init__(
        self,
        client: VisionClient,
        event_bus: EventBus,
        config: CascadeConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or CascadeConfig()
        self.state = CascadeState(
            enabled=self.config.enabled,
            prompt=resolve_prompt(self.config.prompt),
        )
        self._client = client
        self._event_bus = event_bus
        self._clock = clock
        self._budget = RequestBudget(self.config.max_requests, self.config.window_s)
        self._phase = TriggerPhase.IDLE
        self._next_poll_at: float | None = None
        self._recheck_at: float | None = None
        self._throttle_logged = False
        self._queue: asyncio.Queue[ControlEvent | FrameSignal] = asyncio.Queue()
        self._request_task: asyncio.Task[None] | None = None
        self.requests_started = 0

    @property
    def phase(self) -> TriggerPhase:
        return self._phase

    @property
    def request_task(self) -> asyncio.Task[None] | None:
        return self._request_task

    def submit(self, message: ControlEvent | FrameSignal) -> None:
        """Queue a message for the owner task. Call from the event loop thread."""

        self._queue.put_nowait(message)

    def apply(self, message: ControlEvent | FrameSignal) -> None:
        if isinstance(message, FrameSignal):
            self._observe_frame(message)
        elif isinstance(message, ControlEvent):
            self._apply_control(message)
        else:
            logger.warning("[CASCADE] Ignoring unsupported message %r", message)

    def next_deadline(self, now: float) -> float:
        if self._phase is TriggerPhase.DEBOUNCING and self._recheck_at is not None:
            return min(self._recheck_at, self._next_poll_at or self._recheck_at)
        if self._next_poll_at is None:
            return now
        return self._next_poll_at

    def tick(self, now: float | None = None) -> TriggerPhase:
        """Advance the state machine to ``now``.

        Must run inside the event loop: entering REQUESTING spawns the
        downstream call as a task.
        """

        if now is None:
            now = self._clock()

        if self._next_poll_at is None:
            self._next_poll_at = now + self.config.poll_interval_s
            return self._phase

        poll_due = now >= self._next_poll_at
        while self._next_poll_at <= now:
            self._next_poll_at += self.config.poll_interval_s

        if self._phase is TriggerPhase.REQUESTING:
            return self._phase

        if self._phase is TriggerPhase.DEBOUNCING:
            if self._recheck_at is not None and now < self._recheck_at:
                return self._phase
            self._recheck_at = None
            if not self.state.armed:
                log_cascade_event("cleared", "Anomaly cleared while settling; no request")
                self._phase = TriggerPhase.IDLE
                return self._phase
            log_cascade_event("settled", "Anomaly persisted through settle delay")
            self._start_request(now)
            return self._phase

        if not poll_due or not self.state.armed:
            return self._phase

        if not self._budget.allow(now):
            if not self._throttle_logged:
                log_cascade_event(
                    "throttled",
                    f"Request budget of {self._budget.max_requests} per {self._budget.window_s:.0f}s "
                    f"used up; next slot in {self._budget.next_slot_at(now) - now:.1f}s",
                )
                self._throttle_logged = True
            return self._phase
        self._throttle_logged = False

        self._phase = TriggerPhase.DEBOUNCING
        self._recheck_at = now + self.config.settle_delay_s
        log_cascade_event("armed", f"Anomaly seen; re-checking in {self.config.settle_delay_s:.2f}s")
        return self._phase

    async def run(self) -> None:
        """Own the trigger until cancelled. Cancelling also cancels an in-flight call."""

        logger.info(
            "[CASCADE] Trigger loop started (poll=%.2fs settle=%.2fs timeout=%.1fs)",
            self.config.poll_interval_s,
            self.config.settle_delay_s,
            self.config.request_timeout_s,
        )
        try:
            while True:
                now = self._clock()
                timeout = max(0.0, self.next_deadline(now) - now)
                try:
                    message = await asyncio.wait_for(self._queue.get(), timeout=timeout)
                except asyncio.TimeoutError:
                    self.tick()
                    continue
                self.apply(message)
                while not self._queue.empty():
                    self.apply(self._queue.get_nowait())
                self.tick()
        finally:
            await self._cancel_request()
            logger.info("[CASCADE] Trigger loop stopped")

    def _observe_frame(self, signal: FrameSignal) -> None:
        self.state.anomaly_seen = signal.anomaly_present and not self.state.request_in_flight
        # an older frame may lack the current overlay; never send it
        self.state.pending_image = signal.image
        self.state.pending_mime_type = signal.mime_type

    def _apply_control(self, event: ControlEvent) -> None:
        if event.kind is ControlKind.ENABLE_CASCADE:
            self.state.enabled = True
            logger.info("[CASCADE] Enabled")
        elif event.kind is ControlKind.DISABLE_CASCADE:
            self.state.enabled = False
            logger.info("[CASCADE] Disabled")
        elif event.kind is ControlKind.SET_PROMPT:
            self.state.prompt = str(event.value or "")
            logger.info("[CASCADE] Prompt updated (%d chars)", len(self.state.prompt))
        else:
            logger.warning("[CASCADE] %s is not a cascade control message", event.kind.value)

    def _start_request(self, now: float) -> None:
        image = self.state.pending_image
        if image is None:
            self._notify("failed", "Downstream analysis skipped: no annotated frame available")
            self._phase = TriggerPhase.IDLE
            return

        self._phase = TriggerPhase.REQUESTING
        self.state.request_in_flight = True
        self.state.anomaly_seen = False
        self._budget.record(now)
        self.requests_started += 1
        self._request_task = asyncio.get_running_loop().create_task(
            self._run_request(self.state.prompt, image, self.state.pending_mime_type),
            name="cascade-request",
        )

    async def _run_request(self, prompt: str, image: bytes, mime_type: str) -> None:
        model = getattr(self._client, "model", "vision model")
        self._notify("started", f"Anomaly detected, asking {model}...")
        try:
            reply = await asyncio.wait_for(
                self._client.analyze(prompt, image, mime_type),
                timeout=self.config.request_timeout_s,
            )
        except asyncio.TimeoutError:
            self._notify(
                "failed",
                f"Downstream analysis failed: timed out after {self.config.request_timeout_s:.1f}s",
            )
        except DownstreamCallError as exc:
            self._notify("failed", f"Downstream analysis failed: {exc}")
        except Exception as exc:  # noqa: BLE001 - trigger must outlive client bugs
            logger.exception("[CASCADE] Vision client raised unexpectedly: %s", exc)
            self._notify("failed", f"Downstream analysis failed: {type(exc).__name__}")
        else:
            self._notify("result", f"Response: {reply}", reply=reply)
        finally:
            self.state.request_in_flight = False
            self._phase = TriggerPhase.IDLE
            self._request_task = None

    async def _cancel_request(self) -> None:
        task = self._request_task
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def _notify(self, stage: str, message: str, **metadata: object) -> None:
        log_cascade_event(stage, message)
        self._event_bus.publish(
            Event(
                source="cascade",
                kind="anomaly",
                content=message,
                metadata={"stage": stage, **metadata},
            )
        )
