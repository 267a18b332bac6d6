"""Application wiring for the anomaly cascade runtime."""

from __future__ import annotations

import asyncio
import contextlib
from pathlib import Path
from typing import Any, Mapping

from ai.cascade_trigger import CascadeConfig, CascadeTrigger
from ai.control import parse_control_message
from ai.event_bus import EventBus
from ai.vision_client import OpenAIVisionClient, VisionClient
from core.errors import ControlInputError, GeometryError
from core.logging import logger
from vision.anomaly import AnnotatedFrame, ClassificationResult, ModelInfo
from vision.anomaly_annotator import AnnotatorConfig, AnomalyAnnotator
from vision.frame_pipeline import FramePipeline
from vision.threshold import DetectorBackend, ThresholdController, find_anomaly_threshold


class CascadeApp:
    """Composes the frame pipeline, cascade trigger and threshold control.

    Camera capture, the detection runner and the control transport are
    collaborators: they call :meth:`on_classification` and
    :meth:`handle_control`, and drain :attr:`event_bus`.
    """

    def __init__(
        self,
        model: ModelInfo,
        config: Mapping[str, Any],
        *,
        vision_client: VisionClient | None = None,
        detector_backend: DetectorBackend | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.model = model
        self.event_bus = event_bus or EventBus()
        self.trigger = CascadeTrigger(
            vision_client or OpenAIVisionClient.from_config(config),
            self.event_bus,
            CascadeConfig.from_config(config),
        )
        self.threshold = ThresholdController(
            detector_backend,
            find_anomaly_threshold(model.thresholds),
            self.event_bus,
        )

        annotation_cfg = config.get("annotation") or {}
        save_dir = Path(annotation_cfg["save_dir"]) if annotation_cfg.get("save_images") else None
        self.pipeline = FramePipeline(
            model.geometry,
            AnomalyAnnotator(AnnotatorConfig.from_config(config)),
            self.trigger,
            self.event_bus,
            save_dir=save_dir,
        )
        self._trigger_task: asyncio.Task[None] | None = None

    def start(self) -> None:
        """Launch the trigger loop on the running event loop."""

        if self._trigger_task is not None and not self._trigger_task.done():
            return
        geometry = self.model.geometry
        logger.info(
            "Starting cascade for %s (model input %dx%d px, %d channels)",
            self.model.display_name or "unnamed project",
            geometry.input_width,
            geometry.input_height,
            geometry.channel_count,
        )
        self._trigger_task = asyncio.get_running_loop().create_task(
            self.trigger.run(),
            name="cascade-trigger",
        )

    async def stop(self) -> None:
        task = self._trigger_task
        self._trigger_task = None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.pipeline.close()

    async def on_classification(
        self,
        result: ClassificationResult | Mapping[str, Any],
        frame: bytes | None,
        time_ms: int | None = None,
    ) -> AnnotatedFrame | None:
        if not isinstance(result, ClassificationResult):
            try:
                result = ClassificationResult.from_mapping(result)
            except GeometryError as exc:
                logger.warning("[PIPELINE] Treating frame as clean, malformed detector output: %s", exc)
                result = ClassificationResult()
        return await self.pipeline.process(result, frame, time_ms)

    async def handle_control(self, name: str, payload: Any = None) -> bool:
        """Route a named control message; malformed messages are logged and dropped."""

        try:
            event = parse_control_message(name, payload)
        except ControlInputError as exc:
            logger.warning("Ignoring control message: %s", exc)
            return False

        if event.targets_cascade:
            self.trigger.submit(event)
            return True
        return await self.threshold.apply(event.value)

    def hello_payload(self) -> dict[str, Any]:
        """What a freshly connected control surface needs to render."""

        current = self.threshold.current
        return {
            "projectName": self.model.display_name,
            "canSetThreshold": self.threshold.can_set_threshold,
            "defaultThreshold": current.min_anomaly_score if current is not None else None,
            "cascadeEnabled": self.trigger.state.enabled,
            "prompt": self.trigger.state.prompt,
        }
