"""Per-frame glue between detector results, annotation and the cascade."""

from __future__ import annotations

import asyncio
import concurrent.futures
from datetime import datetime
from pathlib import Path
import time

from ai.cascade_trigger import CascadeTrigger
from ai.control import FrameSignal
from ai.event_bus import Event, EventBus
from core.errors import GeometryError, ImageDecodeError
from core.logging import logger
from vision.anomaly import AnnotatedFrame, ClassificationResult, ModelGeometry
from vision.anomaly_annotator import AnomalyAnnotator, sniff_mime_type


_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg", "image/gif": "gif", "image/webp": "webp", "image/bmp": "bmp"}


class FramePipeline:
    """Annotates each classified frame and feeds the cascade trigger."""

    def __init__(
        self,
        geometry: ModelGeometry,
        annotator: AnomalyAnnotator,
        trigger: CascadeTrigger,
        event_bus: EventBus,
        *,
        save_dir: Path | None = None,
    ) -> None:
        self._geometry = geometry
        self._annotator = annotator
        self._trigger = trigger
        self._event_bus = event_bus
        self._save_dir = save_dir
        self._save_index = 0
        self._save_executor: concurrent.futures.ThreadPoolExecutor | None = None
        if save_dir is not None:
            self._save_executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=1,
                thread_name_prefix="anomaly-image-save",
            )

    async def process(
        self,
        result: ClassificationResult,
        frame: bytes | None,
        time_ms: int | None = None,
    ) -> AnnotatedFrame | None:
        """Handle one detector result against the latest camera frame."""

        self._publish_classification(result, time_ms)

        if frame is None:
            self._trigger.submit(FrameSignal(anomaly_present=result.has_anomaly))
            return None

        snapshot = bytes(frame)
        anomaly_present = result.has_anomaly
        try:
            annotated, boxes = await asyncio.to_thread(
                self._annotator.annotate_regions,
                snapshot,
                result.anomaly_cells,
                self._geometry,
                result.cell_size,
            )
        except GeometryError as exc:
            logger.warning("[PIPELINE] Treating frame as clean, bad anomaly geometry: %s", exc)
            annotated, boxes = snapshot, []
            anomaly_present = False
        except ImageDecodeError as exc:
            logger.warning("[PIPELINE] Skipping undecodable frame: %s", exc)
            self._trigger.submit(FrameSignal(anomaly_present=False))
            return None

        mime_type = sniff_mime_type(annotated)
        self._trigger.submit(
            FrameSignal(anomaly_present=anomaly_present, image=annotated, mime_type=mime_type)
        )
        if anomaly_present:
            self._save_image_async(annotated, mime_type)
        return AnnotatedFrame(
            image=annotated,
            mime_type=mime_type,
            anomaly_present=anomaly_present,
            box_count=len(boxes),
        )

    def close(self) -> None:
        if self._save_executor is not None:
            self._save_executor.shutdown(wait=True)
            self._save_executor = None

    def _publish_classification(self, result: ClassificationResult, time_ms: int | None) -> None:
        self._event_bus.publish(
            Event(
                source="classification",
                kind="result",
                metadata={
                    "classification": dict(result.classification),
                    "anomaly_cells": len(result.anomaly_cells),
                    "visual_anomaly_max": result.visual_anomaly_max,
                    "visual_anomaly_mean": result.visual_anomaly_mean,
                    "time_ms": time_ms,
                },
                dedupe_key="classification",
            ),
            coalesce=True,
        )

    def _save_image_async(self, image: bytes, mime_type: str) -> None:
        if self._save_executor is None or self._save_dir is None:
            return
        self._save_index += 1
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        millis_part = int(time.time() * 1000) % 1000
        extension = _EXTENSIONS.get(mime_type, "img")
        filename = f"anomaly_{timestamp}_{millis_part:03d}_{self._save_index:06d}.{extension}"
        self._save_executor.submit(self._write_image, image, self._save_dir / filename)

    def _write_image(self, image: bytes, path: Path) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(image)
        except OSError as exc:
            logger.exception("[PIPELINE] Failed to save annotated frame to %s: %s", path, exc)
