"""Render anomaly regions onto the original camera frame.

The detector reports anomalous cells in model-input pixels. The model sees a
centre crop of the camera frame with its own aspect ratio, so the frame is
cover-fitted to ``input size x scale_factor`` and the merged regions are drawn
there as padded outlines that never leave the canvas.
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
import math
from typing import Any, Mapping, Sequence

from PIL import Image, ImageDraw, ImageOps, UnidentifiedImageError

from core.errors import ImageDecodeError
from core.logging import logger
from vision.anomaly import AnomalyCell, BoundingBox, ModelGeometry, OverlayRect
from vision.grid_merger import build_occupancy_grid, merge


_MAGIC_MIME_TYPES: tuple[tuple[bytes, str], ...] = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"BM", "image/bmp"),
)


def sniff_mime_type(image: bytes) -> str:
    """Best-effort MIME type from magic bytes, defaulting to JPEG."""

    if image[:4] == b"RIFF" and image[8:12] == b"WEBP":
        return "image/webp"
    for magic, mime_type in _MAGIC_MIME_TYPES:
        if image.startswith(magic):
            return mime_type
    return "image/jpeg"


@dataclass(frozen=True)
class AnnotatorConfig:
    """Rendering options for anomaly overlays."""

    stroke_rgba: tuple[int, int, int, int] = (255, 0, 0, 128)
    jpeg_quality: int = 90

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "AnnotatorConfig":
        annotation_cfg = config.get("annotation") or {}
        stroke = tuple(int(channel) for channel in annotation_cfg.get("stroke_rgba") or cls.stroke_rgba)
        if len(stroke) == 3:
            stroke = (*stroke, 255)
        return cls(stroke_rgba=stroke)


@dataclass(frozen=True)
class CanvasScale:
    """Mapping from model-input pixels to the resized canvas."""

    factor: float
    width: int
    height: int

    @property
    def stroke_width(self) -> int:
        return math.floor(2 * self.factor)

    @property
    def stroke_offset(self) -> int:
        return math.ceil(1 * self.factor)


def compute_canvas_scale(image_size: tuple[int, int], geometry: ModelGeometry) -> CanvasScale:
    """Largest scale at which the model input fits inside the frame."""

    image_width, image_height = image_size
    factor = min(
        image_width / geometry.input_width,
        image_height / geometry.input_height,
    )
    return CanvasScale(
        factor=factor,
        width=round(geometry.input_width * factor),
        height=round(geometry.input_height * factor),
    )


def overlay_rect(box: BoundingBox, scale: CanvasScale) -> OverlayRect:
    """Pad a model-pixel box by the stroke width and clamp it into the canvas.

    The result satisfies ``stroke_offset <= origin`` and
    ``origin + extent + stroke_offset <= canvas`` on both axes.
    """

    stroke_width = scale.stroke_width
    offset = scale.stroke_offset

    x = (box.x - stroke_width) * scale.factor
    y = (box.y - stroke_width) * scale.factor
    w = (box.w + stroke_width * 2) * scale.factor
    h = (box.h + stroke_width * 2) * scale.factor

    x, w = _clamp_span(x, w, offset, scale.width)
    y, h = _clamp_span(y, h, offset, scale.height)
    return OverlayRect(x=x, y=y, w=w, h=h)


def _clamp_span(origin: float, extent: float, offset: int, limit: int) -> tuple[float, float]:
    upper = max(offset, limit - offset)
    origin = min(max(origin, offset), upper)
    if origin + extent + offset > limit:
        extent = limit - origin - offset
    return origin, max(extent, 0.0)


class AnomalyAnnotator:
    """Draws merged anomaly regions onto camera frames."""

    def __init__(self, config: AnnotatorConfig | None = None) -> None:
        self.config = config or AnnotatorConfig()

    def locate(
        self,
        anomaly_cells: Sequence[AnomalyCell],
        geometry: ModelGeometry,
        cell_size: tuple[int, int],
    ) -> list[BoundingBox]:
        """Merge anomaly cells into boxes expressed in model-input pixels."""

        grid = build_occupancy_grid(anomaly_cells, geometry, cell_size)
        cell_width, cell_height = cell_size
        return [box.scaled(cell_width, cell_height) for box in merge(grid)]

    def annotate(
        self,
        image: bytes,
        anomaly_cells: Sequence[AnomalyCell],
        geometry: ModelGeometry,
        cell_size: tuple[int, int] | None = None,
    ) -> bytes:
        """Return ``image`` with anomaly outlines, or unchanged when clean.

        Raises:
            ImageDecodeError: The image header cannot be read.
            GeometryError: The cells do not fit the model input grid.
        """

        annotated, _ = self.annotate_regions(image, anomaly_cells, geometry, cell_size)
        return annotated

    def annotate_regions(
        self,
        image: bytes,
        anomaly_cells: Sequence[AnomalyCell],
        geometry: ModelGeometry,
        cell_size: tuple[int, int] | None = None,
    ) -> tuple[bytes, list[BoundingBox]]:
        """Like :meth:`annotate`, also returning the merged model-pixel boxes."""

        if not anomaly_cells:
            return image, []
        if cell_size is None:
            cell_size = (anomaly_cells[0].width, anomaly_cells[0].height)

        source = self._open(image)
        scale = compute_canvas_scale(source.size, geometry)
        boxes = self.locate(anomaly_cells, geometry, cell_size)
        rects = [overlay_rect(box, scale) for box in boxes]

        canvas = ImageOps.fit(
            source.convert("RGBA"),
            (scale.width, scale.height),
            method=Image.Resampling.LANCZOS,
        )
        overlay = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(overlay)
        # PIL skips zero-width outlines; keep the overlay visible on small frames.
        line_width = max(1, scale.stroke_width)
        for rect in rects:
            draw.rectangle(
                (
                    round(rect.x),
                    round(rect.y),
                    round(rect.x + rect.w),
                    round(rect.y + rect.h),
                ),
                outline=self.config.stroke_rgba,
                width=line_width,
            )
        composited = Image.alpha_composite(canvas, overlay)

        logger.debug(
            "[ANNOTATE] %d cells -> %d regions (scale=%.3f canvas=%dx%d)",
            len(anomaly_cells),
            len(rects),
            scale.factor,
            scale.width,
            scale.height,
        )
        return self._encode(composited, source.format), boxes

    def _open(self, image: bytes) -> Image.Image:
        try:
            source = Image.open(BytesIO(image))
            source.load()
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            raise ImageDecodeError(f"Cannot decode frame: {exc}") from exc
        width, height = source.size
        if width <= 0 or height <= 0:
            raise ImageDecodeError(f"Frame has no usable size ({width}x{height})")
        return source

    def _encode(self, image: Image.Image, source_format: str | None) -> bytes:
        buffer = BytesIO()
        if source_format == "JPEG":
            image.convert("RGB").save(buffer, format="JPEG", quality=self.config.jpeg_quality)
        else:
            image.save(buffer, format="PNG")
        return buffer.getvalue()
