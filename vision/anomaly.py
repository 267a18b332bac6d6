"""Data models for visual anomaly results and localization.

Anomaly cells and model geometry are expressed in model-input pixel space.
Bounding boxes start out in grid-cell units and are rescaled explicitly with
:meth:`BoundingBox.scaled`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from core.errors import GeometryError


@dataclass(frozen=True)
class AnomalyCell:
    """Rectangle in model-input pixels that the detector flagged as anomalous."""

    x: int
    y: int
    width: int
    height: int
    score: float | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "AnomalyCell":
        """Build a cell from one ``visual_anomaly_grid`` entry.

        Raises:
            GeometryError: A coordinate is missing or not an integer.
        """

        try:
            score = payload.get("value")
            return cls(
                x=int(payload["x"]),
                y=int(payload["y"]),
                width=int(payload["width"]),
                height=int(payload["height"]),
                score=float(score) if score is not None else None,
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise GeometryError(f"Malformed anomaly cell {payload!r}: {exc!r}") from exc


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box ``(x, y, w, h)``."""

    x: int
    y: int
    w: int
    h: int

    def scaled(self, sx: int, sy: int) -> "BoundingBox":
        return BoundingBox(x=self.x * sx, y=self.y * sy, w=self.w * sx, h=self.h * sy)

    def cells(self) -> set[tuple[int, int]]:
        """Return the ``(row, col)`` pairs this box covers."""

        return {
            (row, col)
            for row in range(self.y, self.y + self.h)
            for col in range(self.x, self.x + self.w)
        }


@dataclass(frozen=True)
class OverlayRect:
    """Padded and clamped rectangle in resized-image pixels."""

    x: float
    y: float
    w: float
    h: float


@dataclass(frozen=True)
class ModelGeometry:
    """Input geometry of the anomaly model."""

    input_width: int
    input_height: int
    channel_count: int = 3


@dataclass(frozen=True)
class ModelInfo:
    """Static description of the loaded detector model."""

    geometry: ModelGeometry
    project_owner: str = ""
    project_name: str = ""
    deploy_version: int | None = None
    labels: tuple[str, ...] = ()
    thresholds: tuple[Mapping[str, Any], ...] = ()

    @property
    def display_name(self) -> str:
        if self.project_owner:
            return f"{self.project_owner} / {self.project_name}"
        return self.project_name


@dataclass(frozen=True)
class ClassificationResult:
    """Detector output for one processed frame."""

    anomaly_cells: tuple[AnomalyCell, ...] = ()
    classification: Mapping[str, float] = field(default_factory=dict)
    visual_anomaly_max: float | None = None
    visual_anomaly_mean: float | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ClassificationResult":
        known = {"visual_anomaly_grid", "classification", "visual_anomaly_max", "visual_anomaly_mean"}
        anomaly_max = payload.get("visual_anomaly_max")
        anomaly_mean = payload.get("visual_anomaly_mean")
        try:
            cells = tuple(AnomalyCell.from_mapping(item) for item in payload.get("visual_anomaly_grid") or [])
            return cls(
                anomaly_cells=cells,
                classification=dict(payload.get("classification") or {}),
                visual_anomaly_max=float(anomaly_max) if anomaly_max is not None else None,
                visual_anomaly_mean=float(anomaly_mean) if anomaly_mean is not None else None,
                extra={key: value for key, value in payload.items() if key not in known},
            )
        except (TypeError, ValueError) as exc:
            raise GeometryError(f"Malformed classification result: {exc!r}") from exc

    @property
    def has_anomaly(self) -> bool:
        return len(self.anomaly_cells) > 0

    @property
    def cell_size(self) -> tuple[int, int] | None:
        """Grid cell size, taken from the first reported cell."""

        if not self.anomaly_cells:
            return None
        first = self.anomaly_cells[0]
        return first.width, first.height


@dataclass(frozen=True)
class AnnotatedFrame:
    """Outcome of one frame pipeline pass."""

    image: bytes
    mime_type: str
    anomaly_present: bool
    box_count: int = 0
