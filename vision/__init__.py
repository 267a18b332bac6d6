"""Vision package exports."""

from vision.anomaly import (
    AnnotatedFrame,
    AnomalyCell,
    BoundingBox,
    ClassificationResult,
    ModelGeometry,
    ModelInfo,
)
from vision.anomaly_annotator import AnnotatorConfig, AnomalyAnnotator
from vision.grid_merger import build_occupancy_grid, merge

__all__ = [
    "AnnotatedFrame",
    "AnomalyCell",
    "BoundingBox",
    "ClassificationResult",
    "ModelGeometry",
    "ModelInfo",
    "AnnotatorConfig",
    "AnomalyAnnotator",
    "build_occupancy_grid",
    "merge",
]
