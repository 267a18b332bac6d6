"""Diagnostics routines for the vision subsystem."""

from __future__ import annotations

from io import BytesIO

from PIL import Image

from core.errors import CascadeEngineError
from diagnostics.models import DiagnosticResult, DiagnosticStatus
from vision.anomaly import AnomalyCell, ModelGeometry
from vision.anomaly_annotator import AnomalyAnnotator


def probe() -> DiagnosticResult:
    """Annotate a synthetic frame to validate the imaging stack.

    Returns:
        Diagnostic result indicating annotation readiness.
    """

    name = "vision"
    buffer = BytesIO()
    Image.new("RGB", (64, 48), (40, 40, 40)).save(buffer, format="PNG")
    frame = buffer.getvalue()
    geometry = ModelGeometry(input_width=32, input_height=32)
    cells = [AnomalyCell(x=8, y=8, width=8, height=8)]

    try:
        annotated = AnomalyAnnotator().annotate(frame, cells, geometry, (8, 8))
        size = Image.open(BytesIO(annotated)).size
    except (CascadeEngineError, OSError) as exc:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"Annotation self-test failed: {exc}",
        )

    if size != (48, 48):
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details=f"Unexpected annotated size {size[0]}x{size[1]}",
        )
    return DiagnosticResult(
        name=name,
        status=DiagnosticStatus.PASS,
        details="Annotation self-test rendered 48x48 overlay",
    )
