"""Tests for anomaly overlay geometry and rendering."""

from __future__ import annotations

from io import BytesIO

import pytest
from PIL import Image

from core.errors import GeometryError, ImageDecodeError
from vision.anomaly import AnomalyCell, BoundingBox, ModelGeometry
from vision.anomaly_annotator import (
    AnnotatorConfig,
    AnomalyAnnotator,
    compute_canvas_scale,
    overlay_rect,
    sniff_mime_type,
)


MODEL = ModelGeometry(input_width=96, input_height=96)


def _encode(size: tuple[int, int], color=(40, 40, 40), fmt: str = "PNG") -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def test_no_cells_returns_input_unchanged() -> None:
    frame = _encode((640, 480))

    assert AnomalyAnnotator().annotate(frame, [], MODEL, (12, 12)) is frame


def test_no_cells_skips_decoding_entirely() -> None:
    garbage = b"definitely not an image"

    assert AnomalyAnnotator().annotate(garbage, [], MODEL) == garbage


def test_canvas_scale_fits_model_inside_frame() -> None:
    scale = compute_canvas_scale((640, 480), MODEL)

    assert scale.factor == pytest.approx(5.0)
    assert (scale.width, scale.height) == (480, 480)
    assert scale.stroke_width == 10
    assert scale.stroke_offset == 5


def test_canvas_scale_for_wide_model() -> None:
    scale = compute_canvas_scale((320, 320), ModelGeometry(input_width=160, input_height=80))

    assert scale.factor == pytest.approx(2.0)
    assert (scale.width, scale.height) == (320, 160)


def test_overlay_rect_pads_interior_box() -> None:
    scale = compute_canvas_scale((640, 480), MODEL)

    rect = overlay_rect(BoundingBox(x=36, y=36, w=24, h=24), scale)

    assert rect.x == pytest.approx((36 - 10) * 5.0)
    assert rect.w == pytest.approx((24 + 20) * 5.0)


@pytest.mark.parametrize(
    "image_size",
    [(640, 480), (96, 96), (97, 200), (50, 50), (1920, 1080), (130, 101)],
)
@pytest.mark.parametrize(
    "box",
    [
        BoundingBox(x=0, y=0, w=96, h=96),
        BoundingBox(x=0, y=0, w=12, h=12),
        BoundingBox(x=84, y=84, w=12, h=12),
        BoundingBox(x=0, y=84, w=96, h=12),
    ],
)
def test_overlay_rect_stays_inside_canvas(image_size: tuple[int, int], box: BoundingBox) -> None:
    scale = compute_canvas_scale(image_size, MODEL)
    offset = scale.stroke_offset

    rect = overlay_rect(box, scale)

    assert rect.x >= offset and rect.y >= offset
    assert rect.w >= 0 and rect.h >= 0
    assert rect.x + rect.w + offset <= scale.width + 1e-9
    assert rect.y + rect.h + offset <= scale.height + 1e-9


def test_annotate_resizes_and_draws_red_outline() -> None:
    frame = _encode((640, 480))
    cells = [AnomalyCell(x=0, y=0, width=12, height=12)]

    annotated = AnomalyAnnotator().annotate(frame, cells, MODEL, (12, 12))

    image = Image.open(BytesIO(annotated))
    assert image.format == "PNG"
    assert image.size == (480, 480)
    red, green, blue = image.convert("RGB").getpixel((7, 60))
    assert red > green + 60 and red > blue + 60
    center = image.convert("RGB").getpixel((300, 300))
    assert all(abs(channel - 40) <= 2 for channel in center)


def test_annotate_defaults_cell_size_to_first_cell() -> None:
    frame = _encode((640, 480))
    cells = [AnomalyCell(x=12, y=12, width=12, height=12)]
    annotator = AnomalyAnnotator()

    assert annotator.annotate(frame, cells, MODEL) == annotator.annotate(frame, cells, MODEL, (12, 12))


def test_annotate_regions_reports_merged_boxes() -> None:
    frame = _encode((320, 320))
    cells = [
        AnomalyCell(x=0, y=0, width=12, height=12),
        AnomalyCell(x=12, y=12, width=12, height=12),
        AnomalyCell(x=72, y=72, width=12, height=12),
    ]

    _, boxes = AnomalyAnnotator().annotate_regions(frame, cells, MODEL, (12, 12))

    assert sorted(boxes, key=lambda b: (b.y, b.x)) == [
        BoundingBox(x=0, y=0, w=24, h=24),
        BoundingBox(x=72, y=72, w=12, h=12),
    ]


def test_jpeg_frames_stay_jpeg() -> None:
    frame = _encode((320, 240), fmt="JPEG")
    cells = [AnomalyCell(x=24, y=24, width=12, height=12)]

    annotated = AnomalyAnnotator().annotate(frame, cells, MODEL, (12, 12))

    assert sniff_mime_type(annotated) == "image/jpeg"
    assert Image.open(BytesIO(annotated)).size == (240, 240)


def test_custom_stroke_colour_is_used() -> None:
    frame = _encode((480, 480), color=(255, 255, 255))
    annotator = AnomalyAnnotator(AnnotatorConfig(stroke_rgba=(0, 0, 255, 255)))

    annotated = annotator.annotate(frame, [AnomalyCell(x=0, y=0, width=12, height=12)], MODEL, (12, 12))

    red, green, blue = Image.open(BytesIO(annotated)).convert("RGB").getpixel((7, 60))
    assert blue > 200 and red < 60 and green < 60


def test_undecodable_frame_raises() -> None:
    with pytest.raises(ImageDecodeError):
        AnomalyAnnotator().annotate(b"\x00" * 64, [AnomalyCell(x=0, y=0, width=12, height=12)], MODEL)


def test_cells_outside_model_raise_geometry_error() -> None:
    frame = _encode((200, 200))

    with pytest.raises(GeometryError):
        AnomalyAnnotator().annotate(frame, [AnomalyCell(x=90, y=0, width=12, height=12)], MODEL)


def test_annotator_config_from_config() -> None:
    config = AnnotatorConfig.from_config({"annotation": {"stroke_rgba": [0, 255, 0]}})

    assert config.stroke_rgba == (0, 255, 0, 255)
    assert AnnotatorConfig.from_config({}).stroke_rgba == (255, 0, 0, 128)


@pytest.mark.parametrize(
    ("fmt", "expected"),
    [("PNG", "image/png"), ("JPEG", "image/jpeg"), ("GIF", "image/gif"), ("BMP", "image/bmp")],
)
def test_sniff_mime_type(fmt: str, expected: str) -> None:
    assert sniff_mime_type(_encode((4, 4), fmt=fmt)) == expected


def test_sniff_mime_type_defaults_to_jpeg() -> None:
    assert sniff_mime_type(b"") == "image/jpeg"
    assert sniff_mime_type(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"
