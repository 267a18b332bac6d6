"""Tests for occupancy grids and 8-connected region merging."""

from __future__ import annotations

import numpy as np
import pytest

from core.errors import GeometryError
from vision.anomaly import AnomalyCell, BoundingBox, ModelGeometry
from vision.grid_merger import build_occupancy_grid, merge


def _box(x: int, y: int, w: int, h: int) -> BoundingBox:
    return BoundingBox(x=x, y=y, w=w, h=h)


def test_diagonal_neighbours_merge_into_one_region() -> None:
    assert merge([[1, 0], [0, 1]]) == [_box(0, 0, 2, 2)]


def test_separated_cells_stay_separate() -> None:
    boxes = merge([[1, 0, 0], [0, 0, 0], [0, 0, 1]])

    assert sorted(boxes, key=lambda b: (b.y, b.x)) == [_box(0, 0, 1, 1), _box(2, 2, 1, 1)]


def test_empty_grids_yield_no_boxes() -> None:
    assert merge([]) == []
    assert merge(np.zeros((0, 0), dtype=bool)) == []
    assert merge(np.zeros((4, 6), dtype=bool)) == []


def test_single_cell_yields_unit_box() -> None:
    grid = np.zeros((5, 5), dtype=bool)
    grid[3, 1] = True

    assert merge(grid) == [_box(1, 3, 1, 1)]


def test_full_grid_yields_one_covering_box() -> None:
    assert merge(np.ones((3, 7), dtype=bool)) == [_box(0, 0, 7, 3)]


def test_l_shape_is_a_single_region() -> None:
    grid = [
        [1, 0, 0],
        [1, 0, 0],
        [1, 1, 1],
    ]

    assert merge(grid) == [_box(0, 0, 3, 3)]


def test_merge_does_not_mutate_input() -> None:
    grid = np.array([[True, False], [False, True]])
    before = grid.copy()

    merge(grid)

    assert np.array_equal(grid, before)


@pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
def test_random_grids_are_fully_and_tightly_covered(seed: int) -> None:
    rng = np.random.default_rng(seed)
    grid = rng.random((12, 9)) < 0.3

    boxes = merge(grid)

    covered: set[tuple[int, int]] = set()
    for box in boxes:
        assert box.w >= 1 and box.h >= 1
        region = grid[box.y : box.y + box.h, box.x : box.x + box.w]
        # every edge of a box touches an occupied cell
        assert region[0, :].any() and region[-1, :].any()
        assert region[:, 0].any() and region[:, -1].any()
        covered |= box.cells()

    occupied = {(int(r), int(c)) for r, c in zip(*np.nonzero(grid))}
    assert occupied <= covered
    assert len(boxes) <= len(occupied)


def test_occupancy_grid_marks_reported_cells() -> None:
    geometry = ModelGeometry(input_width=96, input_height=96)
    cells = [
        AnomalyCell(x=0, y=0, width=32, height=32),
        AnomalyCell(x=64, y=32, width=32, height=32),
    ]

    grid = build_occupancy_grid(cells, geometry, (32, 32))

    assert grid.shape == (3, 3)
    assert grid.tolist() == [
        [True, False, False],
        [False, False, True],
        [False, False, False],
    ]


def test_occupancy_grid_marks_every_intersected_cell() -> None:
    geometry = ModelGeometry(input_width=96, input_height=64)
    grid = build_occupancy_grid([AnomalyCell(x=16, y=0, width=32, height=40)], geometry, (32, 32))

    assert grid.tolist() == [
        [True, True, False],
        [True, True, False],
    ]


@pytest.mark.parametrize(
    ("cell", "cell_size"),
    [
        (AnomalyCell(x=0, y=0, width=32, height=32), (0, 32)),
        (AnomalyCell(x=0, y=0, width=30, height=30), (30, 30)),
        (AnomalyCell(x=80, y=0, width=32, height=32), (32, 32)),
        (AnomalyCell(x=-32, y=0, width=32, height=32), (32, 32)),
        (AnomalyCell(x=0, y=0, width=0, height=32), (32, 32)),
    ],
)
def test_occupancy_grid_rejects_bad_geometry(cell: AnomalyCell, cell_size: tuple[int, int]) -> None:
    geometry = ModelGeometry(input_width=96, input_height=96)

    with pytest.raises(GeometryError):
        build_occupancy_grid([cell], geometry, cell_size)


def test_boxes_scale_to_model_pixels() -> None:
    assert _box(1, 2, 3, 1).scaled(32, 16) == _box(32, 32, 96, 16)
