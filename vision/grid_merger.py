"""Occupancy grids and 8-connected region merging."""

from __future__ import annotations

from collections import deque
from typing import Any, Iterable

import numpy as np

from core.errors import GeometryError
from vision.anomaly import AnomalyCell, BoundingBox, ModelGeometry


NEIGHBOR_OFFSETS: tuple[tuple[int, int], ...] = (
    (-1, 0), (1, 0), (0, -1), (0, 1),
    (-1, -1), (-1, 1), (1, -1), (1, 1),
)


def build_occupancy_grid(
    cells: Iterable[AnomalyCell],
    geometry: ModelGeometry,
    cell_size: tuple[int, int],
) -> np.ndarray:
    """Mark every grid cell whose pixel extent intersects a reported cell.

    Raises:
        GeometryError: The cell size does not tile the model input, or a
            reported cell lies outside of it.
    """

    cell_width, cell_height = cell_size
    if cell_width <= 0 or cell_height <= 0:
        raise GeometryError(f"Cell size must be positive, got {cell_width}x{cell_height}")
    if geometry.input_width % cell_width or geometry.input_height % cell_height:
        raise GeometryError(
            f"Cell size {cell_width}x{cell_height} does not tile model input "
            f"{geometry.input_width}x{geometry.input_height}"
        )

    rows = geometry.input_height // cell_height
    cols = geometry.input_width // cell_width
    grid = np.zeros((rows, cols), dtype=bool)

    for cell in cells:
        if (
            cell.width <= 0
            or cell.height <= 0
            or cell.x < 0
            or cell.y < 0
            or cell.x + cell.width > geometry.input_width
            or cell.y + cell.height > geometry.input_height
        ):
            raise GeometryError(f"Anomaly cell {cell} outside model input area")
        first_col = cell.x // cell_width
        last_col = -(-(cell.x + cell.width) // cell_width)
        first_row = cell.y // cell_height
        last_row = -(-(cell.y + cell.height) // cell_height)
        grid[first_row:last_row, first_col:last_col] = True

    return grid


def merge(grid: Any) -> list[BoundingBox]:
    """Return one bounding box per 8-connected region of occupied cells.

    Boxes are in grid-cell units. Scan order is row-major, which fixes the
    output order but callers should not depend on it.
    """

    occupied = np.asarray(grid, dtype=bool)
    if occupied.ndim != 2 or occupied.size == 0:
        return []

    rows, cols = occupied.shape
    visited = np.zeros_like(occupied)
    boxes: list[BoundingBox] = []

    for start_row in range(rows):
        for start_col in range(cols):
            if not occupied[start_row, start_col] or visited[start_row, start_col]:
                continue
            boxes.append(_expand_region(occupied, visited, start_row, start_col))

    return boxes


def _expand_region(
    occupied: np.ndarray,
    visited: np.ndarray,
    start_row: int,
    start_col: int,
) -> BoundingBox:
    rows, cols = occupied.shape
    min_row = max_row = start_row
    min_col = max_col = start_col
    frontier: deque[tuple[int, int]] = deque([(start_row, start_col)])
    visited[start_row, start_col] = True

    while frontier:
        row, col = frontier.popleft()
        min_row = min(min_row, row)
        max_row = max(max_row, row)
        min_col = min(min_col, col)
        max_col = max(max_col, col)

        for d_row, d_col in NEIGHBOR_OFFSETS:
            n_row = row + d_row
            n_col = col + d_col
            if not (0 <= n_row < rows and 0 <= n_col < cols):
                continue
            if occupied[n_row, n_col] and not visited[n_row, n_col]:
                visited[n_row, n_col] = True
                frontier.append((n_row, n_col))

    return BoundingBox(
        x=min_col,
        y=min_row,
        w=max_col - min_col + 1,
        h=max_row - min_row + 1,
    )
