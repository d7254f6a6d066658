"""Globally anchored grid quantisation shared by sections and the heatmap.

Rows are bands of ``cell_size`` metres measured from the equator. Columns are
measured from the prime meridian using the longitude scale at the centre of
each row, so a given point always lands in the same cell for a given cell size
regardless of which other points are processed alongside it.
"""

from __future__ import annotations

import math
from collections import deque
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from .geo import METERS_PER_DEGREE_LAT, as_latlng_array, densify
from .models import CellCoord, GeoPoint

_MIN_COS = 1e-6

FOUR_NEIGHBOURS: Tuple[CellCoord, ...] = ((-1, 0), (1, 0), (0, -1), (0, 1))
EIGHT_NEIGHBOURS: Tuple[CellCoord, ...] = FOUR_NEIGHBOURS + (
    (-1, -1),
    (-1, 1),
    (1, -1),
    (1, 1),
)


class CellGrid:
    """Map lat/lng points to ``(row, col)`` cells of roughly ``cell_size`` metres."""

    def __init__(self, cell_size_meters: float) -> None:
        if cell_size_meters <= 0:
            raise ValueError("cell_size_meters must be greater than zero")
        self.cell_size = float(cell_size_meters)
        self._lat_step = self.cell_size / METERS_PER_DEGREE_LAT

    def row_center_lat(self, row: int) -> float:
        return (row + 0.5) * self._lat_step

    def lng_step(self, row: int) -> float:
        cos_lat = max(math.cos(math.radians(self.row_center_lat(row))), _MIN_COS)
        return self.cell_size / (METERS_PER_DEGREE_LAT * cos_lat)

    def cell_of(self, lat: float, lng: float) -> CellCoord:
        rows, cols = self.cells_of(np.array([[lat, lng]], dtype=float))
        return int(rows[0]), int(cols[0])

    def cell_center(self, row: int, col: int) -> GeoPoint:
        return GeoPoint(self.row_center_lat(row), (col + 0.5) * self.lng_step(row))

    def cells_of(self, points: NDArray[np.float64]) -> Tuple[NDArray[np.int64], NDArray[np.int64]]:
        """Vectorised :meth:`cell_of` over an ``(n, 2)`` lat/lng array."""

        rows = np.floor(points[:, 0] / self._lat_step).astype(np.int64)
        center_lat = (rows + 0.5) * self._lat_step
        cos_lat = np.maximum(np.cos(np.radians(center_lat)), _MIN_COS)
        lng_step = self.cell_size / (METERS_PER_DEGREE_LAT * cos_lat)
        cols = np.floor(points[:, 1] / lng_step).astype(np.int64)
        return rows, cols

    def visits(
        self,
        points: Sequence[Sequence[float]],
        include: Optional[Callable[[float, float], bool]] = None,
    ) -> List[Tuple[CellCoord, int]]:
        """Return the cells a track enters, in order, with the sample index of entry.

        The track is densified to half-cell steps first so sparse signatures do
        not skip cells. Consecutive samples in the same cell count as one
        visit. Samples rejected by ``include`` break the current visit.
        """

        dense = densify(as_latlng_array(points), self.cell_size / 2.0)
        if len(dense) == 0:
            return []
        rows, cols = self.cells_of(dense)
        entries: List[Tuple[CellCoord, int]] = []
        previous: Optional[CellCoord] = None
        for idx in range(len(dense)):
            if include is not None and not include(float(dense[idx, 0]), float(dense[idx, 1])):
                previous = None
                continue
            cell = (int(rows[idx]), int(cols[idx]))
            if cell != previous:
                entries.append((cell, idx))
                previous = cell
        return entries


def neighbours(diagonal: bool) -> Tuple[CellCoord, ...]:
    return EIGHT_NEIGHBOURS if diagonal else FOUR_NEIGHBOURS


def connected_components(
    cells: Sequence[CellCoord], diagonal: bool
) -> List[List[CellCoord]]:
    """Flood-fill ``cells`` into connected components.

    Components are discovered in the order of ``cells`` and each component
    lists its cells in BFS order.
    """

    remaining = set(cells)
    offsets = neighbours(diagonal)
    components: List[List[CellCoord]] = []
    for seed in cells:
        if seed not in remaining:
            continue
        remaining.discard(seed)
        component = [seed]
        queue = deque([seed])
        while queue:
            row, col = queue.popleft()
            for drow, dcol in offsets:
                neighbour = (row + drow, col + dcol)
                if neighbour in remaining:
                    remaining.discard(neighbour)
                    component.append(neighbour)
                    queue.append(neighbour)
        components.append(component)
    return components


__all__ = [
    "CellGrid",
    "FOUR_NEIGHBOURS",
    "EIGHT_NEIGHBOURS",
    "neighbours",
    "connected_components",
]
