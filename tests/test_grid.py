"""Tests for the shared grid quantiser."""

from __future__ import annotations

import pytest

from conftest import make_line
from route_matcher.geo import haversine_distance
from route_matcher.grid import CellGrid, connected_components


def test_same_point_maps_to_same_cell_regardless_of_context() -> None:
    grid_a = CellGrid(100.0)
    grid_b = CellGrid(100.0)
    assert grid_a.cell_of(51.4812, -3.1791) == grid_b.cell_of(51.4812, -3.1791)


def test_cell_center_lies_inside_its_cell() -> None:
    grid = CellGrid(100.0)
    for lat, lng in [(51.48, -3.18), (-33.86, 151.21), (0.0004, 0.0004), (64.1, -21.9)]:
        row, col = grid.cell_of(lat, lng)
        center = grid.cell_center(row, col)
        assert grid.cell_of(center.lat, center.lng) == (row, col)
        assert haversine_distance((lat, lng), center) < 100.0


def test_vectorised_and_scalar_lookup_agree() -> None:
    import numpy as np

    grid = CellGrid(50.0)
    points = np.array(make_line(2000.0, bearing_deg=33.0))
    rows, cols = grid.cells_of(points)
    for idx, (lat, lng) in enumerate(points):
        assert grid.cell_of(lat, lng) == (rows[idx], cols[idx])


def test_visits_collapse_consecutive_samples_and_count_reentry() -> None:
    grid = CellGrid(100.0)
    out = make_line(250.0, bearing_deg=90.0, step_m=5.0)
    track = out + list(reversed(out))[1:]
    cells = [cell for cell, _ in grid.visits(track)]
    assert len(cells) == len(set(cells)) * 2 - 1
    assert cells == cells[::-1]


def test_visits_densify_sparse_tracks() -> None:
    grid = CellGrid(100.0)
    sparse = [make_line(1000.0, bearing_deg=90.0)[0], make_line(1000.0, bearing_deg=90.0)[-1]]
    cells = [cell for cell, _ in grid.visits(sparse)]
    cols = [col for _, col in cells]
    assert cols == list(range(cols[0], cols[0] + len(cols)))
    assert len(cells) >= 10


def test_connected_components_respect_adjacency_rule() -> None:
    cells = [(0, 0), (0, 1), (1, 2), (5, 5)]
    assert connected_components(cells, diagonal=True) == [[(0, 0), (0, 1), (1, 2)], [(5, 5)]]
    assert connected_components(cells, diagonal=False) == [[(0, 0), (0, 1)], [(1, 2)], [(5, 5)]]


def test_non_positive_cell_size_rejected() -> None:
    with pytest.raises(ValueError):
        CellGrid(0.0)
