"""Global pytest fixtures & helpers.

Adds project root to path and provides synthetic GPS track factories shared
by the signature, comparison, grouping, section and heatmap tests.
"""
from __future__ import annotations

import math
import os
import sys
import threading
from typing import Iterator, List, Tuple

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from route_matcher.similarity import resample_cache_scope

LatLng = Tuple[float, float]

METERS_PER_DEG = 111_320.0
BASE_LAT = 51.48
BASE_LNG = -3.18


# --- Factory helpers -------------------------------------------------
def offset(lat: float, lng: float, north_m: float, east_m: float) -> LatLng:
    """Move a point by a metric offset (flat-earth approximation)."""

    dlat = north_m / METERS_PER_DEG
    dlng = east_m / (METERS_PER_DEG * math.cos(math.radians(lat)))
    return lat + dlat, lng + dlng


def make_line(
    length_m: float,
    *,
    bearing_deg: float = 0.0,
    step_m: float = 20.0,
    start: LatLng = (BASE_LAT, BASE_LNG),
) -> List[LatLng]:
    """Straight track of ``length_m`` metres heading ``bearing_deg`` from ``start``."""

    count = max(2, int(round(length_m / step_m)) + 1)
    bearing = math.radians(bearing_deg)
    points = []
    for idx in range(count):
        dist = length_m * idx / (count - 1)
        points.append(
            offset(start[0], start[1], dist * math.cos(bearing), dist * math.sin(bearing))
        )
    return points


def make_road(length_m: float = 10_000.0, *, east_shift_m: float = 0.0, step_m: float = 25.0) -> List[LatLng]:
    """Gently winding north-bound road, optionally shifted east."""

    count = int(round(length_m / step_m)) + 1
    points = []
    for idx in range(count):
        north = length_m * idx / (count - 1)
        east = 150.0 * math.sin(north / 1500.0) + east_shift_m
        points.append(offset(BASE_LAT, BASE_LNG, north, east))
    return points


def make_loop(
    side_m: float = 500.0,
    *,
    start: LatLng = (BASE_LAT + 0.2, BASE_LNG + 0.2),
    step_m: float = 20.0,
) -> List[LatLng]:
    """Closed square loop with sides of ``side_m`` metres."""

    corners = [(0.0, 0.0), (side_m, 0.0), (side_m, side_m), (0.0, side_m), (0.0, 0.0)]
    per_side = max(1, int(round(side_m / step_m)))
    points: List[LatLng] = []
    for (n0, e0), (n1, e1) in zip(corners, corners[1:]):
        for idx in range(per_side):
            frac = idx / per_side
            points.append(
                offset(start[0], start[1], n0 + (n1 - n0) * frac, e0 + (e1 - e0) * frac)
            )
    points.append(start)
    return points


def flatten(points: List[LatLng]) -> List[float]:
    return [value for point in points for value in point]


class TrippingEvent(threading.Event):
    """Event that reports set once ``is_set`` has been polled ``after`` times."""

    def __init__(self, after: int) -> None:
        super().__init__()
        self.after = after
        self.polls = 0

    def is_set(self) -> bool:
        self.polls += 1
        return self.polls > self.after


# --- Fixtures --------------------------------------------------------
@pytest.fixture(autouse=True)
def clear_resample_cache() -> Iterator[None]:
    """Ensure the comparator cache is isolated between tests."""

    with resample_cache_scope():
        yield


@pytest.fixture
def road() -> List[LatLng]:
    return make_road()


@pytest.fixture
def loop() -> List[LatLng]:
    return make_loop()
