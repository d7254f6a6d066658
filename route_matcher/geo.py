"""Geometry primitives for lat/lng polylines.

Distances use the haversine formula on a spherical Earth. Simplification runs
Douglas-Peucker in planar degree space, so its tolerance is latitude dependent.
"""

from __future__ import annotations

import math
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray
from shapely.geometry import LineString

from .models import Bounds, GeoPoint

EARTH_RADIUS_M = 6_371_008.8
METERS_PER_DEGREE_LAT = 111_320.0

LatLngArray = NDArray[np.float64]


def haversine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Great-circle distance in metres between two (lat, lng) points."""

    lat1, lng1 = math.radians(a[0]), math.radians(a[1])
    lat2, lng2 = math.radians(b[0]), math.radians(b[1])
    dlat = lat2 - lat1
    dlng = lng2 - lng1
    h = math.sin(dlat / 2.0) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(
        dlng / 2.0
    ) ** 2
    h = min(1.0, max(0.0, h))
    return 2.0 * EARTH_RADIUS_M * math.asin(math.sqrt(h))


def haversine_matrix(a: LatLngArray, b: LatLngArray) -> LatLngArray:
    """Pairwise haversine distances (metres) between two ``(n, 2)`` arrays."""

    lat1 = np.radians(a[:, 0])[:, None]
    lng1 = np.radians(a[:, 1])[:, None]
    lat2 = np.radians(b[:, 0])[None, :]
    lng2 = np.radians(b[:, 1])[None, :]
    h = (
        np.sin((lat2 - lat1) / 2.0) ** 2
        + np.cos(lat1) * np.cos(lat2) * np.sin((lng2 - lng1) / 2.0) ** 2
    )
    return 2.0 * EARTH_RADIUS_M * np.arcsin(np.sqrt(np.clip(h, 0.0, 1.0)))


def haversine_pairwise(a: LatLngArray, b: LatLngArray) -> LatLngArray:
    """Element-wise haversine distances between two equally sized arrays."""

    lat1, lng1 = np.radians(a[:, 0]), np.radians(a[:, 1])
    lat2, lng2 = np.radians(b[:, 0]), np.radians(b[:, 1])
    h = (
        np.sin((lat2 - lat1) / 2.0) ** 2
        + np.cos(lat1) * np.cos(lat2) * np.sin((lng2 - lng1) / 2.0) ** 2
    )
    return 2.0 * EARTH_RADIUS_M * np.arcsin(np.sqrt(np.clip(h, 0.0, 1.0)))


def segment_lengths(points: Sequence[Sequence[float]]) -> LatLngArray:
    array = as_latlng_array(points)
    if len(array) < 2:
        return np.zeros(0, dtype=float)
    return haversine_pairwise(array[:-1], array[1:])


def polyline_length(points: Sequence[Sequence[float]]) -> float:
    """Sum of haversine distances between consecutive points."""

    return float(np.sum(segment_lengths(points)))


def is_valid_point(lat: float, lng: float) -> bool:
    return (
        math.isfinite(lat)
        and math.isfinite(lng)
        and -90.0 <= lat <= 90.0
        and -180.0 <= lng <= 180.0
    )


def sanitize_array(points: Iterable[Sequence[float]]) -> LatLngArray:
    """Return the valid fixes of ``points`` as an ``(n, 2)`` array, in order.

    NaN, infinite and out-of-range fixes are dropped. Well-formed numeric
    input is filtered with one vectorised mask; rows that cannot be parsed
    as numbers force a row-by-row parse that skips them.
    """

    if points is not None and not isinstance(points, (np.ndarray, Sequence)):
        points = list(points)
    try:
        array = np.asarray(points, dtype=float)
    except (TypeError, ValueError):
        array = None
    if array is None or array.ndim != 2 or array.shape[1] < 2:
        if array is not None and array.size == 0:
            return np.empty((0, 2), dtype=float)
        array = _parse_rows(points)
    array = array[:, :2]
    keep = (
        np.isfinite(array).all(axis=1)
        & (np.abs(array[:, 0]) <= 90.0)
        & (np.abs(array[:, 1]) <= 180.0)
    )
    return array[keep]


def sanitize_points(points: Iterable[Sequence[float]]) -> List[GeoPoint]:
    """List form of :func:`sanitize_array`."""

    return [GeoPoint(float(lat), float(lng)) for lat, lng in sanitize_array(points)]


def _parse_rows(points: Iterable[Sequence[float]]) -> LatLngArray:
    rows: List[Tuple[float, float]] = []
    for point in points:
        try:
            rows.append((float(point[0]), float(point[1])))
        except (TypeError, ValueError, IndexError):
            continue
    if not rows:
        return np.empty((0, 2), dtype=float)
    return np.asarray(rows, dtype=float)


def bounds_of(points: Sequence[Sequence[float]]) -> Optional[Bounds]:
    array = as_latlng_array(points)
    if len(array) == 0:
        return None
    return Bounds(
        min_lat=float(array[:, 0].min()),
        max_lat=float(array[:, 0].max()),
        min_lng=float(array[:, 1].min()),
        max_lng=float(array[:, 1].max()),
    )


def center_of(points: Sequence[Sequence[float]]) -> Optional[GeoPoint]:
    """Midpoint of the bounding box (not the centroid of the points)."""

    bounds = bounds_of(points)
    return None if bounds is None else bounds.center()


def simplify(
    points: Sequence[Sequence[float]], tolerance_deg: float, max_points: int
) -> List[GeoPoint]:
    """Douglas-Peucker simplify, then cap the output at ``max_points``."""

    array = as_latlng_array(points)
    if len(array) >= 3 and tolerance_deg > 0:
        # shapely works in (x, y) order, so flip to (lng, lat) and back.
        line = LineString(array[:, ::-1])
        simplified = line.simplify(tolerance_deg, preserve_topology=False)
        coords = np.asarray(simplified.coords, dtype=float)
        if len(coords) >= 2:
            array = coords[:, ::-1]
    if len(array) > max_points:
        array = _decimate_points(array, max_points)
    return [GeoPoint(float(lat), float(lng)) for lat, lng in array]


def resample(points: Sequence[Sequence[float]], n: int) -> LatLngArray:
    """Return exactly ``n`` points evenly spaced by cumulative arc length."""

    array = as_latlng_array(points)
    if n <= 0 or len(array) == 0:
        return np.empty((0, 2), dtype=float)
    if len(array) == 1:
        return np.repeat(array[:1], n, axis=0)
    cumulative = np.concatenate(([0.0], np.cumsum(segment_lengths(array))))
    total_length = cumulative[-1]
    if total_length == 0:
        return np.repeat(array[:1], n, axis=0)
    target = np.linspace(0.0, total_length, num=n)
    lat = np.interp(target, cumulative, array[:, 0])
    lng = np.interp(target, cumulative, array[:, 1])
    return np.column_stack((lat, lng))


def densify(points: Sequence[Sequence[float]], max_step_m: float) -> LatLngArray:
    """Insert linearly interpolated points so no gap exceeds ``max_step_m``."""

    array = as_latlng_array(points)
    if len(array) < 2 or max_step_m <= 0:
        return array
    lengths = segment_lengths(array)
    chunks = [array[:1]]
    for idx, length in enumerate(lengths):
        steps = max(1, int(math.ceil(length / max_step_m)))
        fractions = np.arange(1, steps + 1, dtype=float) / steps
        start, end = array[idx], array[idx + 1]
        chunks.append(start + np.outer(fractions, end - start))
    return np.vstack(chunks)


def meters_to_degrees(meters: float, lat: float) -> Tuple[float, float]:
    """Approximate (lat, lng) degree spans for a metre distance at ``lat``."""

    dlat = meters / METERS_PER_DEGREE_LAT
    cos_lat = max(math.cos(math.radians(lat)), 1e-6)
    return dlat, meters / (METERS_PER_DEGREE_LAT * cos_lat)


def as_latlng_array(points: Iterable[Sequence[float]]) -> LatLngArray:
    """Convert an iterable of (lat, lng) pairs into a float64 ``(n, 2)`` array."""

    if isinstance(points, np.ndarray):
        array = points.astype(float, copy=False)
    else:
        array = np.asarray(list(points), dtype=float)
    if array.size == 0:
        return np.empty((0, 2), dtype=float)
    if array.ndim != 2 or array.shape[1] != 2:
        raise ValueError("Expected a sequence of (lat, lng) coordinates")
    return array


def _decimate_points(points: LatLngArray, max_points: int) -> LatLngArray:
    """Down-sample a point array to ``max_points`` while preserving the endpoints."""

    max_points = max(2, max_points)
    count = points.shape[0]
    if count <= max_points:
        return points
    indices = np.linspace(0, count - 1, num=max_points, dtype=int)
    return points[indices]


__all__ = [
    "EARTH_RADIUS_M",
    "METERS_PER_DEGREE_LAT",
    "haversine_distance",
    "haversine_matrix",
    "haversine_pairwise",
    "polyline_length",
    "sanitize_array",
    "sanitize_points",
    "bounds_of",
    "center_of",
    "simplify",
    "resample",
    "densify",
    "meters_to_degrees",
    "as_latlng_array",
]
