"""Pairwise route comparison based on Average Minimum Distance (AMD).

Both signatures are resampled to a fixed number of points by arc length. AMD
is the symmetric Chamfer distance between the two resampled sequences and is
mapped linearly onto a 0-100 match percentage between the perfect and zero
thresholds of :class:`MatchConfig`.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from threading import RLock
from typing import Iterator, Optional, Sequence, Tuple

import numpy as np
from cachetools import LRUCache
from numpy.typing import NDArray

from . import config as _config
from .geo import haversine_distance, haversine_matrix, haversine_pairwise, polyline_length, resample
from .models import GeoPoint, MatchConfig, MatchResult, RouteSignature
from .signatures import resolve_config

LatLngArray = NDArray[np.float64]

_LOG = logging.getLogger(__name__)

DIRECTION_SAME = "same"
DIRECTION_REVERSE = "reverse"
DIRECTION_PARTIAL = "partial"

_CacheKey = Tuple[Tuple[GeoPoint, ...], int]


class ResampleCache:
    """Thread-safe LRU of resampled signature geometry."""

    def __init__(self, max_entries: int = _config.RESAMPLE_CACHE_SIZE) -> None:
        self._cache: LRUCache[_CacheKey, LatLngArray] = LRUCache(
            maxsize=max(1, max_entries)
        )
        self._lock = RLock()
        self.hits = 0
        self.misses = 0

    def get(self, points: Tuple[GeoPoint, ...], count: int) -> LatLngArray:
        """Return ``points`` resampled to ``count`` points, computing on a miss."""
        key: _CacheKey = (points, count)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                self.hits += 1
                return cached
            self.misses += 1
        resampled = resample(points, count)
        resampled.setflags(write=False)
        with self._lock:
            self._cache[key] = resampled
        return resampled

    def clear(self) -> None:
        """Empty the cache (primarily for testing)."""
        with self._lock:
            self._cache.clear()
            self.hits = 0
            self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


_RESAMPLE_CACHE = ResampleCache()


def get_resample_cache() -> ResampleCache:
    return _RESAMPLE_CACHE


@contextmanager
def resample_cache_scope(clear_on_enter: bool = True) -> Iterator[ResampleCache]:
    """Provide the shared resample cache and clear it afterwards."""

    if clear_on_enter:
        _RESAMPLE_CACHE.clear()
    try:
        yield _RESAMPLE_CACHE
    finally:
        _RESAMPLE_CACHE.clear()


def average_minimum_distance(a: LatLngArray, b: LatLngArray) -> float:
    """Symmetric Chamfer distance (metres) between two point sequences."""

    if len(a) == 0 or len(b) == 0:
        return float("inf")
    matrix = haversine_matrix(a, b)
    a_to_b = float(np.mean(matrix.min(axis=1)))
    b_to_a = float(np.mean(matrix.min(axis=0)))
    return (a_to_b + b_to_a) / 2.0


def amd_to_percentage(amd: float, config: MatchConfig) -> float:
    """Map AMD linearly between the perfect (100%) and zero (0%) thresholds."""

    span = config.zero_threshold - config.perfect_threshold
    if span <= 0:
        return 100.0 if amd <= config.perfect_threshold else 0.0
    pct = 100.0 * (config.zero_threshold - amd) / span
    return float(min(100.0, max(0.0, pct)))


def passes_length_filter(
    sig_a: RouteSignature, sig_b: RouteSignature, config: MatchConfig
) -> bool:
    """Cheap check run before any resampling."""

    len_a, len_b = sig_a.total_distance, sig_b.total_distance
    if len_a < config.min_route_distance or len_b < config.min_route_distance:
        return False
    longest = max(len_a, len_b)
    if longest <= 0:
        return False
    return abs(len_a - len_b) / longest <= config.max_distance_diff_ratio


def compare_routes(
    sig_a: RouteSignature,
    sig_b: RouteSignature,
    config: Optional[MatchConfig] = None,
) -> Optional[MatchResult]:
    """Compare two signatures.

    Returns ``None`` when the pair is not comparable (too short, or lengths
    too different). A low percentage is a normal negative result.
    """

    cfg = resolve_config(config)
    return _compare(sig_a, sig_b, cfg)


def _compare(
    sig_a: RouteSignature, sig_b: RouteSignature, cfg: MatchConfig
) -> Optional[MatchResult]:
    if not passes_length_filter(sig_a, sig_b, cfg):
        return None

    count = cfg.resample_count
    res_a = _RESAMPLE_CACHE.get(sig_a.points, count)
    res_b = _RESAMPLE_CACHE.get(sig_b.points, count)

    # Chamfer AMD ignores ordering, so orientation comes from index alignment.
    forward_aligned = float(np.mean(haversine_pairwise(res_a, res_b)))
    reverse_aligned = float(np.mean(haversine_pairwise(res_a, res_b[::-1])))
    reverse = reverse_aligned < forward_aligned
    oriented_b = res_b[::-1] if reverse else res_b

    amd = average_minimum_distance(res_a, oriented_b)
    pct = amd_to_percentage(amd, cfg)
    endpoints_match = _endpoints_match(sig_a, sig_b, reverse, cfg.endpoint_threshold)
    direction = DIRECTION_REVERSE if reverse else DIRECTION_SAME

    overlap: Optional[Tuple[float, float, float]] = None
    if pct < cfg.min_match_percentage:
        overlap = _find_partial_overlap(sig_a, sig_b, res_a, res_b, cfg)
        if overlap is not None:
            direction = DIRECTION_PARTIAL

    _LOG.debug(
        "Compared %s vs %s: amd=%.1fm pct=%.1f direction=%s",
        sig_a.activity_id,
        sig_b.activity_id,
        amd,
        pct,
        direction,
    )
    return MatchResult(
        activity_id_1=sig_a.activity_id,
        activity_id_2=sig_b.activity_id,
        match_percentage=pct,
        direction=direction,
        amd=amd,
        endpoints_match=endpoints_match,
        overlap_distance=overlap[0] if overlap else None,
        overlap_start=overlap[1] if overlap else None,
        overlap_end=overlap[2] if overlap else None,
    )


def _endpoints_match(
    sig_a: RouteSignature,
    sig_b: RouteSignature,
    reverse: bool,
    threshold: float,
) -> bool:
    start_b, end_b = (
        (sig_b.end_point, sig_b.start_point)
        if reverse
        else (sig_b.start_point, sig_b.end_point)
    )
    return (
        haversine_distance(sig_a.start_point, start_b) <= threshold
        and haversine_distance(sig_a.end_point, end_b) <= threshold
    )


def _find_partial_overlap(
    sig_a: RouteSignature,
    sig_b: RouteSignature,
    res_a: LatLngArray,
    res_b: LatLngArray,
    cfg: MatchConfig,
) -> Optional[Tuple[float, float, float]]:
    """Return ``(distance_m, start_frac, end_frac)`` of a shared stretch, if any.

    The stretch is the longest contiguous run of each route lying within
    ``zero_threshold`` of the other. The two runs are scored against each
    other; fractions and distance are measured along the longer route.
    """

    matrix = haversine_matrix(res_a, res_b)
    start_a, end_a = _longest_run(matrix.min(axis=1) <= cfg.zero_threshold)
    start_b, end_b = _longest_run(matrix.min(axis=0) <= cfg.zero_threshold)
    if end_a - start_a < 1 or end_b - start_b < 1:
        return None
    run_a = res_a[start_a : end_a + 1]
    run_b = res_b[start_b : end_b + 1]
    run_amd = average_minimum_distance(
        resample(run_a, cfg.resample_count), resample(run_b, cfg.resample_count)
    )
    if amd_to_percentage(run_amd, cfg) < cfg.min_match_percentage:
        return None

    if sig_a.total_distance >= sig_b.total_distance:
        run, start, end, last = run_a, start_a, end_a, len(res_a) - 1
    else:
        run, start, end, last = run_b, start_b, end_b, len(res_b) - 1
    run_length = polyline_length(run)
    if run_length < cfg.min_route_distance:
        return None
    return run_length, start / last, end / last


def _longest_run(mask: Sequence[bool]) -> Tuple[int, int]:
    """Inclusive ``(start, end)`` of the longest run of True values (first wins)."""

    best = (0, -1)
    run_start: Optional[int] = None
    for idx, flag in enumerate(mask):
        if flag:
            if run_start is None:
                run_start = idx
            if idx - run_start > best[1] - best[0]:
                best = (run_start, idx)
        else:
            run_start = None
    return best


__all__ = [
    "DIRECTION_SAME",
    "DIRECTION_REVERSE",
    "DIRECTION_PARTIAL",
    "ResampleCache",
    "get_resample_cache",
    "resample_cache_scope",
    "average_minimum_distance",
    "amd_to_percentage",
    "passes_length_filter",
    "compare_routes",
]
