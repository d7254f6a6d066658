"""Build :class:`RouteSignature` objects from raw GPS tracks."""

from __future__ import annotations

import logging
import threading
import time
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
from polyline import decode as polyline_decode

from . import config as _config
from .errors import InputError
from .geo import bounds_of, haversine_distance, polyline_length, sanitize_array, simplify
from .models import FlatGpsTrack, GpsTrack, MatchConfig, RouteSignature
from .parallel import partitioned_map

_LOG = logging.getLogger(__name__)

TrackInput = Tuple[str, Sequence[Sequence[float]]]


def get_default_config() -> MatchConfig:
    """Return a fresh :class:`MatchConfig` built from the environment defaults."""

    return MatchConfig(
        perfect_threshold=_config.MATCH_PERFECT_THRESHOLD_M,
        zero_threshold=_config.MATCH_ZERO_THRESHOLD_M,
        min_match_percentage=_config.MATCH_MIN_PERCENTAGE,
        min_route_distance=_config.MATCH_MIN_ROUTE_DISTANCE_M,
        max_distance_diff_ratio=_config.MATCH_MAX_DISTANCE_DIFF_RATIO,
        endpoint_threshold=_config.MATCH_ENDPOINT_THRESHOLD_M,
        resample_count=_config.MATCH_RESAMPLE_COUNT,
        simplification_tolerance=_config.SIGNATURE_SIMPLIFICATION_TOLERANCE_DEG,
        max_simplified_points=_config.SIGNATURE_MAX_SIMPLIFIED_POINTS,
    )


def resolve_config(config: Optional[MatchConfig]) -> MatchConfig:
    """Return ``config`` (or the defaults) after validating its invariants."""

    return (config if config is not None else get_default_config()).validate()


def create_signature(
    activity_id: str,
    points: Iterable[Sequence[float]],
    config: Optional[MatchConfig] = None,
) -> Optional[RouteSignature]:
    """Return a signature for one track, or ``None`` when it has < 2 usable points."""

    cfg = resolve_config(config)
    return _build_signature(activity_id, points, cfg)


def create_signature_from_polyline(
    activity_id: str,
    encoded: str,
    config: Optional[MatchConfig] = None,
    precision: int = 5,
) -> Optional[RouteSignature]:
    """Decode a Google encoded polyline and build its signature."""

    cfg = resolve_config(config)
    if not encoded:
        return None
    try:
        decoded = polyline_decode(encoded, precision)
    except (ValueError, TypeError, IndexError):
        _LOG.warning("Unable to decode polyline for activity %s", activity_id)
        return None
    return _build_signature(activity_id, decoded, cfg)


def create_signatures_batch(
    tracks: Sequence[GpsTrack | TrackInput],
    config: Optional[MatchConfig] = None,
    *,
    max_workers: Optional[int] = None,
    cancel_event: threading.Event | None = None,
) -> List[RouteSignature]:
    """Build signatures for many tracks in parallel, preserving input order.

    Tracks that fail (too few points, or an unexpected error) are logged and
    omitted; they never abort the batch.
    """

    cfg = resolve_config(config)
    started = time.perf_counter()
    items = list(tracks)

    def build(item: GpsTrack | TrackInput) -> Optional[RouteSignature]:
        activity_id = _track_label(item)
        try:
            activity_id, points = _as_track(item)
            return _build_signature(activity_id, points, cfg)
        except Exception:
            _LOG.warning(
                "Failed to build signature for activity %s", activity_id, exc_info=True
            )
            return None

    results = partitioned_map(
        build, items, max_workers=max_workers, cancel_event=cancel_event
    )
    signatures = [sig for sig in results if sig is not None]
    _LOG.info(
        "Built %d/%d signatures in %.3fs",
        len(signatures),
        len(items),
        time.perf_counter() - started,
    )
    return signatures


def create_signatures_from_flat(
    tracks: Sequence[FlatGpsTrack],
    config: Optional[MatchConfig] = None,
    *,
    max_workers: Optional[int] = None,
    cancel_event: threading.Event | None = None,
) -> List[RouteSignature]:
    """Batch variant for tracks carrying flat ``[lat, lng, lat, lng, ...]`` lists."""

    items = [(track.activity_id, _pairs(track.coords)) for track in tracks]
    return create_signatures_batch(
        items, config, max_workers=max_workers, cancel_event=cancel_event
    )


def create_signatures_flat_buffer(
    activity_ids: Sequence[str],
    coords: Sequence[float],
    offsets: Sequence[int],
    config: Optional[MatchConfig] = None,
    *,
    max_workers: Optional[int] = None,
    cancel_event: threading.Event | None = None,
) -> List[RouteSignature]:
    """Batch variant over one contiguous coordinate buffer.

    ``offsets[i]`` is the index into ``coords`` where track ``i`` starts; it
    runs to the next offset, or to the end of the buffer for the last track.
    """

    return create_signatures_batch(
        split_flat_buffer(activity_ids, coords, offsets),
        config,
        max_workers=max_workers,
        cancel_event=cancel_event,
    )


def split_flat_buffer(
    activity_ids: Sequence[str],
    coords: Sequence[float],
    offsets: Sequence[int],
) -> List[TrackInput]:
    """Slice a flat coordinate buffer into per-track ``(id, points)`` pairs."""

    if len(activity_ids) != len(offsets):
        raise InputError(
            f"Got {len(activity_ids)} activity ids but {len(offsets)} offsets"
        )
    total = len(coords)
    tracks: List[TrackInput] = []
    for idx, activity_id in enumerate(activity_ids):
        start = int(offsets[idx])
        end = int(offsets[idx + 1]) if idx + 1 < len(offsets) else total
        if start < 0 or start > total or end < start or end > total:
            raise InputError(
                f"Offset range [{start}, {end}) for activity {activity_id} is outside the buffer"
            )
        tracks.append((activity_id, _pairs(coords[start:end])))
    return tracks


def _build_signature(
    activity_id: str,
    raw_points: Iterable[Sequence[float]],
    config: MatchConfig,
) -> Optional[RouteSignature]:
    points = sanitize_array(raw_points)
    if len(points) < 2:
        _LOG.debug("Skipping activity %s: fewer than 2 usable points", activity_id)
        return None
    simplified = simplify(
        points, config.simplification_tolerance, config.max_simplified_points
    )
    bounds = bounds_of(points)
    start, end = simplified[0], simplified[-1]
    return RouteSignature(
        activity_id=activity_id,
        points=tuple(simplified),
        total_distance=polyline_length(points),
        start_point=start,
        end_point=end,
        bounds=bounds,
        center=bounds.center(),
        is_loop=haversine_distance(start, end) <= _config.LOOP_THRESHOLD_M,
    )


def _pairs(flat: Sequence[float]) -> Sequence[Sequence[float]]:
    # An odd trailing value cannot form a pair and is dropped.
    count = len(flat) - (len(flat) % 2)
    try:
        return np.asarray(flat[:count], dtype=float).reshape(-1, 2)
    except (TypeError, ValueError):
        return [(flat[i], flat[i + 1]) for i in range(0, count, 2)]


def _as_track(track: GpsTrack | TrackInput) -> TrackInput:
    if isinstance(track, GpsTrack):
        return track.activity_id, track.points
    activity_id, points = track
    return activity_id, points


def _track_label(track: object) -> str:
    if isinstance(track, GpsTrack):
        return track.activity_id
    if isinstance(track, (tuple, list)) and track:
        return str(track[0])
    return repr(track)


__all__ = [
    "get_default_config",
    "resolve_config",
    "create_signature",
    "create_signature_from_polyline",
    "create_signatures_batch",
    "create_signatures_from_flat",
    "create_signatures_flat_buffer",
    "split_flat_buffer",
]
