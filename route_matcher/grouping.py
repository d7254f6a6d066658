"""Cluster route signatures into groups of activities on the same route.

Signatures are processed sequentially in input order. The first signature that
matches no existing group becomes the anchor and representative of a new
group; later signatures are compared against representatives only. Candidate
comparisons may run on a thread pool, but the admission decision always walks
the candidates in group-creation order, so results never depend on scheduling.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from rtree import index

from .geo import meters_to_degrees
from .models import (
    Bounds,
    FlatGpsTrack,
    GpsTrack,
    MatchConfig,
    MatchResult,
    RouteGroup,
    RouteSignature,
)
from .parallel import check_cancelled, ordered_map, resolve_workers
from .signatures import (
    TrackInput,
    create_signatures_batch,
    create_signatures_flat_buffer,
    create_signatures_from_flat,
    resolve_config,
)
from .similarity import compare_routes, passes_length_filter

_LOG = logging.getLogger(__name__)

# Below this many candidates the comparisons run inline.
_PARALLEL_CANDIDATE_THRESHOLD = 8


class RouteGrouper:
    """Sequential anchor grouping with an optional parallel comparison stage.

    Representative bounding boxes live in an R-tree keyed by group position,
    so each signature only looks at groups whose boxes come near its own.
    """

    def __init__(
        self,
        config: MatchConfig,
        *,
        start_times: Optional[Mapping[str, int]] = None,
        names: Optional[Mapping[str, str]] = None,
        sport_types: Optional[Mapping[str, str]] = None,
        max_workers: Optional[int] = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.config = config
        self.start_times = start_times or {}
        self.names = names or {}
        self.sport_types = sport_types or {}
        self.max_workers = resolve_workers(max_workers)
        self.cancel_event = cancel_event
        self.comparisons = 0
        self._index = index.Index()
        self._indexed = 0
        self._log = logging.getLogger(self.__class__.__name__)

    def run(
        self,
        signatures: Sequence[RouteSignature],
        groups: Optional[List[RouteGroup]] = None,
        seen_ids: Optional[Set[str]] = None,
    ) -> List[RouteGroup]:
        """Assign ``signatures`` to ``groups`` (mutated in place) and return them."""

        groups = groups if groups is not None else []
        seen = seen_ids if seen_ids is not None else set()
        self._index_groups(groups)
        executor: Optional[ThreadPoolExecutor] = None
        if self.max_workers > 1:
            executor = ThreadPoolExecutor(max_workers=self.max_workers)
        try:
            for signature in signatures:
                check_cancelled(self.cancel_event, "grouping")
                if signature.activity_id in seen:
                    self._log.debug("Skipping duplicate activity %s", signature.activity_id)
                    continue
                seen.add(signature.activity_id)
                self._assign(signature, groups, executor)
        finally:
            if executor is not None:
                executor.shutdown(wait=True, cancel_futures=True)
        return groups

    def _assign(
        self,
        signature: RouteSignature,
        groups: List[RouteGroup],
        executor: Optional[ThreadPoolExecutor],
    ) -> None:
        if signature.total_distance < self.config.min_route_distance:
            self._log.debug(
                "Activity %s too short to group (%.0fm)",
                signature.activity_id,
                signature.total_distance,
            )
            return

        candidates = self._candidates(signature, groups)
        match = self._first_match(signature, candidates, executor)
        if match is not None:
            group, result = match
            group.add_member(
                signature.activity_id,
                result.match_percentage,
                self.start_times.get(signature.activity_id),
            )
            return

        group = RouteGroup(
            id=signature.activity_id,
            representative=signature,
            name=self.names.get(signature.activity_id),
            sport_type=self.sport_types.get(signature.activity_id),
        )
        group.add_member(
            signature.activity_id, 100.0, self.start_times.get(signature.activity_id)
        )
        groups.append(group)
        self._index_groups(groups)

    def _first_match(
        self,
        signature: RouteSignature,
        candidates: Sequence[RouteGroup],
        executor: Optional[ThreadPoolExecutor],
    ) -> Optional[tuple[RouteGroup, MatchResult]]:
        if executor is None or len(candidates) < _PARALLEL_CANDIDATE_THRESHOLD:
            for group in candidates:
                self.comparisons += 1
                result = compare_routes(signature, group.representative, self.config)
                if result is not None and result.is_match(self.config):
                    return group, result
            return None

        self.comparisons += len(candidates)
        results = ordered_map(
            lambda group: compare_routes(signature, group.representative, self.config),
            candidates,
            executor=executor,
        )
        for group, result in zip(candidates, results):
            if result is not None and result.is_match(self.config):
                return group, result
        return None

    def _index_groups(self, groups: Sequence[RouteGroup]) -> None:
        """Insert groups appended since the last call into the R-tree."""

        for position in range(self._indexed, len(groups)):
            representative = groups[position].representative
            if representative is not None:
                self._index.insert(position, _box(representative.bounds))
        self._indexed = len(groups)

    def _candidates(
        self, signature: RouteSignature, groups: Sequence[RouteGroup]
    ) -> List[RouteGroup]:
        """Groups passing the prefilter, in group-creation order."""

        buffer_deg = self._buffer_deg(signature)
        hits = sorted(self._index.intersection(_box(signature.bounds, buffer_deg)))
        return [
            groups[position]
            for position in hits
            if self._is_candidate(signature, groups[position].representative)
        ]

    def _buffer_deg(self, signature: RouteSignature) -> float:
        dlat, dlng = meters_to_degrees(
            self.config.endpoint_threshold, signature.center.lat
        )
        return max(dlat, dlng)

    def _is_candidate(self, signature: RouteSignature, representative: RouteSignature) -> bool:
        if not passes_length_filter(signature, representative, self.config):
            return False
        return signature.bounds.overlaps(representative.bounds, self._buffer_deg(signature))


def _box(bounds: Bounds, buffer_deg: float = 0.0) -> Tuple[float, float, float, float]:
    # R-tree boxes are (minx, miny, maxx, maxy), i.e. lng before lat.
    return (
        bounds.min_lng - buffer_deg,
        bounds.min_lat - buffer_deg,
        bounds.max_lng + buffer_deg,
        bounds.max_lat + buffer_deg,
    )


def group_signatures(
    signatures: Sequence[RouteSignature],
    config: Optional[MatchConfig] = None,
    *,
    start_times: Optional[Mapping[str, int]] = None,
    names: Optional[Mapping[str, str]] = None,
    sport_types: Optional[Mapping[str, str]] = None,
    max_workers: Optional[int] = None,
    cancel_event: threading.Event | None = None,
) -> List[RouteGroup]:
    """Group signatures in input order. Duplicate activity ids are skipped."""

    cfg = resolve_config(config)
    started = time.perf_counter()
    grouper = RouteGrouper(
        cfg,
        start_times=start_times,
        names=names,
        sport_types=sport_types,
        max_workers=max_workers,
        cancel_event=cancel_event,
    )
    groups = grouper.run(signatures)
    _LOG.info(
        "Grouped %d signatures into %d groups (%d comparisons) in %.3fs",
        len(signatures),
        len(groups),
        grouper.comparisons,
        time.perf_counter() - started,
    )
    return groups


def group_incremental(
    new_signatures: Sequence[RouteSignature],
    existing_groups: Sequence[RouteGroup],
    existing_signatures: Sequence[RouteSignature],
    config: Optional[MatchConfig] = None,
    *,
    start_times: Optional[Mapping[str, int]] = None,
    names: Optional[Mapping[str, str]] = None,
    sport_types: Optional[Mapping[str, str]] = None,
    max_workers: Optional[int] = None,
    cancel_event: threading.Event | None = None,
) -> List[RouteGroup]:
    """Add ``new_signatures`` to previously computed groups.

    Equivalent to grouping ``existing_signatures + new_signatures`` from
    scratch, without re-comparing existing pairs. The input groups are not
    modified.
    """

    cfg = resolve_config(config)
    started = time.perf_counter()
    by_id = {sig.activity_id: sig for sig in existing_signatures}
    groups: List[RouteGroup] = []
    seen: Set[str] = set(by_id)
    for group in existing_groups:
        copied = replace(group, activity_ids=list(group.activity_ids))
        if copied.representative is None:
            copied.representative = by_id.get(group.id)
            if copied.representative is None:
                _LOG.warning(
                    "No representative signature for group %s; it will not accept members",
                    group.id,
                )
        seen.update(copied.activity_ids)
        groups.append(copied)

    grouper = RouteGrouper(
        cfg,
        start_times=start_times,
        names=names,
        sport_types=sport_types,
        max_workers=max_workers,
        cancel_event=cancel_event,
    )
    existing_count = len(groups)
    grouper.run(new_signatures, groups, seen)
    _LOG.info(
        "Incrementally grouped %d new signatures: %d existing groups, %d new (%d comparisons) in %.3fs",
        len(new_signatures),
        existing_count,
        len(groups) - existing_count,
        grouper.comparisons,
        time.perf_counter() - started,
    )
    return groups


def build_activity_index(groups: Iterable[RouteGroup]) -> Dict[str, str]:
    """Return a derived ``activity_id -> group_id`` lookup table."""

    index: Dict[str, str] = {}
    for group in groups:
        for activity_id in group.activity_ids:
            index.setdefault(activity_id, group.id)
    return index


def process_routes_batch(
    tracks: Sequence[GpsTrack | TrackInput],
    config: Optional[MatchConfig] = None,
    **kwargs,
) -> List[RouteGroup]:
    """Build signatures for raw tracks and group them in one call."""

    cfg = resolve_config(config)
    signatures = create_signatures_batch(
        tracks,
        cfg,
        max_workers=kwargs.get("max_workers"),
        cancel_event=kwargs.get("cancel_event"),
    )
    return group_signatures(signatures, cfg, **kwargs)


def process_routes_flat(
    tracks: Sequence[FlatGpsTrack],
    config: Optional[MatchConfig] = None,
    **kwargs,
) -> List[RouteGroup]:
    cfg = resolve_config(config)
    signatures = create_signatures_from_flat(
        tracks,
        cfg,
        max_workers=kwargs.get("max_workers"),
        cancel_event=kwargs.get("cancel_event"),
    )
    return group_signatures(signatures, cfg, **kwargs)


def process_routes_flat_buffer(
    activity_ids: Sequence[str],
    coords: Sequence[float],
    offsets: Sequence[int],
    config: Optional[MatchConfig] = None,
    **kwargs,
) -> List[RouteGroup]:
    cfg = resolve_config(config)
    signatures = create_signatures_flat_buffer(
        activity_ids,
        coords,
        offsets,
        cfg,
        max_workers=kwargs.get("max_workers"),
        cancel_event=kwargs.get("cancel_event"),
    )
    return group_signatures(signatures, cfg, **kwargs)


__all__ = [
    "RouteGrouper",
    "group_signatures",
    "group_incremental",
    "build_activity_index",
    "process_routes_batch",
    "process_routes_flat",
    "process_routes_flat_buffer",
]
