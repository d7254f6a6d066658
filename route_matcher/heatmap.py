"""Sparse density heatmap with per-cell route provenance."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union

from . import config as _config
from .grid import CellGrid
from .models import (
    ActivityHeatmapData,
    CellCoord,
    CellQueryResult,
    HeatmapBounds,
    HeatmapCell,
    HeatmapConfig,
    HeatmapResult,
    RouteRef,
    RouteSignature,
)
from .parallel import check_cancelled, map_partitions

_LOG = logging.getLogger(__name__)

ActivityDataInput = Union[
    Mapping[str, ActivityHeatmapData], Sequence[ActivityHeatmapData], None
]


def get_default_heatmap_config() -> HeatmapConfig:
    """Return a fresh :class:`HeatmapConfig` built from the environment defaults."""

    return HeatmapConfig(cell_size_meters=_config.HEATMAP_CELL_SIZE_M)


@dataclass(slots=True)
class _CellAccumulator:
    visits: int = 0
    activities: Dict[str, Tuple[int, int]] = field(default_factory=dict)
    # route id -> activity ids; route_names keeps the first non-empty name seen.
    routes: Dict[str, Set[str]] = field(default_factory=dict)
    route_first: Dict[str, Tuple[int, int]] = field(default_factory=dict)
    route_names: Dict[str, Tuple[Tuple[int, int], str]] = field(default_factory=dict)
    first_visit: Optional[int] = None
    last_visit: Optional[int] = None

    def record(
        self, activity_id: str, data: Optional[ActivityHeatmapData], key: Tuple[int, int]
    ) -> None:
        self.visits += 1
        if activity_id not in self.activities or key < self.activities[activity_id]:
            self.activities[activity_id] = key
        if data is None:
            return
        if data.route_id:
            self.routes.setdefault(data.route_id, set()).add(activity_id)
            if data.route_id not in self.route_first or key < self.route_first[data.route_id]:
                self.route_first[data.route_id] = key
            if data.route_name:
                named = self.route_names.get(data.route_id)
                if named is None or key < named[0]:
                    self.route_names[data.route_id] = (key, data.route_name)
        if data.timestamp is not None:
            self._add_time(data.timestamp, data.timestamp)

    def _add_time(self, first: Optional[int], last: Optional[int]) -> None:
        if first is not None and (self.first_visit is None or first < self.first_visit):
            self.first_visit = first
        if last is not None and (self.last_visit is None or last > self.last_visit):
            self.last_visit = last

    def merge(self, other: "_CellAccumulator") -> None:
        self.visits += other.visits
        for activity_id, key in other.activities.items():
            if activity_id not in self.activities or key < self.activities[activity_id]:
                self.activities[activity_id] = key
        for route_id, members in other.routes.items():
            self.routes.setdefault(route_id, set()).update(members)
        for route_id, key in other.route_first.items():
            if route_id not in self.route_first or key < self.route_first[route_id]:
                self.route_first[route_id] = key
        for route_id, named in other.route_names.items():
            current = self.route_names.get(route_id)
            if current is None or named[0] < current[0]:
                self.route_names[route_id] = named
        self._add_time(other.first_visit, other.last_visit)


@dataclass(slots=True)
class _PartitionResult:
    cells: Dict[CellCoord, _CellAccumulator] = field(default_factory=dict)
    min_lat: float = float("inf")
    max_lat: float = float("-inf")
    min_lng: float = float("inf")
    max_lng: float = float("-inf")

    def merge(self, other: "_PartitionResult") -> None:
        for cell, acc in other.cells.items():
            existing = self.cells.get(cell)
            if existing is None:
                self.cells[cell] = acc
            else:
                existing.merge(acc)
        self.min_lat = min(self.min_lat, other.min_lat)
        self.max_lat = max(self.max_lat, other.max_lat)
        self.min_lng = min(self.min_lng, other.min_lng)
        self.max_lng = max(self.max_lng, other.max_lng)


def generate_heatmap(
    signatures: Sequence[RouteSignature],
    activity_data: ActivityDataInput = None,
    config: Optional[HeatmapConfig] = None,
    *,
    max_workers: Optional[int] = None,
    cancel_event: threading.Event | None = None,
) -> HeatmapResult:
    """Quantise every signature into grid cells and aggregate visits per cell."""

    cfg = config if config is not None else get_default_heatmap_config()
    if cfg.cell_size_meters <= 0:
        _LOG.warning("Heatmap skipped: non-positive cell size %s", cfg.cell_size_meters)
        return _empty_result(cfg)

    started = time.perf_counter()
    grid = CellGrid(cfg.cell_size_meters)
    data_by_id = _index_activity_data(activity_data)
    include = cfg.bounds.contains if cfg.bounds is not None else None
    indexed = list(enumerate(signatures))

    def accumulate(
        _offset: int, chunk: Sequence[Tuple[int, RouteSignature]]
    ) -> _PartitionResult:
        partial = _PartitionResult()
        for sig_idx, signature in chunk:
            check_cancelled(cancel_event, "heatmap generation")
            data = data_by_id.get(signature.activity_id)
            for cell, sample_idx in grid.visits(signature.points, include):
                acc = partial.cells.get(cell)
                if acc is None:
                    acc = partial.cells[cell] = _CellAccumulator()
                acc.record(signature.activity_id, data, (sig_idx, sample_idx))
            for lat, lng in signature.points:
                if include is None or include(lat, lng):
                    partial.min_lat = min(partial.min_lat, lat)
                    partial.max_lat = max(partial.max_lat, lat)
                    partial.min_lng = min(partial.min_lng, lng)
                    partial.max_lng = max(partial.max_lng, lng)
        return partial

    merged = _PartitionResult()
    for partial in map_partitions(
        accumulate, indexed, max_workers=max_workers, cancel_event=cancel_event
    ):
        merged.merge(partial)

    if not merged.cells:
        _LOG.info("Heatmap empty for %d signatures", len(signatures))
        return _empty_result(cfg)

    max_visits = max(acc.visits for acc in merged.cells.values())
    cells: List[HeatmapCell] = []
    all_routes: Set[str] = set()
    all_activities: Set[str] = set()
    for row, col in sorted(merged.cells):
        acc = merged.cells[(row, col)]
        center = grid.cell_center(row, col)
        refs = _route_refs(acc)
        activity_ids = sorted(acc.activities, key=lambda aid: (acc.activities[aid], aid))
        all_routes.update(acc.routes)
        all_activities.update(activity_ids)
        cells.append(
            HeatmapCell(
                row=row,
                col=col,
                center_lat=center.lat,
                center_lng=center.lng,
                density=acc.visits / max_visits,
                visit_count=acc.visits,
                route_refs=refs,
                unique_route_count=len(refs),
                activity_ids=activity_ids,
                first_visit=acc.first_visit,
                last_visit=acc.last_visit,
                is_common_path=len(refs) >= 2,
            )
        )

    rows = [cell.row for cell in cells]
    cols = [cell.col for cell in cells]
    result = HeatmapResult(
        cells=cells,
        bounds=HeatmapBounds(
            min_lat=merged.min_lat,
            max_lat=merged.max_lat,
            min_lng=merged.min_lng,
            max_lng=merged.max_lng,
        ),
        cell_size_meters=cfg.cell_size_meters,
        grid_rows=max(rows) - min(rows) + 1,
        grid_cols=max(cols) - min(cols) + 1,
        max_density=max_visits,
        total_routes=len(all_routes),
        total_activities=len(all_activities),
    )
    _LOG.info(
        "Generated heatmap: %d cells, %d activities, %d routes in %.3fs",
        len(cells),
        result.total_activities,
        result.total_routes,
        time.perf_counter() - started,
    )
    return result


def query_heatmap_cell(
    heatmap: HeatmapResult, lat: float, lng: float
) -> Optional[CellQueryResult]:
    """Return the cell containing ``(lat, lng)`` with a display label, if visited."""

    if not heatmap.cells or heatmap.cell_size_meters <= 0:
        return None
    row, col = CellGrid(heatmap.cell_size_meters).cell_of(lat, lng)
    cell = heatmap.cell_at(row, col)
    if cell is None:
        return None
    return CellQueryResult(cell=cell, suggested_label=suggest_label(cell))


def suggest_label(cell: HeatmapCell) -> str:
    if cell.unique_route_count == 0:
        if len(cell.activity_ids) == 1:
            return "Explored once"
        return f"{len(cell.activity_ids)} activities (no route)"
    if cell.unique_route_count == 1:
        ref = cell.route_refs[0]
        if ref.name:
            return f"{ref.name} ({ref.activity_count}x)"
        return f"Route ({ref.activity_count} activities)"
    named = next((ref for ref in cell.route_refs if ref.name), None)
    if named is not None:
        return f"{named.name} + {cell.unique_route_count - 1} more"
    return f"Common path ({cell.unique_route_count} routes)"


def _route_refs(acc: _CellAccumulator) -> List[RouteRef]:
    """Routes ordered by activity count (descending), then first visit."""

    ordered = sorted(
        acc.routes,
        key=lambda rid: (-len(acc.routes[rid]), acc.route_first[rid], rid),
    )
    return [
        RouteRef(
            route_id=rid,
            activity_count=len(acc.routes[rid]),
            name=acc.route_names[rid][1] if rid in acc.route_names else None,
        )
        for rid in ordered
    ]


def _index_activity_data(
    activity_data: ActivityDataInput,
) -> Dict[str, ActivityHeatmapData]:
    if activity_data is None:
        return {}
    if isinstance(activity_data, Mapping):
        return dict(activity_data)
    index: Dict[str, ActivityHeatmapData] = {}
    for item in activity_data:
        index.setdefault(item.activity_id, item)
    return index


def _empty_result(cfg: HeatmapConfig) -> HeatmapResult:
    return HeatmapResult(
        cells=[],
        bounds=None,
        cell_size_meters=cfg.cell_size_meters,
        grid_rows=0,
        grid_cols=0,
        max_density=0,
        total_routes=0,
        total_activities=0,
    )


__all__ = [
    "get_default_heatmap_config",
    "generate_heatmap",
    "query_heatmap_cell",
    "suggest_label",
]
