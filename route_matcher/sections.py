"""Detect frequently travelled sections on a fixed spatial grid.

Every signature is quantised into grid cells; visits are counted per
``(sport, cell)``. Cells with at least ``min_visits`` visits are flood-filled
into connected components, and components with at least ``min_cells`` cells
become :class:`FrequentSection` results.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from . import config as _config
from .errors import ConfigError
from .geo import polyline_length
from .grid import CellGrid, connected_components
from .grouping import build_activity_index
from .models import CellCoord, FrequentSection, RouteGroup, RouteSignature, SectionConfig
from .parallel import check_cancelled, map_partitions

_LOG = logging.getLogger(__name__)

UNKNOWN_SPORT = "Unknown"

# (signature input index, densified sample index) of a first visit.
VisitKey = Tuple[int, int]
_CellKey = Tuple[str, CellCoord]


def get_default_section_config() -> SectionConfig:
    """Return a fresh :class:`SectionConfig` built from the environment defaults."""

    return SectionConfig(
        cell_size_meters=_config.SECTION_CELL_SIZE_M,
        min_visits=_config.SECTION_MIN_VISITS,
        min_cells=_config.SECTION_MIN_CELLS,
        diagonal_connect=_config.SECTION_DIAGONAL_CONNECT,
    )


@dataclass(slots=True)
class _CellStats:
    visits: int = 0
    first_key: Optional[VisitKey] = None
    # activity id -> first visit key, so member order is deterministic.
    activities: Dict[str, VisitKey] = field(default_factory=dict)

    def record(self, activity_id: str, key: VisitKey) -> None:
        self.visits += 1
        if self.first_key is None or key < self.first_key:
            self.first_key = key
        current = self.activities.get(activity_id)
        if current is None or key < current:
            self.activities[activity_id] = key

    def merge(self, other: "_CellStats") -> None:
        self.visits += other.visits
        if other.first_key is not None and (
            self.first_key is None or other.first_key < self.first_key
        ):
            self.first_key = other.first_key
        for activity_id, key in other.activities.items():
            current = self.activities.get(activity_id)
            if current is None or key < current:
                self.activities[activity_id] = key


def merge_cell_counts(
    left: Dict[_CellKey, _CellStats], right: Mapping[_CellKey, _CellStats]
) -> Dict[_CellKey, _CellStats]:
    """Combine two partial count maps (associative and commutative)."""

    for key, stats in right.items():
        existing = left.get(key)
        if existing is None:
            existing = left[key] = _CellStats()
        existing.merge(stats)
    return left


def detect_frequent_sections(
    signatures: Sequence[RouteSignature],
    groups: Iterable[RouteGroup] = (),
    sport_types: Optional[Mapping[str, str]] = None,
    config: Optional[SectionConfig] = None,
    *,
    activity_times: Optional[Mapping[str, int]] = None,
    max_workers: Optional[int] = None,
    cancel_event: threading.Event | None = None,
) -> List[FrequentSection]:
    """Return frequent sections sorted by ``visit_count`` (descending)."""

    cfg = config if config is not None else get_default_section_config()
    if cfg.min_visits < 1:
        raise ConfigError(f"min_visits must be >= 1 (got {cfg.min_visits})")
    if cfg.min_cells < 1:
        raise ConfigError(f"min_cells must be >= 1 (got {cfg.min_cells})")
    if cfg.cell_size_meters <= 0:
        _LOG.warning(
            "Section detection skipped: non-positive cell size %s", cfg.cell_size_meters
        )
        return []

    started = time.perf_counter()
    grid = CellGrid(cfg.cell_size_meters)
    sports = sport_types or {}
    times = activity_times or {}
    route_index = build_activity_index(groups)
    indexed = list(enumerate(signatures))

    def count_partition(
        _offset: int, chunk: Sequence[Tuple[int, RouteSignature]]
    ) -> Dict[_CellKey, _CellStats]:
        counts: Dict[_CellKey, _CellStats] = {}
        for sig_idx, signature in chunk:
            check_cancelled(cancel_event, "section detection")
            sport = sports.get(signature.activity_id) or UNKNOWN_SPORT
            for cell, sample_idx in grid.visits(signature.points):
                key = (sport, cell)
                stats = counts.get(key)
                if stats is None:
                    stats = counts[key] = _CellStats()
                stats.record(signature.activity_id, (sig_idx, sample_idx))
        return counts

    counts: Dict[_CellKey, _CellStats] = {}
    for partial in map_partitions(
        count_partition, indexed, max_workers=max_workers, cancel_event=cancel_event
    ):
        merge_cell_counts(counts, partial)

    frequent: Dict[str, Dict[CellCoord, _CellStats]] = {}
    for (sport, cell), stats in counts.items():
        if stats.visits >= cfg.min_visits:
            frequent.setdefault(sport, {})[cell] = stats

    sections: List[Tuple[VisitKey, FrequentSection]] = []
    for sport in sorted(frequent):
        cells = frequent[sport]
        ordered = sorted(cells, key=lambda c: (cells[c].first_key, c))
        for component in connected_components(ordered, cfg.diagonal_connect):
            if len(component) < cfg.min_cells:
                continue
            sections.append(
                _build_section(sport, component, cells, grid, route_index, times)
            )

    sections.sort(key=lambda item: (-item[1].visit_count, item[0]))
    per_sport: Dict[str, int] = {}
    results: List[FrequentSection] = []
    for _key, section in sections:
        number = per_sport.get(section.sport_type, 0)
        per_sport[section.sport_type] = number + 1
        section.id = f"sec_{section.sport_type.lower()}_{number}"
        results.append(section)

    _LOG.info(
        "Detected %d frequent sections from %d signatures (%d occupied cells) in %.3fs",
        len(results),
        len(signatures),
        len(counts),
        time.perf_counter() - started,
    )
    return results


def _build_section(
    sport: str,
    component: Sequence[CellCoord],
    cells: Mapping[CellCoord, _CellStats],
    grid: CellGrid,
    route_index: Mapping[str, str],
    times: Mapping[str, int],
) -> Tuple[VisitKey, FrequentSection]:
    ordered = sorted(component, key=lambda c: (cells[c].first_key, c))
    polyline = [grid.cell_center(row, col) for row, col in ordered]

    first_keys: Dict[str, VisitKey] = {}
    for cell in component:
        for activity_id, key in cells[cell].activities.items():
            current = first_keys.get(activity_id)
            if current is None or key < current:
                first_keys[activity_id] = key
    activity_ids = sorted(first_keys, key=lambda aid: (first_keys[aid], aid))

    route_ids: List[str] = []
    for activity_id in activity_ids:
        route_id = route_index.get(activity_id)
        if route_id is not None and route_id not in route_ids:
            route_ids.append(route_id)

    stamps = [times[aid] for aid in activity_ids if times.get(aid) is not None]
    section = FrequentSection(
        id="",
        sport_type=sport,
        cells=frozenset(component),
        polyline=polyline,
        activity_ids=activity_ids,
        route_ids=route_ids,
        visit_count=sum(cells[cell].visits for cell in component),
        distance_meters=polyline_length(polyline),
        first_visit=min(stamps) if stamps else 0,
        last_visit=max(stamps) if stamps else 0,
    )
    return cells[ordered[0]].first_key, section


__all__ = [
    "UNKNOWN_SPORT",
    "get_default_section_config",
    "merge_cell_counts",
    "detect_frequent_sections",
]
