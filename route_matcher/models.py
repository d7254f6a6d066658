"""Dataclasses describing route signatures, match results, groups and grids."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, NamedTuple, Optional, Sequence, Tuple

from .errors import ConfigError


class GeoPoint(NamedTuple):
    """Latitude/longitude pair in decimal degrees."""

    lat: float
    lng: float


CellCoord = Tuple[int, int]


@dataclass(frozen=True, slots=True)
class Bounds:
    """Axis-aligned lat/lng bounding box."""

    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def center(self) -> GeoPoint:
        return GeoPoint(
            (self.min_lat + self.max_lat) / 2.0,
            (self.min_lng + self.max_lng) / 2.0,
        )

    def overlaps(self, other: "Bounds", buffer_deg: float = 0.0) -> bool:
        """Return True when the boxes intersect after growing ``self`` by ``buffer_deg``."""

        return not (
            self.max_lat + buffer_deg < other.min_lat
            or self.min_lat - buffer_deg > other.max_lat
            or self.max_lng + buffer_deg < other.min_lng
            or self.min_lng - buffer_deg > other.max_lng
        )

    def contains(self, lat: float, lng: float) -> bool:
        return (
            self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng
        )


@dataclass(frozen=True, slots=True)
class RouteSignature:
    """Compact, immutable representation of one activity's path.

    ``points`` holds the simplified geometry while ``total_distance`` is measured
    on the sanitised raw points so simplification never understates length.
    """

    activity_id: str
    points: Tuple[GeoPoint, ...]
    total_distance: float
    start_point: GeoPoint
    end_point: GeoPoint
    bounds: Bounds
    center: GeoPoint
    is_loop: bool = False


@dataclass(frozen=True, slots=True)
class MatchConfig:
    """Thresholds used by signature creation, comparison and grouping."""

    perfect_threshold: float = 30.0
    zero_threshold: float = 250.0
    min_match_percentage: float = 65.0
    min_route_distance: float = 500.0
    max_distance_diff_ratio: float = 0.20
    endpoint_threshold: float = 200.0
    resample_count: int = 50
    simplification_tolerance: float = 0.0001
    max_simplified_points: int = 100

    def validate(self) -> "MatchConfig":
        """Raise :class:`ConfigError` when a threshold invariant is violated."""

        distances = {
            "perfect_threshold": self.perfect_threshold,
            "zero_threshold": self.zero_threshold,
            "min_route_distance": self.min_route_distance,
            "max_distance_diff_ratio": self.max_distance_diff_ratio,
            "endpoint_threshold": self.endpoint_threshold,
            "simplification_tolerance": self.simplification_tolerance,
        }
        for name, value in distances.items():
            if value < 0:
                raise ConfigError(f"{name} must be >= 0 (got {value})")
        if self.perfect_threshold >= self.zero_threshold:
            raise ConfigError(
                "perfect_threshold must be lower than zero_threshold "
                f"({self.perfect_threshold} >= {self.zero_threshold})"
            )
        if not 0.0 <= self.min_match_percentage <= 100.0:
            raise ConfigError(
                f"min_match_percentage must be within [0, 100] (got {self.min_match_percentage})"
            )
        if self.resample_count < 2:
            raise ConfigError(f"resample_count must be >= 2 (got {self.resample_count})")
        if self.max_simplified_points < 2:
            raise ConfigError(
                f"max_simplified_points must be >= 2 (got {self.max_simplified_points})"
            )
        return self


@dataclass(frozen=True, slots=True)
class MatchResult:
    """Outcome of comparing two signatures."""

    activity_id_1: str
    activity_id_2: str
    match_percentage: float
    direction: str
    amd: float
    endpoints_match: bool = False
    # Only populated for partial overlaps, measured along the longer route.
    overlap_distance: Optional[float] = None
    overlap_start: Optional[float] = None
    overlap_end: Optional[float] = None

    def is_match(self, config: MatchConfig) -> bool:
        """Return True when this result admits a route into a group."""

        return (
            self.direction != "partial"
            and self.match_percentage >= config.min_match_percentage
        )


@dataclass(slots=True)
class RouteGroup:
    """Activities that travelled the same physical route.

    The representative is always the anchor's own signature. Stats are updated
    in place by :meth:`add_member` and never recomputed from the member list.
    """

    id: str
    representative: RouteSignature
    activity_ids: List[str] = field(default_factory=list)
    activity_count: int = 0
    average_match_quality: float = 0.0
    first_date: Optional[int] = None
    last_date: Optional[int] = None
    name: Optional[str] = None
    sport_type: Optional[str] = None

    def add_member(
        self,
        activity_id: str,
        match_percentage: float,
        start_time: Optional[int] = None,
    ) -> None:
        self.activity_ids.append(activity_id)
        self.activity_count += 1
        self.average_match_quality += (
            match_percentage - self.average_match_quality
        ) / self.activity_count
        if start_time is not None:
            if self.first_date is None or start_time < self.first_date:
                self.first_date = start_time
            if self.last_date is None or start_time > self.last_date:
                self.last_date = start_time


@dataclass(frozen=True, slots=True)
class SectionConfig:
    cell_size_meters: float = 100.0
    min_visits: int = 3
    min_cells: int = 5
    diagonal_connect: bool = True


@dataclass(slots=True)
class FrequentSection:
    """Connected cluster of grid cells visited at least ``min_visits`` times."""

    id: str
    sport_type: str
    cells: FrozenSet[CellCoord]
    polyline: List[GeoPoint]
    activity_ids: List[str]
    route_ids: List[str]
    visit_count: int
    distance_meters: float
    first_visit: int = 0
    last_visit: int = 0


@dataclass(frozen=True, slots=True)
class HeatmapBounds:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, lat: float, lng: float) -> bool:
        return (
            self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng
        )


@dataclass(frozen=True, slots=True)
class HeatmapConfig:
    cell_size_meters: float = 100.0
    bounds: Optional[HeatmapBounds] = None


@dataclass(frozen=True, slots=True)
class RouteRef:
    """Per-route breakdown of the activities passing through a heatmap cell."""

    route_id: str
    activity_count: int
    name: Optional[str] = None


@dataclass(slots=True)
class HeatmapCell:
    row: int
    col: int
    center_lat: float
    center_lng: float
    density: float
    visit_count: int
    route_refs: List[RouteRef]
    unique_route_count: int
    activity_ids: List[str]
    first_visit: Optional[int] = None
    last_visit: Optional[int] = None
    is_common_path: bool = False


@dataclass(slots=True)
class HeatmapResult:
    """Sparse heatmap: only visited cells are materialised."""

    cells: List[HeatmapCell]
    bounds: Optional[HeatmapBounds]
    cell_size_meters: float
    grid_rows: int
    grid_cols: int
    max_density: int
    total_routes: int
    total_activities: int
    _index: Dict[CellCoord, int] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        if not self._index:
            self._index = {(cell.row, cell.col): idx for idx, cell in enumerate(self.cells)}

    def cell_at(self, row: int, col: int) -> Optional[HeatmapCell]:
        idx = self._index.get((row, col))
        return None if idx is None else self.cells[idx]


@dataclass(frozen=True, slots=True)
class CellQueryResult:
    cell: HeatmapCell
    suggested_label: str


@dataclass(frozen=True, slots=True)
class ActivityHeatmapData:
    """Route/time metadata attached to an activity for heatmap provenance."""

    activity_id: str
    route_id: Optional[str] = None
    route_name: Optional[str] = None
    timestamp: Optional[int] = None


@dataclass(frozen=True, slots=True)
class GpsTrack:
    """Raw activity track as a sequence of lat/lng points."""

    activity_id: str
    points: Sequence[Tuple[float, float]]


@dataclass(frozen=True, slots=True)
class FlatGpsTrack:
    """Raw activity track as a flat ``[lat1, lng1, lat2, lng2, ...]`` list."""

    activity_id: str
    coords: Sequence[float]


__all__ = [
    "GeoPoint",
    "CellCoord",
    "Bounds",
    "RouteSignature",
    "MatchConfig",
    "MatchResult",
    "RouteGroup",
    "SectionConfig",
    "FrequentSection",
    "HeatmapBounds",
    "HeatmapConfig",
    "RouteRef",
    "HeatmapCell",
    "HeatmapResult",
    "CellQueryResult",
    "ActivityHeatmapData",
    "GpsTrack",
    "FlatGpsTrack",
]
