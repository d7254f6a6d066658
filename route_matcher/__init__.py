"""GPS route matching, grouping, frequent-section and heatmap engine."""

from .errors import (
    ConfigError,
    FetchError,
    InputError,
    OperationCancelled,
    RouteMatcherError,
)
from .fetch import (
    ActivityMapFetcher,
    FetchResult,
    fetch_activity_maps,
    fetch_and_process_activities,
)
from .grouping import (
    build_activity_index,
    group_incremental,
    group_signatures,
    process_routes_batch,
    process_routes_flat,
    process_routes_flat_buffer,
)
from .heatmap import generate_heatmap, get_default_heatmap_config, query_heatmap_cell
from .models import (
    ActivityHeatmapData,
    Bounds,
    CellQueryResult,
    FlatGpsTrack,
    FrequentSection,
    GeoPoint,
    GpsTrack,
    HeatmapBounds,
    HeatmapCell,
    HeatmapConfig,
    HeatmapResult,
    MatchConfig,
    MatchResult,
    RouteGroup,
    RouteRef,
    RouteSignature,
    SectionConfig,
)
from .sections import detect_frequent_sections, get_default_section_config
from .signatures import (
    create_signature,
    create_signature_from_polyline,
    create_signatures_batch,
    create_signatures_flat_buffer,
    create_signatures_from_flat,
    get_default_config,
)
from .similarity import compare_routes

__all__ = [
    "create_signature",
    "create_signatures_batch",
    "create_signatures_from_flat",
    "create_signatures_flat_buffer",
    "create_signature_from_polyline",
    "compare_routes",
    "group_signatures",
    "group_incremental",
    "build_activity_index",
    "process_routes_batch",
    "process_routes_flat",
    "process_routes_flat_buffer",
    "detect_frequent_sections",
    "generate_heatmap",
    "query_heatmap_cell",
    "fetch_activity_maps",
    "fetch_and_process_activities",
    "ActivityMapFetcher",
    "FetchResult",
    "get_default_config",
    "get_default_section_config",
    "get_default_heatmap_config",
    "GeoPoint",
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
    "RouteMatcherError",
    "ConfigError",
    "InputError",
    "OperationCancelled",
    "FetchError",
]
