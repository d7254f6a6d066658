"""Utilities for visualising route groups, sections and heatmaps on a map."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import folium  # Using folium to build an interactive Leaflet map.

from .models import FrequentSection, HeatmapResult, RouteGroup

LatLon = Tuple[float, float]
PathLike = Union[str, Path]

_ROUTE_COLORS = ("#2c7bb6", "#fdae61", "#abd9e9", "#7b3294", "#008837", "#c2a5cf")
_SECTION_COLOR = "#1a9641"
_COMMON_PATH_COLOR = "#d73027"
_HEAT_COLOR = "#f46d43"


def _map_center(
    groups: Sequence[RouteGroup],
    sections: Sequence[FrequentSection],
    heatmap: Optional[HeatmapResult],
) -> Optional[LatLon]:
    if groups:
        center = groups[0].representative.center
        return center.lat, center.lng
    if sections and sections[0].polyline:
        point = sections[0].polyline[0]
        return point.lat, point.lng
    if heatmap is not None and heatmap.bounds is not None:
        bounds = heatmap.bounds
        return (bounds.min_lat + bounds.max_lat) / 2.0, (bounds.min_lng + bounds.max_lng) / 2.0
    return None


def add_route_groups(folium_map: folium.Map, groups: Sequence[RouteGroup]) -> int:
    """Draw each group's representative path; returns the number of layers added."""

    added = 0
    for idx, group in enumerate(groups):
        points = [(p.lat, p.lng) for p in group.representative.points]
        if len(points) < 2:
            continue
        label = group.name or f"Route {group.id}"
        folium.PolyLine(
            points,
            color=_ROUTE_COLORS[idx % len(_ROUTE_COLORS)],
            weight=4,
            opacity=0.7,
            tooltip=f"{label} ({group.activity_count} activities, "
            f"{group.average_match_quality:.0f}% avg match)",
        ).add_to(folium_map)
        added += 1
    return added


def add_sections(folium_map: folium.Map, sections: Sequence[FrequentSection]) -> int:
    added = 0
    for section in sections:
        points = [(p.lat, p.lng) for p in section.polyline]
        if len(points) < 2:
            continue
        folium.PolyLine(
            points,
            color=_SECTION_COLOR,
            weight=6,
            opacity=0.9,
            tooltip=(
                f"{section.id}: {section.visit_count} visits, "
                f"{section.distance_meters:.0f} m"
            ),
        ).add_to(folium_map)
        added += 1
    return added


def add_heatmap(folium_map: folium.Map, heatmap: HeatmapResult) -> int:
    """Draw one translucent circle per visited cell, scaled by density."""

    radius_m = heatmap.cell_size_meters / 2.0
    for cell in heatmap.cells:
        color = _COMMON_PATH_COLOR if cell.is_common_path else _HEAT_COLOR
        folium.Circle(
            location=(cell.center_lat, cell.center_lng),
            radius=radius_m,
            color=color,
            weight=0,
            fill=True,
            fill_color=color,
            fill_opacity=0.15 + 0.6 * cell.density,
            tooltip=f"{cell.visit_count} visits, {cell.unique_route_count} routes",
        ).add_to(folium_map)
    return len(heatmap.cells)


def create_route_map(
    *,
    groups: Sequence[RouteGroup] = (),
    sections: Sequence[FrequentSection] = (),
    heatmap: Optional[HeatmapResult] = None,
    output_html_path: Optional[PathLike] = None,
) -> folium.Map:
    """Create an interactive map overlaying groups, sections and heatmap cells.

    Args:
        groups: Route groups whose representatives are drawn as polylines.
        sections: Frequent sections drawn on top of the routes.
        heatmap: Optional heatmap drawn underneath as density circles.
        output_html_path: Optional path to persist the resulting map as HTML.

    Returns:
        A :class:`folium.Map` instance containing the overlay.

    Raises:
        ValueError: If there is nothing to draw.
    """

    center = _map_center(groups, sections, heatmap)
    if center is None:
        raise ValueError("Nothing to draw: no groups, sections or heatmap cells")

    folium_map = folium.Map(location=center, zoom_start=13, control_scale=True)
    if heatmap is not None:
        add_heatmap(folium_map, heatmap)
    add_route_groups(folium_map, groups)
    add_sections(folium_map, sections)

    if output_html_path is not None:
        output_path = Path(output_html_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        folium_map.save(str(output_path))

    return folium_map


__all__ = ["add_route_groups", "add_sections", "add_heatmap", "create_route_map"]
