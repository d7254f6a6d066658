"""Render route groups, frequent sections and a heatmap from a JSON track file."""

from __future__ import annotations

import argparse
import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import folium

from ..grouping import group_signatures
from ..heatmap import generate_heatmap, get_default_heatmap_config
from ..models import ActivityHeatmapData, FrequentSection, HeatmapResult, RouteGroup, RouteSignature
from ..sections import detect_frequent_sections, get_default_section_config
from ..signatures import create_signature_from_polyline, create_signatures_batch, get_default_config
from ..visualization import create_route_map

PathLike = Union[str, Path]


@dataclass(slots=True)
class TrackFile:
    """Tracks and metadata loaded from a JSON input file."""

    signatures: List[RouteSignature] = field(default_factory=list)
    sport_types: Dict[str, str] = field(default_factory=dict)
    start_times: Dict[str, int] = field(default_factory=dict)
    names: Dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class RenderSummary:
    groups: List[RouteGroup]
    sections: List[FrequentSection]
    heatmap: Optional[HeatmapResult]


def load_tracks(path: PathLike, *, max_workers: Optional[int] = None) -> TrackFile:
    """Load a JSON list of ``{"id", "points" | "polyline", "sport", "start_time", "name"}``.

    Raises:
        ValueError: If the file is not a JSON list of track objects.
    """

    with open(path, "r", encoding="utf-8") as handle:
        payload: Any = json.load(handle)
    if not isinstance(payload, list):
        raise ValueError("Track file must contain a JSON list of activities")

    config = get_default_config()
    loaded = TrackFile()
    raw_tracks = []
    for entry in payload:
        if not isinstance(entry, dict) or "id" not in entry:
            raise ValueError("Each track entry needs an 'id'")
        activity_id = str(entry["id"])
        if entry.get("sport"):
            loaded.sport_types[activity_id] = str(entry["sport"])
        if entry.get("start_time") is not None:
            loaded.start_times[activity_id] = int(entry["start_time"])
        if entry.get("name"):
            loaded.names[activity_id] = str(entry["name"])
        if entry.get("polyline"):
            signature = create_signature_from_polyline(activity_id, entry["polyline"], config)
            if signature is not None:
                loaded.signatures.append(signature)
        else:
            raw_tracks.append((activity_id, entry.get("points") or []))

    loaded.signatures.extend(
        create_signatures_batch(raw_tracks, config, max_workers=max_workers)
    )
    return loaded


def render(
    tracks: TrackFile,
    *,
    output_html: Optional[PathLike] = None,
    cell_size_m: Optional[float] = None,
    include_heatmap: bool = True,
    max_workers: Optional[int] = None,
) -> tuple[folium.Map, RenderSummary]:
    """Run grouping, section detection and the heatmap, then draw the result."""

    groups = group_signatures(
        tracks.signatures,
        start_times=tracks.start_times,
        names=tracks.names,
        sport_types=tracks.sport_types,
        max_workers=max_workers,
    )
    section_config = get_default_section_config()
    heatmap_config = get_default_heatmap_config()
    if cell_size_m is not None:
        section_config = replace(section_config, cell_size_meters=cell_size_m)
        heatmap_config = replace(heatmap_config, cell_size_meters=cell_size_m)
    sections = detect_frequent_sections(
        tracks.signatures,
        groups,
        tracks.sport_types,
        section_config,
        activity_times=tracks.start_times,
        max_workers=max_workers,
    )

    heatmap = None
    if include_heatmap:
        route_names = {group.id: group.name for group in groups}
        activity_data = [
            ActivityHeatmapData(
                activity_id=activity_id,
                route_id=group.id,
                route_name=route_names.get(group.id),
                timestamp=tracks.start_times.get(activity_id),
            )
            for group in groups
            for activity_id in group.activity_ids
        ]
        heatmap = generate_heatmap(
            tracks.signatures, activity_data, heatmap_config, max_workers=max_workers
        )

    folium_map = create_route_map(
        groups=groups,
        sections=sections,
        heatmap=heatmap,
        output_html_path=output_html,
    )
    return folium_map, RenderSummary(groups=groups, sections=sections, heatmap=heatmap)


def _build_parser() -> argparse.ArgumentParser:
    """Return the CLI argument parser for the route map tool."""

    parser = argparse.ArgumentParser(
        description=(
            "Group activities into routes, detect frequent sections and write"
            " an interactive HTML map."
        )
    )
    parser.add_argument("tracks", type=Path, help="JSON file with activity tracks")
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("maps") / "routes.html",
        help="Output HTML path (default: maps/routes.html)",
    )
    parser.add_argument(
        "--cell-size-m",
        type=float,
        help="Grid cell size in metres for sections and heatmap",
    )
    parser.add_argument("--no-heatmap", action="store_true")
    parser.add_argument("--max-workers", type=int)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point used via ``python -m route_matcher.tools.render_map``."""

    parser = _build_parser()
    args = parser.parse_args(argv)

    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=logging.INFO,
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )

    try:
        tracks = load_tracks(args.tracks, max_workers=args.max_workers)
    except (OSError, ValueError) as exc:
        logging.error("Failed to load tracks '%s': %s", args.tracks, exc)
        return 1
    if not tracks.signatures:
        logging.error("No usable tracks found in %s", args.tracks)
        return 1

    try:
        _map, summary = render(
            tracks,
            output_html=args.output,
            cell_size_m=args.cell_size_m,
            include_heatmap=not args.no_heatmap,
            max_workers=args.max_workers,
        )
    except ValueError as exc:
        logging.error("Failed to build route map: %s", exc)
        return 1

    logging.info(
        "%d routes, %d frequent sections", len(summary.groups), len(summary.sections)
    )
    logging.info("Route map written to %s", args.output)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
