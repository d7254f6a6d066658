"""Tests for the route map CLI helper."""

from __future__ import annotations

import json
from pathlib import Path

import folium
import polyline

from conftest import make_loop, make_road
from route_matcher.tools.render_map import load_tracks, main, render


def _write_tracks(path: Path) -> Path:
    entries = [
        {
            "id": "a",
            "points": make_road(),
            "sport": "Run",
            "start_time": 1_700_000_000,
            "name": "River road",
        },
        {
            "id": "b",
            "polyline": polyline.encode(make_road(east_shift_m=10.0), 5),
            "sport": "Run",
            "start_time": 1_700_086_400,
        },
        {"id": "c", "points": make_road(east_shift_m=-12.0), "sport": "Run"},
        {"id": "loop", "points": make_loop(), "sport": "Ride"},
    ]
    path.write_text(json.dumps(entries), encoding="utf-8")
    return path


def test_load_tracks_reads_points_and_polylines(tmp_path: Path) -> None:
    tracks = load_tracks(_write_tracks(tmp_path / "tracks.json"))
    assert sorted(sig.activity_id for sig in tracks.signatures) == ["a", "b", "c", "loop"]
    assert tracks.sport_types["loop"] == "Ride"
    assert tracks.start_times == {"a": 1_700_000_000, "b": 1_700_086_400}
    assert tracks.names == {"a": "River road"}


def test_render_groups_and_writes_html(tmp_path: Path) -> None:
    tracks = load_tracks(_write_tracks(tmp_path / "tracks.json"))
    output = tmp_path / "out" / "map.html"
    map_object, summary = render(tracks, output_html=output)
    assert isinstance(map_object, folium.Map)
    assert output.exists()
    road_group = next(g for g in summary.groups if "a" in g.activity_ids)
    assert sorted(road_group.activity_ids) == ["a", "b", "c"]
    assert summary.sections
    assert summary.heatmap is not None and summary.heatmap.total_routes == len(summary.groups)


def test_main_returns_zero_on_success(tmp_path: Path) -> None:
    output = tmp_path / "routes.html"
    code = main(
        [
            str(_write_tracks(tmp_path / "tracks.json")),
            "--output",
            str(output),
            "--no-heatmap",
            "--max-workers",
            "1",
        ]
    )
    assert code == 0
    assert output.exists()


def test_main_returns_one_for_bad_input(tmp_path: Path) -> None:
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"not": "a list"}), encoding="utf-8")
    assert main([str(bad)]) == 1
    assert main([str(tmp_path / "missing.json")]) == 1
