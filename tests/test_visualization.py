"""Tests for the visualization helpers."""

from __future__ import annotations

from pathlib import Path

import folium
import pytest

from conftest import make_line, make_road
from route_matcher import (
    create_signature,
    detect_frequent_sections,
    generate_heatmap,
    group_signatures,
)
from route_matcher.visualization import _SECTION_COLOR, create_route_map


@pytest.fixture
def signatures():
    tracks = [
        ("a", make_road()),
        ("b", make_road(east_shift_m=10.0)),
        ("c", make_road(east_shift_m=-10.0)),
        ("d", make_line(2000.0, bearing_deg=120.0)),
    ]
    return [create_signature(aid, pts) for aid, pts in tracks]


def test_create_route_map_draws_all_layers(signatures, tmp_path: Path) -> None:
    """Groups, sections and heatmap cells all end up on the map."""

    groups = group_signatures(signatures, names={"a": "Taff Trail"})
    sections = detect_frequent_sections(signatures, groups)
    heatmap = generate_heatmap(signatures)
    assert sections, "Three shifted copies of the road should form a section"

    output_path = tmp_path / "maps" / "routes.html"
    map_object = create_route_map(
        groups=groups,
        sections=sections,
        heatmap=heatmap,
        output_html_path=output_path,
    )

    assert isinstance(map_object, folium.Map)
    assert output_path.exists(), "Expected the HTML map output to be written"

    children = list(map_object._children.values())
    polylines = [c for c in children if isinstance(c, folium.vector_layers.PolyLine)]
    circles = [c for c in children if isinstance(c, folium.vector_layers.Circle)]
    assert len(polylines) == len(groups) + len(sections)
    assert len(circles) == len(heatmap.cells)
    assert _SECTION_COLOR in {p.options.get("color") for p in polylines}

    html = output_path.read_text(encoding="utf-8")
    assert "Taff Trail" in html


def test_heatmap_only_map(signatures) -> None:
    heatmap = generate_heatmap(signatures)
    map_object = create_route_map(heatmap=heatmap)
    assert isinstance(map_object, folium.Map)


def test_nothing_to_draw_raises() -> None:
    with pytest.raises(ValueError):
        create_route_map()
