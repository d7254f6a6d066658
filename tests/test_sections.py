"""Tests for grid-based frequent section detection."""

from __future__ import annotations

import logging

import pytest

from conftest import BASE_LAT, BASE_LNG, TrippingEvent, make_line
from route_matcher import (
    ConfigError,
    OperationCancelled,
    SectionConfig,
    create_signature,
    detect_frequent_sections,
    group_signatures,
)
from route_matcher import config as route_config
from route_matcher.grid import FOUR_NEIGHBOURS


def _sig(activity_id, points):
    sig = create_signature(activity_id, points)
    assert sig is not None
    return sig


def _east(length_m: float = 3000.0, lat: float = BASE_LAT):
    return make_line(length_m, bearing_deg=90.0, start=(lat, BASE_LNG))


def _is_four_connected(cells) -> bool:
    cells = set(cells)
    seed = next(iter(cells))
    seen = {seed}
    stack = [seed]
    while stack:
        row, col = stack.pop()
        for drow, dcol in FOUR_NEIGHBOURS:
            neighbour = (row + drow, col + dcol)
            if neighbour in cells and neighbour not in seen:
                seen.add(neighbour)
                stack.append(neighbour)
    return seen == cells


def test_repeated_commute_becomes_a_section() -> None:
    signatures = [_sig(aid, _east()) for aid in ("a", "b", "c")]
    sections = detect_frequent_sections(
        signatures, sport_types={"a": "Run", "b": "Run", "c": "Run"}
    )
    assert len(sections) == 1
    section = sections[0]
    assert section.id == "sec_run_0"
    assert section.sport_type == "Run"
    assert section.activity_ids == ["a", "b", "c"]
    assert len(section.cells) >= 28
    assert section.visit_count == 3 * len(section.cells)
    assert 2700.0 < section.distance_meters < 3100.0
    lngs = [point.lng for point in section.polyline]
    assert lngs == sorted(lngs)
    assert len(section.polyline) == len(section.cells)


def test_too_few_visits_yields_nothing() -> None:
    signatures = [_sig(aid, _east()) for aid in ("a", "b")]
    assert detect_frequent_sections(signatures) == []


def test_short_components_are_dropped() -> None:
    signatures = [_sig(aid, _east(300.0)) for aid in ("a", "b", "c")]
    assert detect_frequent_sections(signatures) == []
    relaxed = detect_frequent_sections(signatures, config=SectionConfig(min_cells=2))
    assert len(relaxed) == 1


def test_sports_are_counted_separately() -> None:
    signatures = [_sig(aid, _east()) for aid in ("run-a", "ride-a", "run-b", "ride-b")]
    sports = {"run-a": "Run", "run-b": "Run", "ride-a": "Ride", "ride-b": "Ride"}
    assert detect_frequent_sections(signatures, sport_types=sports) == []
    sections = detect_frequent_sections(
        signatures, sport_types=sports, config=SectionConfig(min_visits=2)
    )
    assert [(s.id, s.sport_type) for s in sections] == [("sec_run_0", "Run"), ("sec_ride_0", "Ride")]
    assert sections[0].activity_ids == ["run-a", "run-b"]


def test_missing_sport_falls_back_to_unknown() -> None:
    signatures = [_sig(aid, _east()) for aid in ("a", "b", "c")]
    sections = detect_frequent_sections(signatures)
    assert sections[0].sport_type == "Unknown"
    assert sections[0].id == "sec_unknown_0"


def test_sections_sorted_by_visit_count_and_connected() -> None:
    signatures = [_sig(f"near-{i}", _east()) for i in range(3)]
    signatures += [_sig(f"far-{i}", _east(lat=BASE_LAT + 0.05)) for i in range(4)]
    sections = detect_frequent_sections(
        signatures, config=SectionConfig(diagonal_connect=False)
    )
    assert len(sections) == 2
    assert sections[0].visit_count > sections[1].visit_count
    assert sections[0].activity_ids == [f"far-{i}" for i in range(4)]
    assert [s.id for s in sections] == ["sec_unknown_0", "sec_unknown_1"]
    for section in sections:
        assert _is_four_connected(section.cells)
        assert section.visit_count >= 3 * len(section.cells)


def test_route_ids_and_visit_times() -> None:
    signatures = [_sig(aid, _east()) for aid in ("a", "b", "c")]
    groups = group_signatures(signatures)
    sections = detect_frequent_sections(
        signatures, groups, activity_times={"a": 100, "b": 300, "c": 200}
    )
    assert sections[0].route_ids == ["a"]
    assert (sections[0].first_visit, sections[0].last_visit) == (100, 300)


def test_non_positive_cell_size_returns_empty_with_warning(caplog) -> None:
    signatures = [_sig(aid, _east()) for aid in ("a", "b", "c")]
    with caplog.at_level(logging.WARNING):
        assert detect_frequent_sections(signatures, config=SectionConfig(cell_size_meters=0.0)) == []
    assert any("cell size" in rec.getMessage() for rec in caplog.records)


@pytest.mark.parametrize(
    "cfg",
    [SectionConfig(min_visits=0), SectionConfig(min_cells=0)],
)
def test_invalid_thresholds_rejected(cfg) -> None:
    with pytest.raises(ConfigError):
        detect_frequent_sections([_sig("a", _east())], config=cfg)


def test_sections_identical_across_worker_counts(monkeypatch) -> None:
    monkeypatch.setattr(route_config, "PARTITION_SIZE", 2)
    signatures = [_sig(f"near-{i}", _east()) for i in range(3)]
    signatures += [_sig(f"diag-{i}", make_line(2500.0, bearing_deg=30.0)) for i in range(5)]
    signatures += [_sig(f"far-{i}", _east(lat=BASE_LAT + 0.05)) for i in range(4)]
    serial = detect_frequent_sections(signatures, max_workers=1)
    threaded = detect_frequent_sections(signatures, max_workers=4)
    assert serial == threaded
    assert len(serial) >= 2


def test_cancellation_is_checked_between_signatures() -> None:
    signatures = [_sig(aid, _east()) for aid in ("a", "b", "c")]
    # Partitioning and the single inline chunk poll twice before any signature.
    event = TrippingEvent(after=3)
    with pytest.raises(OperationCancelled):
        detect_frequent_sections(signatures, max_workers=1, cancel_event=event)
    assert event.polls == 4
