"""Tests for the pairwise route comparator."""

from __future__ import annotations

import pytest

from conftest import BASE_LAT, BASE_LNG, make_line, make_loop, make_road, offset
from route_matcher import MatchConfig, compare_routes, create_signature
from route_matcher.similarity import (
    amd_to_percentage,
    get_resample_cache,
)


def _sig(activity_id, points):
    sig = create_signature(activity_id, points)
    assert sig is not None
    return sig


def test_self_match_is_perfect(road) -> None:
    sig = _sig("a", road)
    result = compare_routes(sig, sig)
    assert result is not None
    assert result.match_percentage == 100.0
    assert result.direction == "same"
    assert result.amd == 0.0
    assert result.endpoints_match


def test_reversed_road_reports_reverse_direction(road) -> None:
    forward = _sig("fwd", road)
    backward = _sig("rev", list(reversed(make_road(east_shift_m=10.0))))
    result = compare_routes(forward, backward)
    assert result is not None
    assert result.direction == "reverse"
    assert result.match_percentage >= 90.0
    assert result.endpoints_match
    assert result.is_match(MatchConfig())


def test_amd_is_symmetric() -> None:
    a = _sig("a", make_road())
    b = _sig("b", make_road(east_shift_m=60.0, step_m=40.0))
    ab = compare_routes(a, b)
    ba = compare_routes(b, a)
    assert ab is not None and ba is not None
    assert ab.amd == pytest.approx(ba.amd, rel=1e-12)
    assert ab.match_percentage == pytest.approx(ba.match_percentage, rel=1e-12)


def test_parallel_offset_routes_score_low_but_are_comparable() -> None:
    a = _sig("a", make_road())
    b = _sig("b", make_road(east_shift_m=400.0))
    result = compare_routes(a, b)
    assert result is not None
    assert result.match_percentage == 0.0
    assert result.direction in {"same", "reverse"}
    assert not result.is_match(MatchConfig())


@pytest.mark.parametrize(
    "amd, expected",
    [(0.0, 100.0), (30.0, 100.0), (140.0, 50.0), (250.0, 0.0), (1000.0, 0.0)],
)
def test_threshold_boundaries(amd, expected) -> None:
    assert amd_to_percentage(amd, MatchConfig()) == pytest.approx(expected)


def test_short_routes_are_not_comparable() -> None:
    short = _sig("s", make_line(300.0))
    assert compare_routes(short, short) is None


def test_length_ratio_prefilter_skips_resampling() -> None:
    long_route = _sig("long", make_road(10_000.0))
    loop = _sig("loop", make_loop())
    cache = get_resample_cache()
    assert compare_routes(long_route, loop) is None
    assert len(cache) == 0


def test_partial_overlap_on_diverging_routes() -> None:
    shared = make_line(2500.0)
    straight = shared + make_line(2500.0, start=shared[-1])[1:]
    turning = shared + make_line(2500.0, bearing_deg=90.0, start=shared[-1])[1:]
    a = _sig("straight", straight)
    b = _sig("turning", turning)
    result = compare_routes(a, b)
    assert result is not None
    assert result.direction == "partial"
    assert result.match_percentage < 65.0
    assert not result.is_match(MatchConfig())
    assert 2000.0 <= result.overlap_distance <= 3500.0
    assert result.overlap_start == 0.0
    assert 0.4 < result.overlap_end < 0.8


def test_endpoint_proximity_does_not_promote_a_bad_match() -> None:
    start = (BASE_LAT, BASE_LNG)
    detour = offset(BASE_LAT, BASE_LNG, 1500.0, 1200.0)
    direct = _sig("direct", make_line(3000.0, start=start))
    # Same endpoints, very different path in between.
    bent = _sig(
        "bent",
        make_line(1920.9, bearing_deg=38.66, start=start)
        + make_line(1920.9, bearing_deg=321.34, start=detour)[1:],
    )
    config = MatchConfig(max_distance_diff_ratio=0.5)
    result = compare_routes(direct, bent, config)
    assert result is not None
    assert result.endpoints_match
    assert result.match_percentage < 65.0
    assert result.direction != "partial"
    assert not result.is_match(config)


def test_resample_cache_is_reused(road) -> None:
    a = _sig("a", road)
    b = _sig("b", make_road(east_shift_m=15.0))
    cache = get_resample_cache()
    compare_routes(a, b)
    misses = cache.misses
    compare_routes(b, a)
    assert cache.misses == misses
    assert cache.hits >= 2
