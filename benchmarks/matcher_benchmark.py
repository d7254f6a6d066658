"""Benchmark signature building, grouping, sections and heatmap on synthetic tracks."""

from __future__ import annotations

import argparse
import math
import random
import statistics
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Late imports rely on the adjusted sys.path above.
from route_matcher import (  # noqa: E402
    create_signatures_batch,
    detect_frequent_sections,
    generate_heatmap,
    group_signatures,
)
from route_matcher.geo import METERS_PER_DEGREE_LAT  # noqa: E402
from route_matcher.similarity import resample_cache_scope  # noqa: E402

LatLng = Tuple[float, float]


@dataclass(slots=True)
class StageDurations:
    """Timing measurements (in seconds) for one pass over the pipeline."""

    signatures: float
    grouping: float
    sections: float
    heatmap: float

    @property
    def total(self) -> float:
        return self.signatures + self.grouping + self.sections + self.heatmap


@dataclass(slots=True)
class BenchmarkSummary:
    """Aggregated statistics for multiple benchmark iterations."""

    activity_count: int
    points_per_activity: int
    iterations: int
    group_count: int
    section_count: int
    mean_signatures_ms: float
    mean_grouping_ms: float
    mean_sections_ms: float
    mean_heatmap_ms: float
    mean_total_ms: float
    worst_total_ms: float


def _build_tracks(
    activity_count: int, points_per_activity: int, route_count: int, seed: int
) -> List[Tuple[str, List[LatLng]]]:
    """Generate noisy copies of ``route_count`` winding base routes."""

    rng = random.Random(seed)
    base_lat, base_lng = 51.48, -3.18
    tracks: List[Tuple[str, List[LatLng]]] = []
    for idx in range(activity_count):
        route = idx % route_count
        heading = math.radians(route * 360.0 / route_count)
        shift = rng.uniform(-15.0, 15.0)
        length = 5000.0 + 500.0 * route
        points: List[LatLng] = []
        for step in range(points_per_activity):
            along = length * step / (points_per_activity - 1)
            side = 120.0 * math.sin(along / 900.0) + shift + rng.gauss(0.0, 3.0)
            north = along * math.cos(heading) - side * math.sin(heading)
            east = along * math.sin(heading) + side * math.cos(heading)
            lat = base_lat + north / METERS_PER_DEGREE_LAT
            lng = base_lng + east / (METERS_PER_DEGREE_LAT * math.cos(math.radians(base_lat)))
            points.append((lat, lng))
        if rng.random() < 0.5:
            points.reverse()
        tracks.append((f"act-{idx}", points))
    return tracks


def _run_iteration(
    tracks: List[Tuple[str, List[LatLng]]], max_workers: int | None
) -> Tuple[StageDurations, int, int]:
    with resample_cache_scope():
        start = time.perf_counter()
        signatures = create_signatures_batch(tracks, max_workers=max_workers)
        sig_dur = time.perf_counter() - start

        start = time.perf_counter()
        groups = group_signatures(signatures, max_workers=max_workers)
        group_dur = time.perf_counter() - start

    start = time.perf_counter()
    sections = detect_frequent_sections(signatures, groups, max_workers=max_workers)
    section_dur = time.perf_counter() - start

    start = time.perf_counter()
    heatmap = generate_heatmap(signatures, max_workers=max_workers)
    _ = heatmap
    heatmap_dur = time.perf_counter() - start

    return (
        StageDurations(
            signatures=sig_dur,
            grouping=group_dur,
            sections=section_dur,
            heatmap=heatmap_dur,
        ),
        len(groups),
        len(sections),
    )


def run_benchmark(
    activity_count: int,
    points_per_activity: int,
    iterations: int,
    *,
    route_count: int = 8,
    max_workers: int | None = None,
    seed: int = 7,
) -> BenchmarkSummary:
    """Benchmark the pipeline and return aggregated timings."""

    if activity_count <= 0:
        raise ValueError("activity_count must be positive")
    if points_per_activity < 2:
        raise ValueError("points_per_activity must be at least 2")
    if iterations <= 0:
        raise ValueError("iterations must be positive")

    tracks = _build_tracks(activity_count, points_per_activity, route_count, seed)
    durations: List[StageDurations] = []
    group_count = section_count = 0
    for _ in range(iterations):
        stage, group_count, section_count = _run_iteration(tracks, max_workers)
        durations.append(stage)

    return BenchmarkSummary(
        activity_count=activity_count,
        points_per_activity=points_per_activity,
        iterations=iterations,
        group_count=group_count,
        section_count=section_count,
        mean_signatures_ms=statistics.fmean(d.signatures for d in durations) * 1000.0,
        mean_grouping_ms=statistics.fmean(d.grouping for d in durations) * 1000.0,
        mean_sections_ms=statistics.fmean(d.sections for d in durations) * 1000.0,
        mean_heatmap_ms=statistics.fmean(d.heatmap for d in durations) * 1000.0,
        mean_total_ms=statistics.fmean(d.total for d in durations) * 1000.0,
        worst_total_ms=max(d.total for d in durations) * 1000.0,
    )


def _format_summary(summary: BenchmarkSummary) -> Dict[str, float]:
    """Return a JSON-friendly representation of the benchmark summary."""

    return {
        "activity_count": summary.activity_count,
        "points_per_activity": summary.points_per_activity,
        "iterations": summary.iterations,
        "group_count": summary.group_count,
        "section_count": summary.section_count,
        "mean_signatures_ms": summary.mean_signatures_ms,
        "mean_grouping_ms": summary.mean_grouping_ms,
        "mean_sections_ms": summary.mean_sections_ms,
        "mean_heatmap_ms": summary.mean_heatmap_ms,
        "mean_total_ms": summary.mean_total_ms,
        "worst_total_ms": summary.worst_total_ms,
    }


def _parse_args() -> argparse.Namespace:
    """Parse command-line arguments for the benchmark utility."""

    parser = argparse.ArgumentParser(
        description="Benchmark route grouping, sections and heatmap on synthetic tracks",
    )
    parser.add_argument("--activities", type=int, default=400)
    parser.add_argument(
        "--points",
        type=int,
        default=1500,
        help="Number of raw GPS points per synthetic activity",
    )
    parser.add_argument("--routes", type=int, default=8, help="Distinct base routes")
    parser.add_argument(
        "--iterations",
        type=int,
        default=3,
        help="Number of repetitions for averaging",
    )
    parser.add_argument("--max-workers", type=int)
    return parser.parse_args()


def main() -> None:
    """Entry point when running the module as a script."""

    args = _parse_args()
    summary = run_benchmark(
        args.activities,
        args.points,
        args.iterations,
        route_count=args.routes,
        max_workers=args.max_workers,
    )
    count_keys = {"activity_count", "points_per_activity", "iterations", "group_count", "section_count"}
    for key, value in _format_summary(summary).items():
        if key in count_keys:
            print(f"{key}: {value}")
        else:
            print(f"{key}: {value:.3f}")


if __name__ == "__main__":
    main()
