"""Tests for the activity map fetcher (HTTP mocked)."""

from __future__ import annotations

import json
import threading
from typing import Dict, List

import pytest
import requests

from conftest import make_road
from route_matcher.errors import FetchError, OperationCancelled
from route_matcher.fetch import (
    ActivityMapFetcher,
    create_session,
    fetch_and_process_activities,
    parse_map_payload,
)

BASE_URL = "https://intervals.test/api/v1"


class FakeResp:
    """Minimal fake response matching needed parts of requests.Response."""

    def __init__(self, status_code=200, data=None, headers=None):
        self.status_code = status_code
        self._data = data
        self.headers = headers or {}

    def json(self):
        if isinstance(self._data, Exception):
            raise self._data
        return self._data

    @property
    def text(self):
        return json.dumps(self._data)


class FakeSession:
    """Serve queued responses per URL; the last response repeats."""

    def __init__(self, responses: Dict[str, List[object]]):
        self._responses = responses
        self.calls: List[str] = []

    def get(self, url, timeout=None):
        self.calls.append(url)
        queue = self._responses[url]
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item


def _url(activity_id: str) -> str:
    return f"{BASE_URL}/activity/{activity_id}/map"


def _payload(points, with_gap: bool = False):
    latlngs = [list(p) for p in points]
    if with_gap:
        latlngs.insert(1, None)
    return {
        "bounds": {"ne": [52.0, -3.0], "sw": [51.0, -3.5]},
        "latlngs": latlngs,
    }


def _fetcher(session, sleeps=None, **kwargs) -> ActivityMapFetcher:
    recorded = sleeps if sleeps is not None else []
    return ActivityMapFetcher(
        session=session,
        base_url=BASE_URL,
        sleep=recorded.append,
        **kwargs,
    )


def test_parse_payload_drops_nulls_and_parses_bounds() -> None:
    result = parse_map_payload("a", _payload([(51.1, -3.1), (51.2, -3.2)], with_gap=True))
    assert result.success
    assert [(p.lat, p.lng) for p in result.points] == [(51.1, -3.1), (51.2, -3.2)]
    assert result.bounds is not None
    assert (result.bounds.min_lat, result.bounds.max_lng) == (51.0, -3.0)


def test_parse_payload_rejects_non_object() -> None:
    result = parse_map_payload("a", ["not", "a", "map"])
    assert not result.success
    assert result.points == []


def test_fetch_many_preserves_order_and_isolates_failures() -> None:
    session = FakeSession(
        {
            _url("1"): [FakeResp(200, _payload([(51.1, -3.1), (51.2, -3.2)]))],
            _url("2"): [FakeResp(404, {"error": "missing"})],
            _url("3"): [FakeResp(200, ValueError("bad json"))],
            _url("4"): [FakeResp(200, _payload([(51.3, -3.3), (51.4, -3.4)]))],
        }
    )
    results = _fetcher(session, max_workers=4).fetch_many(["1", "2", "3", "4"])
    assert [r.activity_id for r in results] == ["1", "2", "3", "4"]
    assert [r.success for r in results] == [True, False, False, True]
    assert results[1].error == "HTTP 404"
    assert results[2].error == "Invalid JSON"


def test_rate_limited_requests_back_off_and_retry() -> None:
    session = FakeSession(
        {
            _url("1"): [
                FakeResp(429, headers={"Retry-After": "1"}),
                FakeResp(429),
                FakeResp(200, _payload([(51.1, -3.1), (51.2, -3.2)])),
            ]
        }
    )
    sleeps: List[float] = []
    result = _fetcher(session, sleeps, backoff_base=0.5, max_retries=3).fetch_one("1")
    assert result.success
    assert len(session.calls) == 3
    assert sleeps == [1.0, 1.0]


def test_rate_limit_gives_up_after_max_retries() -> None:
    session = FakeSession({_url("1"): [FakeResp(429)]})
    sleeps: List[float] = []
    result = _fetcher(session, sleeps, backoff_base=0.5, max_retries=2).fetch_one("1")
    assert not result.success
    assert result.error == "HTTP 429"
    assert len(session.calls) == 3
    assert sleeps == [0.5, 1.0]


def test_network_errors_are_retried_then_reported() -> None:
    session = FakeSession({_url("1"): [requests.ConnectionError("boom")]})
    result = _fetcher(session, max_retries=1).fetch_one("1")
    assert not result.success
    assert "boom" in (result.error or "")
    assert len(session.calls) == 2


def test_successful_maps_are_cached() -> None:
    session = FakeSession({_url("1"): [FakeResp(200, _payload([(51.1, -3.1), (51.2, -3.2)]))]})
    fetcher = _fetcher(session)
    first = fetcher.fetch_one("1")
    second = fetcher.fetch_one("1")
    assert first is second
    assert len(session.calls) == 1
    fetcher.clear_cache()
    fetcher.fetch_one("1")
    assert len(session.calls) == 2


def test_progress_reports_every_completion() -> None:
    ids = [str(i) for i in range(5)]
    session = FakeSession(
        {_url(i): [FakeResp(200, _payload([(51.1, -3.1), (51.2, -3.2)]))] for i in ids}
    )
    seen: List[tuple] = []
    _fetcher(session, max_workers=3).fetch_many(ids, progress=lambda done, total: seen.append((done, total)))
    assert sorted(seen) == [(n, 5) for n in range(1, 6)]


def test_cancelled_fetch_raises() -> None:
    session = FakeSession({_url("1"): [FakeResp(200, _payload([(51.1, -3.1)]))]})
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(OperationCancelled):
        _fetcher(session).fetch_many(["1"], cancel_event=cancel)


def test_missing_api_key_raises(monkeypatch) -> None:
    from route_matcher import config as route_config

    monkeypatch.setattr(route_config, "INTERVALS_API_KEY", None)
    with pytest.raises(FetchError):
        ActivityMapFetcher()


def test_session_uses_basic_auth_with_api_key_user() -> None:
    session = create_session("secret")
    assert session.auth == ("API_KEY", "secret")
    assert "https://" in session.adapters


def test_fetch_and_process_builds_signatures_for_successes() -> None:
    road = make_road()
    session = FakeSession(
        {
            _url("ok"): [FakeResp(200, _payload(road))],
            _url("gone"): [FakeResp(500)],
            _url("tiny"): [FakeResp(200, _payload(road[:1]))],
        }
    )
    results, signatures = fetch_and_process_activities(
        ["ok", "gone", "tiny"], fetcher=_fetcher(session)
    )
    assert [r.success for r in results] == [True, False, True]
    assert [s.activity_id for s in signatures] == ["ok"]
    assert signatures[0].total_distance > 9000.0


def test_fetch_helpers_exported_from_package() -> None:
    import route_matcher
    from route_matcher import fetch

    assert route_matcher.fetch_and_process_activities is fetch_and_process_activities
    assert route_matcher.fetch_activity_maps is fetch.fetch_activity_maps
    assert route_matcher.ActivityMapFetcher is ActivityMapFetcher
    assert {"fetch_activity_maps", "fetch_and_process_activities"} <= set(route_matcher.__all__)
