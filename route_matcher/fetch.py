"""Bulk activity map fetcher for the intervals.icu REST API.

Fetches ``GET /activity/{id}/map`` for many activities concurrently, backing
off on HTTP 429 and isolating failures per activity. Successful maps are kept
in a small in-process LRU so repeated calls do not hit the network again.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import requests
from cachetools import LRUCache
from requests import Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from . import config as _config
from .errors import FetchError
from .geo import is_valid_point
from .models import Bounds, GeoPoint, MatchConfig, RouteSignature
from .parallel import check_cancelled
from .signatures import create_signatures_batch

_LOG = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass(slots=True)
class FetchResult:
    """Outcome of fetching one activity map."""

    activity_id: str
    points: List[GeoPoint] = field(default_factory=list)
    bounds: Optional[Bounds] = None
    success: bool = True
    error: Optional[str] = None


def _build_retry() -> Retry:
    # 429 is handled by the fetcher so it can honour its own backoff schedule.
    return Retry(
        total=3,
        backoff_factor=1.0,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=["GET"],
    )


def create_session(api_key: str) -> Session:
    """Return a pooled session authenticated with intervals.icu basic auth."""

    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=_config.HTTP_POOL_CONNECTIONS,
        pool_maxsize=_config.HTTP_POOL_MAXSIZE,
        max_retries=_build_retry(),
    )
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.auth = ("API_KEY", api_key)
    session.headers.update(
        {
            "Accept-Encoding": "gzip, deflate",
            "Accept": "application/json",
        }
    )
    return session


def parse_map_payload(activity_id: str, payload: Any) -> FetchResult:
    """Convert a ``/map`` JSON payload into a :class:`FetchResult`.

    ``latlngs`` entries may be ``null`` for gaps in the stream; those and any
    invalid fixes are dropped.
    """

    if not isinstance(payload, dict):
        return FetchResult(activity_id, success=False, error="Unexpected map payload")
    points: List[GeoPoint] = []
    for entry in payload.get("latlngs") or []:
        if not isinstance(entry, (list, tuple)) or len(entry) < 2:
            continue
        try:
            lat, lng = float(entry[0]), float(entry[1])
        except (TypeError, ValueError):
            continue
        if is_valid_point(lat, lng):
            points.append(GeoPoint(lat, lng))
    return FetchResult(activity_id, points=points, bounds=_parse_bounds(payload.get("bounds")))


def _parse_bounds(raw: Any) -> Optional[Bounds]:
    if not isinstance(raw, dict):
        return None
    try:
        ne_lat, ne_lng = float(raw["ne"][0]), float(raw["ne"][1])
        sw_lat, sw_lng = float(raw["sw"][0]), float(raw["sw"][1])
    except (KeyError, IndexError, TypeError, ValueError):
        return None
    return Bounds(
        min_lat=min(ne_lat, sw_lat),
        max_lat=max(ne_lat, sw_lat),
        min_lng=min(ne_lng, sw_lng),
        max_lng=max(ne_lng, sw_lng),
    )


class ActivityMapFetcher:
    """Concurrent, cached fetcher for intervals.icu activity maps."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
        session: Optional[Session] = None,
        max_workers: Optional[int] = None,
        max_retries: Optional[int] = None,
        backoff_base: Optional[float] = None,
        cache_size: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        key = api_key if api_key is not None else _config.INTERVALS_API_KEY
        if session is None and not key:
            raise FetchError(
                "No intervals.icu API key configured (set INTERVALS_API_KEY)"
            )
        self.base_url = (base_url or _config.INTERVALS_BASE_URL).rstrip("/")
        self.session = session if session is not None else create_session(key)
        self.max_workers = max(1, max_workers or _config.FETCH_MAX_WORKERS)
        self.max_retries = max(
            0, max_retries if max_retries is not None else _config.FETCH_MAX_RETRIES
        )
        self.backoff_base = (
            backoff_base if backoff_base is not None else _config.FETCH_BACKOFF_BASE_SECONDS
        )
        self._sleep = sleep
        self._cache: LRUCache[str, FetchResult] = LRUCache(
            maxsize=max(1, cache_size or _config.FETCH_CACHE_SIZE)
        )
        self._cache_lock = RLock()
        self._log = logging.getLogger(self.__class__.__name__)

    def fetch_one(self, activity_id: str) -> FetchResult:
        """Fetch a single activity map, returning a failed result instead of raising."""

        with self._cache_lock:
            cached: FetchResult | None = self._cache.get(activity_id)
        if cached is not None:
            return cached

        url = f"{self.base_url}/activity/{activity_id}/map"
        attempt = 0
        while True:
            try:
                resp = self.session.get(url, timeout=_config.REQUEST_TIMEOUT)
            except requests.RequestException as exc:
                if attempt < self.max_retries:
                    self._backoff(activity_id, attempt, None)
                    attempt += 1
                    continue
                self._log.warning("Map fetch failed for %s: %s", activity_id, exc)
                return FetchResult(activity_id, success=False, error=str(exc))

            if resp.status_code == 429 and attempt < self.max_retries:
                self._backoff(activity_id, attempt, resp.headers.get("Retry-After"))
                attempt += 1
                continue
            if resp.status_code != 200:
                self._log.warning(
                    "Map fetch for %s returned HTTP %s", activity_id, resp.status_code
                )
                return FetchResult(
                    activity_id, success=False, error=f"HTTP {resp.status_code}"
                )
            try:
                payload = resp.json()
            except ValueError:
                self._log.warning("Map payload for %s is not valid JSON", activity_id)
                return FetchResult(activity_id, success=False, error="Invalid JSON")
            break

        result = parse_map_payload(activity_id, payload)
        if result.success:
            with self._cache_lock:
                self._cache[activity_id] = result
        return result

    def fetch_many(
        self,
        activity_ids: Sequence[str],
        *,
        progress: Optional[ProgressCallback] = None,
        cancel_event: threading.Event | None = None,
    ) -> List[FetchResult]:
        """Fetch maps for ``activity_ids`` concurrently; results keep input order."""

        total = len(activity_ids)
        if total == 0:
            return []
        started = time.perf_counter()
        results: Dict[int, FetchResult] = {}
        completed = 0
        with ThreadPoolExecutor(max_workers=min(self.max_workers, total)) as executor:
            future_to_idx = {
                executor.submit(self.fetch_one, activity_id): idx
                for idx, activity_id in enumerate(activity_ids)
            }
            try:
                for fut in as_completed(future_to_idx):
                    check_cancelled(cancel_event, "map fetch")
                    idx = future_to_idx[fut]
                    results[idx] = fut.result()
                    completed += 1
                    if progress is not None:
                        try:
                            progress(completed, total)
                        except Exception:
                            self._log.debug("Progress callback failed", exc_info=True)
            except BaseException:
                for fut in future_to_idx:
                    fut.cancel()
                raise

        ordered = [results[idx] for idx in range(total)]
        succeeded = sum(1 for result in ordered if result.success)
        self._log.info(
            "Fetched %d/%d activity maps in %.2fs",
            succeeded,
            total,
            time.perf_counter() - started,
        )
        return ordered

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    def _backoff(self, activity_id: str, attempt: int, retry_after: Optional[str]) -> None:
        delay = self.backoff_base * (2 ** min(attempt, 3))
        if retry_after:
            try:
                delay = max(delay, float(retry_after))
            except ValueError:
                pass
        delay = min(delay, _config.FETCH_BACKOFF_MAX_SECONDS)
        self._log.debug(
            "Retrying map fetch for %s in %.2fs (attempt %d)", activity_id, delay, attempt + 1
        )
        self._sleep(delay)


def fetch_activity_maps(
    activity_ids: Sequence[str],
    api_key: Optional[str] = None,
    *,
    progress: Optional[ProgressCallback] = None,
    cancel_event: threading.Event | None = None,
    fetcher: Optional[ActivityMapFetcher] = None,
) -> List[FetchResult]:
    """Convenience wrapper around :meth:`ActivityMapFetcher.fetch_many`."""

    fetcher = fetcher or ActivityMapFetcher(api_key)
    return fetcher.fetch_many(activity_ids, progress=progress, cancel_event=cancel_event)


def fetch_and_process_activities(
    activity_ids: Sequence[str],
    api_key: Optional[str] = None,
    config: Optional[MatchConfig] = None,
    *,
    progress: Optional[ProgressCallback] = None,
    cancel_event: threading.Event | None = None,
    fetcher: Optional[ActivityMapFetcher] = None,
) -> Tuple[List[FetchResult], List[RouteSignature]]:
    """Fetch maps and build signatures for every successful fetch."""

    results = fetch_activity_maps(
        activity_ids,
        api_key,
        progress=progress,
        cancel_event=cancel_event,
        fetcher=fetcher,
    )
    tracks = [(result.activity_id, result.points) for result in results if result.success]
    signatures = create_signatures_batch(tracks, config, cancel_event=cancel_event)
    return results, signatures


__all__ = [
    "FetchResult",
    "ActivityMapFetcher",
    "create_session",
    "parse_map_payload",
    "fetch_activity_maps",
    "fetch_and_process_activities",
]
