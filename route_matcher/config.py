"""Central configuration for the route matching engine.

All values are module-level constants imported by the rest of the package and
used to build the default config values. Every public entry point also
accepts an explicit config override. Values can be tuned through environment
variables (optionally via a local `.env`).
"""

from __future__ import annotations

import importlib
import os


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


# Load .env variables when python-dotenv is available.
_load_dotenv = None
try:
    _dotenv_mod = importlib.import_module("dotenv")
    _load_dotenv = getattr(_dotenv_mod, "load_dotenv", None)
except Exception:
    _load_dotenv = None

if callable(_load_dotenv):
    # Load .env from the current directory or any parent folder.
    _load_dotenv()


# ---------------------------------------------------------------------------
# Route matching
# ---------------------------------------------------------------------------
# Average minimum distance (metres) at or below which two routes score 100%.
MATCH_PERFECT_THRESHOLD_M = _env_float("MATCH_PERFECT_THRESHOLD_M", 30.0)

# Average minimum distance (metres) at or above which two routes score 0%.
MATCH_ZERO_THRESHOLD_M = _env_float("MATCH_ZERO_THRESHOLD_M", 250.0)

# Minimum match percentage for a route to join an existing group.
MATCH_MIN_PERCENTAGE = _env_float("MATCH_MIN_PERCENTAGE", 65.0)

# Routes shorter than this (metres) are never compared or grouped.
MATCH_MIN_ROUTE_DISTANCE_M = _env_float("MATCH_MIN_ROUTE_DISTANCE_M", 500.0)

# Maximum fractional length difference before two routes are skipped.
MATCH_MAX_DISTANCE_DIFF_RATIO = _env_float("MATCH_MAX_DISTANCE_DIFF_RATIO", 0.20)

# Start/end separation (metres) treated as "same" endpoints.
MATCH_ENDPOINT_THRESHOLD_M = _env_float("MATCH_ENDPOINT_THRESHOLD_M", 200.0)

# Number of points both routes are resampled to before computing AMD.
MATCH_RESAMPLE_COUNT = _env_int("MATCH_RESAMPLE_COUNT", 50)

# Douglas-Peucker tolerance in degrees (0.0001 is roughly 11 m).
SIGNATURE_SIMPLIFICATION_TOLERANCE_DEG = _env_float(
    "SIGNATURE_SIMPLIFICATION_TOLERANCE_DEG", 0.0001
)

# Hard cap on signature points after simplification.
SIGNATURE_MAX_SIMPLIFIED_POINTS = _env_int("SIGNATURE_MAX_SIMPLIFIED_POINTS", 100)

# Start/end separation (metres) under which a route counts as a loop.
LOOP_THRESHOLD_M = _env_float("LOOP_THRESHOLD_M", 200.0)


# ---------------------------------------------------------------------------
# Sections and heatmap
# ---------------------------------------------------------------------------
SECTION_CELL_SIZE_M = _env_float("SECTION_CELL_SIZE_M", 100.0)
SECTION_MIN_VISITS = _env_int("SECTION_MIN_VISITS", 3)
SECTION_MIN_CELLS = _env_int("SECTION_MIN_CELLS", 5)
SECTION_DIAGONAL_CONNECT = _env_bool("SECTION_DIAGONAL_CONNECT", True)

HEATMAP_CELL_SIZE_M = _env_float("HEATMAP_CELL_SIZE_M", 100.0)


# ---------------------------------------------------------------------------
# Performance tuning
# ---------------------------------------------------------------------------
# Worker threads used by batch operations. 1 runs everything inline.
MAX_WORKERS = max(1, _env_int("ROUTE_MATCHER_MAX_WORKERS", os.cpu_count() or 1))

# Batch work is split into partitions of roughly this many items.
PARTITION_SIZE = max(1, _env_int("ROUTE_MATCHER_PARTITION_SIZE", 64))

# Maximum number of resampled signatures kept in the comparator cache.
RESAMPLE_CACHE_SIZE = _env_int("RESAMPLE_CACHE_SIZE", 4096)


# ---------------------------------------------------------------------------
# intervals.icu fetch settings
# ---------------------------------------------------------------------------
INTERVALS_BASE_URL = os.getenv("INTERVALS_BASE_URL", "https://intervals.icu/api/v1")

# API key pulled from the environment. Do not hardcode secrets.
INTERVALS_API_KEY = os.getenv("INTERVALS_API_KEY", "")

# Concurrent in-flight map requests.
FETCH_MAX_WORKERS = _env_int("FETCH_MAX_WORKERS", 8)

# Retries for 429 and network failures, with exponential backoff.
FETCH_MAX_RETRIES = _env_int("FETCH_MAX_RETRIES", 3)
FETCH_BACKOFF_BASE_SECONDS = _env_float("FETCH_BACKOFF_BASE_SECONDS", 0.5)
FETCH_BACKOFF_MAX_SECONDS = _env_float("FETCH_BACKOFF_MAX_SECONDS", 4.0)

# Maximum number of activity maps kept in the in-memory fetch cache.
FETCH_CACHE_SIZE = _env_int("FETCH_CACHE_SIZE", 512)

# HTTP session pool sizes for concurrent requests.
HTTP_POOL_CONNECTIONS = 20
HTTP_POOL_MAXSIZE = 20

# Request timeout in seconds.
REQUEST_TIMEOUT = 30
