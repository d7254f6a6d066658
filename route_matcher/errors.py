"""Central error types used across the route matching engine."""

from __future__ import annotations


class RouteMatcherError(RuntimeError):
    """Base error for route matching failures."""


class ConfigError(RouteMatcherError, ValueError):
    """Raised when a config value violates its invariants (checked at call entry)."""


class InputError(RouteMatcherError, ValueError):
    """Raised when batch input is structurally inconsistent (e.g. ids vs offsets)."""


class OperationCancelled(RouteMatcherError):
    """Raised when a caller-supplied cancel event stops a long-running batch call."""


class FetchError(RouteMatcherError):
    """Raised when the activity map endpoint cannot be reached or parsed."""


__all__ = [
    "RouteMatcherError",
    "ConfigError",
    "InputError",
    "OperationCancelled",
    "FetchError",
]
