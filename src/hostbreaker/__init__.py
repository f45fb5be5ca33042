"""
Per-host circuit breakers for outbound network calls.

Key components:
    - ``breakers``: the per-key state machine (Closed → Open → Half-Open)
    - ``keys``: URL → breaker key derivation with a host cache
    - ``manager``: lock-guarded registry exposing check/record calls
    - ``loader``: YAML/env/CLI configuration
    - ``transport``: HTTPX transports that consult the manager
"""

from hostbreaker.breakers import Breaker, BreakerConfig, BreakerState, BreakerStats
from hostbreaker.errors import (
    BreakerKeyError,
    BreakerOpenError,
    BreakerStateError,
    CircuitBreakerError,
    InvalidUrlError,
    MissingHostError,
    UrlParseError,
)
from hostbreaker.keys import BreakerKeyExtractor, UrlKeyExtractor
from hostbreaker.manager import BreakerManager, ManagerConfig, create_default_manager

__version__ = "0.1.0"

__all__ = [
    "Breaker",
    "BreakerConfig",
    "BreakerState",
    "BreakerStats",
    "BreakerKeyExtractor",
    "UrlKeyExtractor",
    "BreakerManager",
    "ManagerConfig",
    "create_default_manager",
    "CircuitBreakerError",
    "BreakerKeyError",
    "InvalidUrlError",
    "MissingHostError",
    "UrlParseError",
    "BreakerStateError",
    "BreakerOpenError",
]
