"""Application configuration helpers."""

from __future__ import annotations

from .env import env_float, env_int, env_prefixed
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import CacheConfig, RateLimit, ResilienceConfig, RetryPolicy
from .logging import configure_logging
from .run import DriftMode, RunConfig, get_run_config
from .storage import DataDirectory, get_database_uri, get_http_cache_path

__all__ = [
    "CacheConfig",
    "ConfigurationError",
    "DataDirectory",
    "DriftMode",
    "MissingConfigurationError",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "RunConfig",
    "configure_logging",
    "env_float",
    "env_int",
    "env_prefixed",
    "get_database_uri",
    "get_http_cache_path",
    "get_run_config",
]
