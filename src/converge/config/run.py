"""Run defaults for plan/apply cycles."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import StrEnum

from .env import env_float, env_int
from .errors import ConfigurationError

DEFAULT_WORKSPACE = "default"
DEFAULT_PARALLELISM = 10
DEFAULT_MAX_ATTEMPTS = 4
DEFAULT_STALE_LOCK_SECONDS = 300.0
DEFAULT_HEARTBEAT_SECONDS = 30.0


class DriftMode(StrEnum):
    """What a refresh does when live resources no longer match state."""

    FAIL = "fail"
    ADOPT = "adopt"
    SKIP = "skip"


@dataclass(frozen=True, slots=True)
class RunConfig:
    workspace: str = DEFAULT_WORKSPACE
    parallelism: int = DEFAULT_PARALLELISM
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_initial_seconds: float = 0.5
    backoff_max_seconds: float = 30.0
    lock_timeout_seconds: float = 0.0
    lock_poll_seconds: float = 1.0
    stale_lock_seconds: float = DEFAULT_STALE_LOCK_SECONDS
    heartbeat_seconds: float = DEFAULT_HEARTBEAT_SECONDS
    drift_mode: DriftMode = DriftMode.FAIL

    def __post_init__(self) -> None:
        if self.parallelism < 1:
            raise ConfigurationError("parallelism must be at least 1")
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if self.lock_timeout_seconds < 0:
            raise ConfigurationError("lock timeout must be non-negative")


def _drift_mode(raw: str | None) -> DriftMode:
    if raw is None or not raw.strip():
        return DriftMode.FAIL
    try:
        return DriftMode(raw.strip().lower())
    except ValueError as exc:
        choices = ", ".join(mode.value for mode in DriftMode)
        raise ConfigurationError(f"CONVERGE_DRIFT_MODE must be one of {choices}") from exc


def get_run_config() -> RunConfig:
    return RunConfig(
        workspace=os.getenv("CONVERGE_WORKSPACE") or DEFAULT_WORKSPACE,
        parallelism=env_int("CONVERGE_PARALLELISM", DEFAULT_PARALLELISM, minimum=1),
        max_attempts=env_int("CONVERGE_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS, minimum=1),
        lock_timeout_seconds=env_float("CONVERGE_LOCK_TIMEOUT", 0.0, minimum=0.0),
        stale_lock_seconds=env_float(
            "CONVERGE_STALE_LOCK_SECONDS", DEFAULT_STALE_LOCK_SECONDS, minimum=0.0
        ),
        heartbeat_seconds=env_float(
            "CONVERGE_HEARTBEAT_SECONDS", DEFAULT_HEARTBEAT_SECONDS, minimum=0.1
        ),
        drift_mode=_drift_mode(os.getenv("CONVERGE_DRIFT_MODE")),
    )
