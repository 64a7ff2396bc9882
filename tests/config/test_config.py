from __future__ import annotations

from pathlib import Path  # noqa: TC003

import pytest

from converge.config import (
    ConfigurationError,
    DriftMode,
    MissingConfigurationError,
    ResilienceConfig,
    RunConfig,
    env_int,
    env_prefixed,
    get_run_config,
)

RUN_VARIABLES = (
    "CONVERGE_WORKSPACE",
    "CONVERGE_PARALLELISM",
    "CONVERGE_MAX_ATTEMPTS",
    "CONVERGE_LOCK_TIMEOUT",
    "CONVERGE_STALE_LOCK_SECONDS",
    "CONVERGE_HEARTBEAT_SECONDS",
    "CONVERGE_DRIFT_MODE",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in RUN_VARIABLES:
        monkeypatch.delenv(name, raising=False)


def test_run_config_defaults() -> None:
    config = get_run_config()

    assert config == RunConfig()
    assert config.workspace == "default"
    assert config.drift_mode is DriftMode.FAIL


def test_run_config_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONVERGE_WORKSPACE", "staging")
    monkeypatch.setenv("CONVERGE_PARALLELISM", "3")
    monkeypatch.setenv("CONVERGE_LOCK_TIMEOUT", "12.5")
    monkeypatch.setenv("CONVERGE_DRIFT_MODE", " Adopt ")

    config = get_run_config()

    assert config.workspace == "staging"
    assert config.parallelism == 3
    assert config.lock_timeout_seconds == 12.5
    assert config.drift_mode is DriftMode.ADOPT


def test_invalid_drift_mode_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONVERGE_DRIFT_MODE", "ignore")

    with pytest.raises(ConfigurationError, match="fail, adopt, skip"):
        get_run_config()


@pytest.mark.parametrize(("raw", "message"), [("many", "must be an integer"), ("0", ">= 1")])
def test_env_int_validates(monkeypatch: pytest.MonkeyPatch, raw: str, message: str) -> None:
    monkeypatch.setenv("CONVERGE_PARALLELISM", raw)

    with pytest.raises(ConfigurationError, match=message):
        env_int("CONVERGE_PARALLELISM", 10, minimum=1)


def test_run_config_rejects_zero_parallelism() -> None:
    with pytest.raises(ConfigurationError):
        RunConfig(parallelism=0)


def test_env_prefixed_strips_the_prefix() -> None:
    environ = {"CONVERGE_VAR_region": "eu", "CONVERGE_VAR_": "x", "OTHER": "y"}

    assert env_prefixed("CONVERGE_VAR_", environ=environ) == {"region": "eu"}


def test_http_block_builds_client_settings() -> None:
    config = ResilienceConfig.from_block(
        "api",
        {
            "base_url": " https://api.test ",
            "token": "t0k",
            "headers": {"X-Team": "infra"},
            "max_retries": 0,
            "requests_per_second": 5,
        },
    )

    assert config.base_url == "https://api.test"
    assert config.default_headers == {"X-Team": "infra", "Authorization": "Bearer t0k"}
    assert config.retry.total == 0
    assert config.ratelimit is not None
    assert config.ratelimit.max_calls == 5
    assert config.cache is None
    assert config.timeout_seconds == 30.0


def test_http_block_cache_lives_in_the_data_dir(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("CONVERGE_DATA_DIR", str(tmp_path))

    config = ResilienceConfig.from_block(
        "api", {"base_url": "https://api.test", "cache": True, "cache_ttl_seconds": 60}
    )

    assert config.cache is not None
    assert config.cache.sqlite_path == str(tmp_path.resolve() / "http_cache.db")
    assert config.cache.ttl_seconds == 60.0


@pytest.mark.parametrize(
    ("block", "error", "message"),
    [
        ({}, MissingConfigurationError, "providers.api.base_url is required"),
        ({"base_url": "x", "timeout_seconds": "soon"}, ConfigurationError, "must be a number"),
        ({"base_url": "x", "max_retries": -1}, ConfigurationError, ">= 0"),
        ({"base_url": "x", "headers": ["a"]}, ConfigurationError, "must be a mapping"),
    ],
)
def test_invalid_http_blocks_are_rejected(
    block: dict[str, object], error: type[Exception], message: str
) -> None:
    with pytest.raises(error, match=message):
        ResilienceConfig.from_block("api", block)
