from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from converge.adapters.providers import (
    EnvProvider,
    LocalProvider,
    ProviderRegistry,
    ProviderSettings,
    default_registry,
)
from converge.domain.errors import UnknownProviderError
from converge.domain.model import Address
from converge.domain.ports import Provider


def test_default_registry_knows_the_builtin_providers() -> None:
    assert default_registry().names == ("env", "http", "local", "secrets")


def test_providers_are_resolved_by_type_prefix_and_reused() -> None:
    providers = default_registry().bind()

    first = providers.provider_for(Address.resource("local_file", "a"))
    second = providers.provider_for(Address.data("local_file", "b"))

    assert isinstance(first, LocalProvider)
    assert first is second
    assert isinstance(first, Provider)


def test_bound_configuration_reaches_the_factory(tmp_path: Path) -> None:
    received: list[ProviderSettings] = []

    def factory(settings: ProviderSettings) -> EnvProvider:
        received.append(settings)
        return EnvProvider(settings, environ={})

    registry = ProviderRegistry()
    registry.register("env", factory)
    providers = registry.bind({"env": {"prefix": "APP_"}}, base_dir=tmp_path)

    providers.provider_for(Address.data("env_variable", "token"))

    assert received == [ProviderSettings(name="env", config={"prefix": "APP_"}, base_dir=tmp_path)]


def test_unknown_provider_prefix_is_rejected() -> None:
    providers = default_registry().bind()

    with pytest.raises(UnknownProviderError, match="No provider named 'aws'"):
        providers.provider_for(Address.resource("aws_instance", "web"))


def test_configuration_for_unknown_provider_is_rejected() -> None:
    with pytest.raises(UnknownProviderError, match="'cloud'"):
        default_registry().bind({"cloud": {}})


def test_unsupported_type_is_rejected_by_the_provider() -> None:
    provider = LocalProvider(ProviderSettings(name="local", base_dir=Path()))

    with pytest.raises(UnknownProviderError, match="no resource type 'local_dir'"):
        provider.resource_schema("local_dir")
    with pytest.raises(UnknownProviderError, match="no data type 'local_dir'"):
        asyncio.run(provider.read_data("local_dir", {}))


def test_duplicate_registration_requires_replace() -> None:
    registry = default_registry()

    with pytest.raises(ValueError, match="already registered"):
        registry.register("local", LocalProvider)

    registry.register("local", LocalProvider, replace=True)
    assert "local" in registry


def test_provider_set_closes_instances() -> None:
    closed: list[str] = []

    class Closing(EnvProvider):
        async def aclose(self) -> None:
            closed.append(self.name)

    registry = ProviderRegistry()
    registry.register("env", lambda settings: Closing(settings, environ={}))

    async def scenario() -> None:
        async with registry.bind() as providers:
            providers.provider_for(Address.data("env_variable", "x"))

    asyncio.run(scenario())

    assert closed == ["env"]
