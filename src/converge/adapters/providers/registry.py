"""Provider registry: provider name -> factory, bound to a document's configuration."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from converge.domain.errors import UnknownProviderError

from .base import ProviderSettings
from .env import EnvProvider
from .http import HttpProvider
from .local import LocalProvider
from .secrets import SecretsProvider

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from types import TracebackType

    from converge.domain.model import Address
    from converge.domain.ports import Provider

log = logging.getLogger(__name__)

type ProviderFactory = Callable[[ProviderSettings], Provider]


class ProviderRegistry:
    def __init__(self) -> None:
        self._factories: dict[str, ProviderFactory] = {}

    def register(self, name: str, factory: ProviderFactory, *, replace: bool = False) -> None:
        if name in self._factories and not replace:
            raise ValueError(f"Provider {name!r} is already registered")
        self._factories[name] = factory

    def __contains__(self, name: object) -> bool:
        return name in self._factories

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(sorted(self._factories))

    def factory(self, name: str) -> ProviderFactory:
        try:
            return self._factories[name]
        except KeyError:
            raise UnknownProviderError(
                f"No provider named {name!r}; registered: {', '.join(self.names) or 'none'}"
            ) from None

    def bind(
        self,
        configs: Mapping[str, Mapping[str, object]] | None = None,
        *,
        base_dir: Path | None = None,
    ) -> ProviderSet:
        configs = dict(configs or {})
        for name in configs:
            self.factory(name)
        return ProviderSet(self, configs, base_dir=base_dir or Path())


class ProviderSet:
    """Provider instances for one run, created on first use."""

    def __init__(
        self,
        registry: ProviderRegistry,
        configs: Mapping[str, Mapping[str, object]],
        *,
        base_dir: Path,
    ) -> None:
        self._registry = registry
        self._configs = configs
        self._base_dir = base_dir
        self._instances: dict[str, Provider] = {}

    def provider_for(self, address: Address) -> Provider:
        name = address.provider
        instance = self._instances.get(name)
        if instance is None:
            factory = self._registry.factory(name)
            settings = ProviderSettings(
                name=name, config=self._configs.get(name, {}), base_dir=self._base_dir
            )
            instance = factory(settings)
            self._instances[name] = instance
            log.debug("Configured provider %s", name)
        return instance

    async def aclose(self) -> None:
        instances = list(self._instances.values())
        self._instances.clear()
        for instance in instances:
            await instance.aclose()

    async def __aenter__(self) -> ProviderSet:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


def default_registry() -> ProviderRegistry:
    """Registry with the built-in ``local``, ``http``, ``env`` and ``secrets`` providers."""

    registry = ProviderRegistry()
    registry.register(LocalProvider.name, LocalProvider)
    registry.register(HttpProvider.name, HttpProvider)
    registry.register(EnvProvider.name, EnvProvider)
    registry.register(SecretsProvider.name, SecretsProvider)
    return registry
