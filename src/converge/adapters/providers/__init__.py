"""Built-in providers and the registry that binds them to a document."""

from __future__ import annotations

from .base import BaseProvider, ProviderSettings
from .env import EnvProvider
from .http import HttpProvider
from .local import LocalProvider
from .registry import ProviderRegistry, ProviderSet, default_registry
from .secrets import SecretsProvider

__all__ = [
    "BaseProvider",
    "EnvProvider",
    "HttpProvider",
    "LocalProvider",
    "ProviderRegistry",
    "ProviderSet",
    "ProviderSettings",
    "SecretsProvider",
    "default_registry",
]
