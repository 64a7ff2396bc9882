"""Ports implemented by adapters."""

from __future__ import annotations

from .providers import Provider, ProviderResolver, RealizedResource, ResourceSchema
from .state import (
    StateLockRepository,
    StateRecordRepository,
    StateRepositories,
    StateStore,
    StateUnitOfWork,
)

__all__ = [
    "Provider",
    "ProviderResolver",
    "RealizedResource",
    "ResourceSchema",
    "StateLockRepository",
    "StateRecordRepository",
    "StateRepositories",
    "StateStore",
    "StateUnitOfWork",
]
