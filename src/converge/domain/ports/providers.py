"""Provider boundary: pluggable CRUD backends for resource families."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping

    from converge.domain.model import Address


@dataclass(frozen=True, slots=True)
class ResourceSchema:
    """Diff-relevant classification of a type's attributes.

    Attributes not listed as ``immutable`` are updated in place. ``computed``
    attributes are produced by the provider and are unknown until apply.
    """

    immutable: frozenset[str] = frozenset()
    computed: frozenset[str] = frozenset()
    sensitive: frozenset[str] = frozenset()
    required: frozenset[str] = frozenset()

    def requires_replace(self, attribute: str) -> bool:
        return attribute in self.immutable


@dataclass(frozen=True, slots=True)
class RealizedResource:
    """Provider response for a create/update call."""

    resource_id: str
    attributes: dict[str, object] = field(default_factory=dict[str, object])


@runtime_checkable
class Provider(Protocol):
    """CRUD contract implemented by every provider."""

    name: str

    def resource_schema(self, resource_type: str) -> ResourceSchema: ...

    def data_schema(self, data_type: str) -> ResourceSchema: ...

    async def create(
        self, resource_type: str, config: Mapping[str, object]
    ) -> RealizedResource: ...

    async def read(
        self,
        resource_type: str,
        resource_id: str,
        attributes: Mapping[str, object],
    ) -> dict[str, object] | None:
        """Return live attributes, or ``None`` when the resource no longer exists."""
        ...

    async def update(
        self,
        resource_type: str,
        resource_id: str,
        prior: Mapping[str, object],
        config: Mapping[str, object],
    ) -> RealizedResource: ...

    async def delete(
        self,
        resource_type: str,
        resource_id: str,
        attributes: Mapping[str, object],
    ) -> None: ...

    async def read_data(
        self, data_type: str, config: Mapping[str, object]
    ) -> dict[str, object]: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class ProviderResolver(Protocol):
    """Maps node addresses to configured provider instances."""

    def provider_for(self, address: Address) -> Provider: ...
