"""Shared plumbing for built-in providers."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar

from converge.domain.errors import UnknownProviderError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from converge.domain.ports import RealizedResource, ResourceSchema


@dataclass(frozen=True, slots=True)
class ProviderSettings:
    """Evaluated ``providers.<name>`` block plus the document directory."""

    name: str
    config: Mapping[str, object] = field(default_factory=dict[str, object])
    base_dir: Path = field(default_factory=Path)

    def string(self, key: str, default: str | None = None) -> str | None:
        value = self.config.get(key, default)
        return None if value is None else str(value)


class BaseProvider:
    """Schema lookup and "unsupported type" defaults for providers.

    Subclasses list their types in ``resource_types``/``data_types`` and
    override the CRUD calls they support.
    """

    name: ClassVar[str]
    resource_types: ClassVar[Mapping[str, ResourceSchema]] = {}
    data_types: ClassVar[Mapping[str, ResourceSchema]] = {}

    def resource_schema(self, resource_type: str) -> ResourceSchema:
        try:
            return self.resource_types[resource_type]
        except KeyError:
            raise self._unsupported(resource_type, kind="resource") from None

    def data_schema(self, data_type: str) -> ResourceSchema:
        try:
            return self.data_types[data_type]
        except KeyError:
            raise self._unsupported(data_type, kind="data") from None

    async def create(self, resource_type: str, config: Mapping[str, object]) -> RealizedResource:
        raise self._unsupported(resource_type, kind="resource")

    async def read(
        self,
        resource_type: str,
        resource_id: str,
        attributes: Mapping[str, object],
    ) -> dict[str, object] | None:
        raise self._unsupported(resource_type, kind="resource")

    async def update(
        self,
        resource_type: str,
        resource_id: str,
        prior: Mapping[str, object],
        config: Mapping[str, object],
    ) -> RealizedResource:
        raise self._unsupported(resource_type, kind="resource")

    async def delete(
        self,
        resource_type: str,
        resource_id: str,
        attributes: Mapping[str, object],
    ) -> None:
        raise self._unsupported(resource_type, kind="resource")

    async def read_data(self, data_type: str, config: Mapping[str, object]) -> dict[str, object]:
        raise self._unsupported(data_type, kind="data")

    async def aclose(self) -> None:
        return None

    def _unsupported(self, type_name: str, *, kind: str) -> UnknownProviderError:
        return UnknownProviderError(f"Provider {self.name!r} has no {kind} type {type_name!r}")
