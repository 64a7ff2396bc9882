"""Node identity: ``type.name`` for resources, ``data.type.name`` for data nodes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class NodeKind(StrEnum):
    RESOURCE = "resource"
    DATA = "data"


@dataclass(frozen=True, slots=True, order=True)
class Address:
    kind: NodeKind
    resource_type: str
    name: str

    def __post_init__(self) -> None:
        if not self.resource_type or not self.name:
            raise ValueError("Address type and name must be non-empty")

    def __str__(self) -> str:
        if self.kind is NodeKind.DATA:
            return f"data.{self.resource_type}.{self.name}"
        return f"{self.resource_type}.{self.name}"

    @property
    def provider(self) -> str:
        """Name of the provider owning this type (prefix before the first ``_``)."""
        return self.resource_type.partition("_")[0]

    @classmethod
    def resource(cls, resource_type: str, name: str) -> Address:
        return cls(NodeKind.RESOURCE, resource_type, name)

    @classmethod
    def data(cls, data_type: str, name: str) -> Address:
        return cls(NodeKind.DATA, data_type, name)

    @classmethod
    def parse(cls, value: str) -> Address:
        parts = value.strip().split(".")
        if len(parts) == 3 and parts[0] == "data" and all(parts):
            return cls.data(parts[1], parts[2])
        if len(parts) == 2 and parts[0] != "data" and all(parts):
            return cls.resource(parts[0], parts[1])
        raise ValueError(f"Invalid address: {value!r}")
