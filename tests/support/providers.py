"""Scriptable in-memory provider for executor and planner tests."""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ClassVar

from converge.adapters.providers import BaseProvider, ProviderRegistry, default_registry
from converge.domain.errors import ProviderError
from converge.domain.ports import RealizedResource, ResourceSchema

if TYPE_CHECKING:
    from collections.abc import Mapping

    from converge.adapters.providers import ProviderSet


@dataclass(frozen=True, slots=True)
class Event:
    phase: str
    operation: str
    label: str


@dataclass
class FakeCloud(BaseProvider):
    """Provider for ``fake_*`` types.

    Resources are identified in the event log by their ``label`` attribute.
    ``delays`` and ``faults`` are keyed by label; every call pops the next
    scripted fault for its label. Faults keyed ``"<operation> <label>"`` only
    hit that operation and take precedence.
    """

    name: ClassVar[str] = "fake"
    resource_types: ClassVar[Mapping[str, ResourceSchema]] = {
        "fake_thing": ResourceSchema(
            immutable=frozenset({"zone"}),
            computed=frozenset({"id", "serial"}),
            sensitive=frozenset({"secret"}),
            required=frozenset({"label"}),
        ),
    }
    data_types: ClassVar[Mapping[str, ResourceSchema]] = {
        "fake_lookup": ResourceSchema(
            computed=frozenset({"value"}),
            required=frozenset({"key"}),
        ),
    }

    objects: dict[str, dict[str, object]] = field(default_factory=dict[str, "dict[str, object]"])
    lookups: dict[str, object] = field(default_factory=dict[str, object])
    events: list[Event] = field(default_factory=list[Event])
    reads: list[str] = field(default_factory=list[str])
    delays: dict[str, float] = field(default_factory=dict[str, float])
    faults: dict[str, list[Exception]] = field(default_factory=dict[str, "list[Exception]"])
    _serial: itertools.count[int] = field(default_factory=lambda: itertools.count(1))

    async def create(self, resource_type: str, config: Mapping[str, object]) -> RealizedResource:
        self.resource_schema(resource_type)
        label = str(config.get("label", "?"))
        await self._operate("create", label)
        serial = next(self._serial)
        resource_id = f"{label}-{serial}"
        computed = {"id": resource_id, "serial": serial}
        self.objects[resource_id] = {**config, **computed}
        return RealizedResource(resource_id=resource_id, attributes=computed)

    async def read(
        self,
        resource_type: str,
        resource_id: str,
        attributes: Mapping[str, object],
    ) -> dict[str, object] | None:
        self.resource_schema(resource_type)
        self.reads.append(resource_id)
        live = self.objects.get(resource_id)
        return None if live is None else dict(live)

    async def update(
        self,
        resource_type: str,
        resource_id: str,
        prior: Mapping[str, object],
        config: Mapping[str, object],
    ) -> RealizedResource:
        self.resource_schema(resource_type)
        label = str(config.get("label", "?"))
        await self._operate("update", label)
        computed = {"id": resource_id, "serial": self.objects.get(resource_id, {}).get("serial")}
        self.objects[resource_id] = {**config, **computed}
        return RealizedResource(resource_id=resource_id, attributes=computed)

    async def delete(
        self,
        resource_type: str,
        resource_id: str,
        attributes: Mapping[str, object],
    ) -> None:
        self.resource_schema(resource_type)
        await self._operate("delete", str(attributes.get("label", "?")))
        self.objects.pop(resource_id, None)

    async def read_data(self, data_type: str, config: Mapping[str, object]) -> dict[str, object]:
        self.data_schema(data_type)
        key = str(config["key"])
        await self._operate("read", key)
        if key not in self.lookups:
            raise ProviderError(f"no lookup {key}")
        return {"value": self.lookups[key]}

    def operations(self, operation: str | None = None) -> list[tuple[str, str]]:
        """Completed ``(operation, label)`` pairs in completion order."""
        return [
            (event.operation, event.label)
            for event in self.events
            if event.phase == "end" and (operation is None or event.operation == operation)
        ]

    def index(self, phase: str, operation: str, label: str) -> int:
        return self.events.index(Event(phase, operation, label))

    def labels_of(self, operation: str) -> list[str]:
        return [label for op, label in self.operations(operation)]

    async def _operate(self, operation: str, label: str) -> None:
        self.events.append(Event("start", operation, label))
        delay = self.delays.get(label)
        if delay:
            await asyncio.sleep(delay)
        scripted = self.faults.get(f"{operation} {label}") or self.faults.get(label)
        if scripted:
            self.events.append(Event("fail", operation, label))
            raise scripted.pop(0)
        self.events.append(Event("end", operation, label))


def fake_registry(cloud: FakeCloud) -> ProviderRegistry:
    registry = default_registry()
    registry.register(FakeCloud.name, lambda _settings: cloud)
    return registry


def fake_providers(cloud: FakeCloud) -> ProviderSet:
    return fake_registry(cloud).bind()
