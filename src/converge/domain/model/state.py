"""Persisted State Records: the diff baseline for planning."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from .address import Address

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(eq=False, kw_only=True)
class StateRecord:
    """Last-applied configuration and realized attributes of one resource.

    ``config`` is the evaluated configuration sent to the provider and is what the
    planner diffs against. ``attributes`` additionally holds provider-computed values
    and is what references from other nodes resolve to.
    ``deposed`` lists objects a create-before-destroy replacement superseded but
    could not delete yet, as ``{"provider_id": ..., "attributes": {...}}``.
    """

    workspace: str
    address: str
    resource_type: str
    provider_id: str | None = None
    config: dict[str, object] = field(default_factory=dict[str, object])
    attributes: dict[str, object] = field(default_factory=dict[str, object])
    dependencies: list[str] = field(default_factory=list[str])
    prevent_destroy: bool = False
    sensitive_attributes: list[str] = field(default_factory=list[str])
    deposed: list[dict[str, object]] = field(default_factory=list["dict[str, object]"])
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def node_address(self) -> Address:
        return Address.parse(self.address)

    @property
    def deposed_ids(self) -> tuple[str, ...]:
        return tuple(str(entry.get("provider_id") or "") for entry in self.deposed)


@dataclass(eq=False, kw_only=True)
class StateLock:
    """Exclusive write lock on one workspace."""

    workspace: str
    holder: str
    operation: str
    lock_id: str = field(default_factory=lambda: uuid4().hex)
    acquired_at: datetime = field(default_factory=utcnow)
    heartbeat_at: datetime = field(default_factory=utcnow)

    def is_stale(self, *, stale_after_seconds: float, now: datetime | None = None) -> bool:
        reference = now or utcnow()
        return (reference - self.heartbeat_at).total_seconds() > stale_after_seconds


class StateSnapshot:
    """Read-only view of all records of a workspace, keyed by address string."""

    def __init__(self, records: Iterable[StateRecord] = ()) -> None:
        self._records: dict[str, StateRecord] = {record.address: record for record in records}

    def __contains__(self, address: object) -> bool:
        return str(address) in self._records

    def __iter__(self) -> Iterator[StateRecord]:
        return iter(sorted(self._records.values(), key=lambda record: record.address))

    def __len__(self) -> int:
        return len(self._records)

    def get(self, address: Address | str) -> StateRecord | None:
        return self._records.get(str(address))

    def addresses(self) -> tuple[str, ...]:
        return tuple(sorted(self._records))

    def dependents_of(self, address: Address | str) -> tuple[str, ...]:
        """Addresses whose recorded dependencies include ``address``."""
        target = str(address)
        return tuple(
            record.address for record in self if target in record.dependencies
        )

    def replace(self, record: StateRecord) -> StateSnapshot:
        records = dict(self._records)
        records[record.address] = record
        return StateSnapshot(records.values())

    def without(self, address: Address | str) -> StateSnapshot:
        records = dict(self._records)
        records.pop(str(address), None)
        return StateSnapshot(records.values())
