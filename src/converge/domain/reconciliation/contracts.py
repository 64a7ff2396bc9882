"""Shared change-set components used by planner, executor and reports."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from converge.domain.model import Address, DataNode, ResourceNode, StateRecord


class Action(StrEnum):
    """Planned operation for one node."""

    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    FORGET = "forget"
    READ = "read"
    NOOP = "no-op"


class Outcome(StrEnum):
    """Per-node result of an apply."""

    CREATED = "created"
    UPDATED = "updated"
    REPLACED = "replaced"
    DELETED = "deleted"
    FORGOTTEN = "forgotten"
    READ = "read"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class AttributeChange:
    name: str
    before: object
    after: object
    requires_replace: bool = False


@dataclass(slots=True, kw_only=True)
class ResourceChange:
    """One entry of the change-set.

    ``after`` holds the evaluated desired configuration and may contain
    ``UNKNOWN`` placeholders; the executor re-evaluates it with realized values.
    ``computed`` names provider-computed attributes that change with the update.
    ``refresh_record`` marks a no-op whose record metadata (lifecycle guard,
    dependencies) must still be rewritten. ``deposed`` holds provider ids of
    superseded objects still to be deleted.
    """

    address: Address
    action: Action
    node: ResourceNode | DataNode | None = None
    prior: StateRecord | None = None
    after: dict[str, object] = field(default_factory=dict[str, object])
    attribute_changes: tuple[AttributeChange, ...] = ()
    sensitive: frozenset[str] = frozenset()
    dependencies: tuple[Address, ...] = ()
    computed: frozenset[str] = frozenset()
    refresh_record: bool = False
    deposed: tuple[str, ...] = ()

    @property
    def is_actionable(self) -> bool:
        return self.action is not Action.NOOP or self.refresh_record or bool(self.deposed)

    @property
    def replace_attributes(self) -> tuple[str, ...]:
        return tuple(change.name for change in self.attribute_changes if change.requires_replace)


@dataclass(slots=True, kw_only=True)
class ChangeResult:
    address: Address
    action: Action
    outcome: Outcome
    error: str | None = None
    attempts: int = 0
