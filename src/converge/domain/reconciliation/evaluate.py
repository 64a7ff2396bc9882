"""Evaluation scopes used during planning and applying.

Planning resolves references against planned changes (values of nodes being
created are partly unknown). Applying resolves them against realized State
Records only. Data node results are read once per cycle and shared through a
``DataCache``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from converge.domain.errors import ExpressionError, UnresolvedReferenceError
from converge.domain.model import UNKNOWN, NodeKind, evaluate_map, is_known, traverse

from .contracts import Action

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from converge.domain.model import Address, Expression, ResourceReference, StateRecord

    from .contracts import ResourceChange


@dataclass(slots=True)
class DataCache:
    """Data node results for one planning/apply cycle."""

    _values: dict[Address, dict[str, object]] = field(
        default_factory=dict["Address", "dict[str, object]"]
    )

    def __contains__(self, address: object) -> bool:
        return address in self._values

    def get(self, address: Address) -> dict[str, object] | None:
        return self._values.get(address)

    def put(self, address: Address, values: dict[str, object]) -> None:
        self._values[address] = values

    def addresses(self) -> tuple[Address, ...]:
        return tuple(self._values)


@dataclass(slots=True)
class _VariableScope:
    variables: Mapping[str, object]
    base_dir: Path

    def variable(self, name: str) -> object:
        if name not in self.variables:
            raise UnresolvedReferenceError(f"var.{name}")
        return self.variables[name]


@dataclass(slots=True)
class StaticScope(_VariableScope):
    """Scope for provider configuration: variables only."""

    def resolve(self, reference: ResourceReference) -> object:
        raise ExpressionError(f"{reference} cannot be referenced here; only variables are allowed")


@dataclass(slots=True)
class PlanScope(_VariableScope):
    data: DataCache = field(default_factory=DataCache)
    changes: Mapping[Address, ResourceChange] = field(
        default_factory=dict["Address", "ResourceChange"]
    )

    def resolve(self, reference: ResourceReference) -> object:
        address = reference.address
        if address.kind is NodeKind.DATA:
            values = self.data.get(address)
            if values is None:
                return UNKNOWN
            return traverse(values, reference.path, describe=str(reference))

        change = self.changes.get(address)
        if change is None:
            return UNKNOWN
        if change.action in {Action.CREATE, Action.REPLACE}:
            if not reference.path:
                return UNKNOWN
            head, *rest = reference.path
            if not isinstance(head, str) or head not in change.after:
                return UNKNOWN
            return traverse(change.after[head], tuple(rest), describe=str(reference))

        known: dict[str, object] = dict(change.prior.attributes) if change.prior else {}
        if change.action is Action.UPDATE:
            known.update(dict.fromkeys(change.computed, UNKNOWN))
        known.update(change.after)
        if reference.path and not is_known(known.get(reference.path[0])):
            return UNKNOWN
        return traverse(known, reference.path, describe=str(reference))


@dataclass(slots=True)
class ApplyScope(_VariableScope):
    data: DataCache = field(default_factory=DataCache)
    records: Mapping[str, StateRecord] = field(default_factory=dict[str, "StateRecord"])

    def resolve(self, reference: ResourceReference) -> object:
        address = reference.address
        if address.kind is NodeKind.DATA:
            values = self.data.get(address)
            if values is None:
                raise ExpressionError(f"{address} has not been read")
            return traverse(values, reference.path, describe=str(reference))

        record = self.records.get(str(address))
        if record is None:
            raise ExpressionError(f"{address} has not been realized")
        return traverse(record.attributes, reference.path, describe=str(reference))


def evaluate_static(
    expressions: Mapping[str, Expression],
    *,
    variables: Mapping[str, object],
    base_dir: Path,
) -> dict[str, object]:
    """Evaluate a block that may only use variables (provider configuration)."""

    return evaluate_map(expressions, StaticScope(variables=variables, base_dir=base_dir))
