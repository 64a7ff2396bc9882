"""Declaration document: the desired state as typed nodes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from converge.domain.errors import ParseError

from .address import Address, NodeKind
from .expressions import iter_references

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping
    from pathlib import Path

    from .expressions import Expression, Reference


@dataclass(frozen=True, slots=True)
class Lifecycle:
    prevent_destroy: bool = False
    create_before_destroy: bool = False
    ignore_changes: frozenset[str] = frozenset()


@dataclass(frozen=True, slots=True, kw_only=True)
class Node:
    """Common shape of resource and data nodes."""

    address: Address
    attributes: Mapping[str, Expression]
    depends_on: tuple[Address, ...] = ()
    index: int = 0
    source: str | None = None

    def references(self) -> Iterator[Reference]:
        for expression in self.attributes.values():
            yield from iter_references(expression)


@dataclass(frozen=True, slots=True, kw_only=True)
class ResourceNode(Node):
    lifecycle: Lifecycle = field(default_factory=Lifecycle)


@dataclass(frozen=True, slots=True, kw_only=True)
class DataNode(Node):
    """Read-only query re-evaluated every planning cycle."""


@dataclass(frozen=True, slots=True, kw_only=True)
class Variable:
    name: str
    default: object = None
    has_default: bool = False
    sensitive: bool = False
    description: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class Output:
    name: str
    expression: Expression
    sensitive: bool = False
    description: str | None = None


@dataclass(slots=True, kw_only=True)
class Document:
    base_dir: Path
    resources: dict[Address, ResourceNode] = field(default_factory=dict["Address", "ResourceNode"])
    data: dict[Address, DataNode] = field(default_factory=dict["Address", "DataNode"])
    variables: dict[str, Variable] = field(default_factory=dict[str, "Variable"])
    providers: dict[str, Mapping[str, Expression]] = field(
        default_factory=dict[str, "Mapping[str, Expression]"]
    )
    outputs: dict[str, Output] = field(default_factory=dict[str, "Output"])

    def nodes(self) -> tuple[Node, ...]:
        """All nodes in declaration order."""
        combined: list[Node] = [*self.resources.values(), *self.data.values()]
        return tuple(sorted(combined, key=lambda node: node.index))

    def node(self, address: Address) -> Node | None:
        if address.kind is NodeKind.DATA:
            return self.data.get(address)
        return self.resources.get(address)

    def declares(self, address: Address) -> bool:
        return self.node(address) is not None

    def add(self, node: Node) -> None:
        if self.declares(node.address):
            raise ParseError(f"Duplicate declaration of {node.address}", source=node.source)
        if isinstance(node, ResourceNode):
            self.resources[node.address] = node
        elif isinstance(node, DataNode):
            self.data[node.address] = node
        else:
            raise TypeError(f"Unsupported node type {type(node).__name__}")

    def bind_variables(self, values: Mapping[str, object]) -> dict[str, object]:
        """Resolve declared variables from ``values`` falling back to defaults."""

        unknown = sorted(set(values) - set(self.variables))
        if unknown:
            raise ParseError(f"Values given for undeclared variables: {', '.join(unknown)}")

        bound: dict[str, object] = {}
        missing: list[str] = []
        for name, variable in self.variables.items():
            if name in values:
                bound[name] = values[name]
            elif variable.has_default:
                bound[name] = variable.default
            else:
                missing.append(name)
        if missing:
            raise ParseError(f"No value for variables: {', '.join(sorted(missing))}")
        return bound

    @property
    def sensitive_variables(self) -> frozenset[str]:
        return frozenset(name for name, variable in self.variables.items() if variable.sensitive)
