"""Dependency graph over resource and data nodes.

Edges point from producer to consumer. Each edge carries the set of reasons it
exists: an attribute ``reference`` and/or an explicit ``ordering`` hint from
``depends_on``. Keeping both on the edge means dropping a reference never
drops a declared ordering.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

import networkx as nx

from converge.domain.errors import DependencyCycleError, UnresolvedReferenceError
from converge.domain.model import NodeKind, ResourceReference, VariableReference, iter_references

if TYPE_CHECKING:
    from converge.domain.model import Address, Document, Node


class EdgeKind(StrEnum):
    REFERENCE = "reference"
    ORDERING = "ordering"


@dataclass(slots=True)
class DependencyGraph:
    _graph: nx.DiGraph = field(default_factory=nx.DiGraph, repr=False)
    _index: dict[Address, int] = field(default_factory=dict["Address", int], repr=False)

    def __contains__(self, address: object) -> bool:
        return address in self._index

    def __len__(self) -> int:
        return len(self._index)

    def add_node(self, node: Node) -> None:
        self._graph.add_node(node.address)
        self._index[node.address] = node.index

    def add_edge(self, producer: Address, consumer: Address, kind: EdgeKind) -> None:
        if self._graph.has_edge(producer, consumer):
            self._graph.edges[producer, consumer]["kinds"].add(kind)
            return
        self._graph.add_edge(producer, consumer, kinds={kind})

    @property
    def addresses(self) -> tuple[Address, ...]:
        return tuple(sorted(self._index, key=self._sort_key))

    def edges(self) -> tuple[tuple[Address, Address, frozenset[EdgeKind]], ...]:
        return tuple(
            (producer, consumer, frozenset(data["kinds"]))
            for producer, consumer, data in sorted(
                self._graph.edges(data=True),
                key=lambda edge: (self._sort_key(edge[1]), self._sort_key(edge[0])),
            )
        )

    def edge_kinds(self, producer: Address, consumer: Address) -> frozenset[EdgeKind]:
        if not self._graph.has_edge(producer, consumer):
            return frozenset()
        return frozenset(self._graph.edges[producer, consumer]["kinds"])

    def producers(self, address: Address) -> tuple[Address, ...]:
        return tuple(sorted(self._graph.predecessors(address), key=self._sort_key))

    def consumers(self, address: Address) -> tuple[Address, ...]:
        return tuple(sorted(self._graph.successors(address), key=self._sort_key))

    def resource_dependencies(self, address: Address) -> tuple[Address, ...]:
        """Resources this node depends on, looking through intermediate data nodes."""

        found: set[Address] = set()
        pending = list(self.producers(address))
        seen: set[Address] = set()
        while pending:
            producer = pending.pop()
            if producer in seen:
                continue
            seen.add(producer)
            if producer.kind is NodeKind.RESOURCE:
                found.add(producer)
            else:
                pending.extend(self.producers(producer))
        return tuple(sorted(found, key=self._sort_key))

    def topological_order(self) -> list[Address]:
        """Producers before consumers; independent nodes in declaration order."""
        try:
            return list(nx.lexicographical_topological_sort(self._graph, key=self._sort_key))
        except nx.NetworkXUnfeasible:
            self.validate()
            raise

    def generations(self) -> list[list[Address]]:
        return [
            sorted(generation, key=self._sort_key)
            for generation in nx.topological_generations(self._graph)
        ]

    def validate(self) -> None:
        if nx.is_directed_acyclic_graph(self._graph):
            return
        cycle = nx.find_cycle(self._graph)
        nodes = [str(edge[0]) for edge in cycle]
        raise DependencyCycleError([*nodes, nodes[0]])

    def to_dot(self) -> str:
        lines = ["digraph converge {", "  rankdir=LR;"]
        lines.extend(f'  "{address}";' for address in self.addresses)
        for producer, consumer, kinds in self.edges():
            style = "" if EdgeKind.REFERENCE in kinds else " [style=dashed]"
            lines.append(f'  "{producer}" -> "{consumer}"{style};')
        lines.append("}")
        return "\n".join(lines)

    def _sort_key(self, address: Address) -> tuple[int, str]:
        return self._index.get(address, len(self._index)), str(address)


def build_dependency_graph(document: Document) -> DependencyGraph:
    """Infer edges from references and ``depends_on`` and check the result is a DAG.

    Raises ``UnresolvedReferenceError`` for references to undeclared nodes or
    variables and ``DependencyCycleError`` for cycles. No partial graph is returned.
    """

    graph = DependencyGraph()
    for node in document.nodes():
        graph.add_node(node)

    for node in document.nodes():
        for reference in node.references():
            if isinstance(reference, VariableReference):
                if reference.name not in document.variables:
                    raise UnresolvedReferenceError(
                        f"var.{reference.name}", referrer=str(node.address)
                    )
                continue
            _link(graph, document, reference.address, node, EdgeKind.REFERENCE)
        for dependency in node.depends_on:
            _link(graph, document, dependency, node, EdgeKind.ORDERING)

    for output in document.outputs.values():
        referrer = f"output.{output.name}"
        for reference in iter_references(output.expression):
            if isinstance(reference, ResourceReference):
                if not document.declares(reference.address):
                    raise UnresolvedReferenceError(str(reference.address), referrer=referrer)
            elif reference.name not in document.variables:
                raise UnresolvedReferenceError(f"var.{reference.name}", referrer=referrer)

    graph.validate()
    return graph


def _link(
    graph: DependencyGraph,
    document: Document,
    producer: Address,
    consumer: Node,
    kind: EdgeKind,
) -> None:
    if not document.declares(producer):
        raise UnresolvedReferenceError(str(producer), referrer=str(consumer.address))
    if producer == consumer.address:
        raise DependencyCycleError([str(producer), str(producer)])
    graph.add_edge(producer, consumer.address, kind)
