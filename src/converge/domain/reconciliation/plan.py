"""Planner: diff the desired document against the State Snapshot.

The planner walks the dependency graph producers-first so that every node is
evaluated against the planned values of what it references. It performs no
writes; the only side effect is reading data nodes whose inputs are known.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import networkx as nx

from converge.domain.errors import (
    ConvergeError,
    DependencyCycleError,
    ParseError,
    ProtectedResourceError,
)
from converge.domain.model import (
    DataNode,
    NodeKind,
    ResourceNode,
    ResourceReference,
    VariableReference,
    evaluate_map,
    is_known,
    iter_references,
)

from .contracts import Action, AttributeChange, ResourceChange
from .evaluate import DataCache, PlanScope
from .policy import apply_ignore_changes, choose_action, creation_changes, diff_attributes
from .retry import RetrySettings, call_with_retry

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping

    from converge.domain.model import Address, Document, Node, StateRecord, StateSnapshot
    from converge.domain.ports import ProviderResolver

    from .graph import DependencyGraph

log = logging.getLogger(__name__)

_SUMMARY_ACTIONS = (
    Action.CREATE,
    Action.UPDATE,
    Action.REPLACE,
    Action.DELETE,
    Action.FORGET,
    Action.READ,
)


@dataclass(slots=True, kw_only=True)
class Plan:
    """Ordered change-set plus the changes each entry must wait for."""

    changes: tuple[ResourceChange, ...]
    waits_for: Mapping[Address, frozenset[Address]] = field(
        default_factory=dict["Address", "frozenset[Address]"]
    )
    data: DataCache = field(default_factory=DataCache)
    destroy: bool = False

    def __iter__(self) -> Iterator[ResourceChange]:
        return iter(self.changes)

    def __len__(self) -> int:
        return len(self.changes)

    def change_for(self, address: Address) -> ResourceChange | None:
        for change in self.changes:
            if change.address == address:
                return change
        return None

    @property
    def actionable(self) -> tuple[ResourceChange, ...]:
        return tuple(change for change in self.changes if change.is_actionable)

    @property
    def has_changes(self) -> bool:
        return any(change.is_actionable for change in self.changes)

    def counts(self) -> dict[Action, int]:
        counter = Counter(change.action for change in self.changes)
        return {action: counter[action] for action in Action if counter[action]}

    def summary(self) -> str:
        counts = self.counts()
        if not self.has_changes:
            return "No changes. Infrastructure matches the declaration."
        parts = [f"{counts.get(action, 0)} to {action}" for action in _SUMMARY_ACTIONS]
        deposed = sum(len(change.deposed) for change in self.changes)
        if deposed:
            parts.append(f"{deposed} deposed to delete")
        return "Plan: " + ", ".join(parts) + "."


async def plan_changes(
    document: Document,
    graph: DependencyGraph,
    snapshot: StateSnapshot,
    providers: ProviderResolver,
    *,
    variables: Mapping[str, object],
    detach: Iterable[Address] = (),
    data: DataCache | None = None,
    retry: RetrySettings | None = None,
) -> Plan:
    """Compute the change-set turning ``snapshot`` into ``document``.

    Raises ``ProtectedResourceError`` when a guarded resource would be
    destroyed or replaced, ``ParseError`` when a required attribute is
    missing, and ``ConvergeError`` when a declared address is asked to be
    detached.
    """

    detached = frozenset(detach)
    declared_detach = sorted(str(address) for address in detached if document.declares(address))
    if declared_detach:
        raise ConvergeError(
            f"Cannot detach declared resources: {', '.join(declared_detach)}; "
            "remove them from the document first"
        )

    cache = data if data is not None else DataCache()
    settings = retry or RetrySettings()
    changes: dict[Address, ResourceChange] = {}
    scope = PlanScope(variables=variables, base_dir=document.base_dir, data=cache, changes=changes)

    for address in graph.topological_order():
        node = document.node(address)
        if isinstance(node, DataNode):
            change = await _plan_data(
                node, graph, providers, scope, changes, cache=cache, retry=settings
            )
            if change is not None:
                changes[address] = change
        elif isinstance(node, ResourceNode):
            changes[address] = _plan_resource(node, graph, snapshot, providers, scope, document)

    for record in snapshot:
        address = record.node_address
        if address in changes:
            continue
        changes[address] = _removal(record, forget=address in detached)

    for address in sorted(detached - {record.node_address for record in snapshot}, key=str):
        log.warning("%s is not in state; nothing to detach", address)

    waits = _declared_waits(graph, changes)
    waits.update(_removal_waits(snapshot, changes))
    rank = {address: position for position, address in enumerate(graph.topological_order())}
    ordered = _order(changes, waits, rank)
    plan = Plan(changes=ordered, waits_for=waits, data=cache)
    log.info(plan.summary())
    return plan


def plan_destroy(snapshot: StateSnapshot, *, detach: Iterable[Address] = ()) -> Plan:
    """Plan deleting every record in state, dependents first."""

    detached = frozenset(detach)
    changes: dict[Address, ResourceChange] = {}
    for record in snapshot:
        address = record.node_address
        changes[address] = _removal(record, forget=address in detached)
    waits = _removal_waits(snapshot, changes)
    plan = Plan(changes=_order(changes, waits, {}), waits_for=waits, destroy=True)
    log.info(plan.summary())
    return plan


async def _plan_data(
    node: DataNode,
    graph: DependencyGraph,
    providers: ProviderResolver,
    scope: PlanScope,
    changes: Mapping[Address, ResourceChange],
    *,
    cache: DataCache,
    retry: RetrySettings,
) -> ResourceChange | None:
    address = node.address
    provider = providers.provider_for(address)
    schema = provider.data_schema(address.resource_type)
    pending = any(
        producer in changes and changes[producer].is_actionable
        for producer in graph.producers(address)
    )
    config = evaluate_map(node.attributes, scope)
    missing = sorted(schema.required - config.keys())
    if missing:
        raise ParseError(
            f"{address} is missing required attributes: {', '.join(missing)}", source=node.source
        )
    if pending or not is_known(config):
        log.debug("%s deferred to apply", address)
        return ResourceChange(
            address=address,
            action=Action.READ,
            node=node,
            after=config,
            sensitive=schema.sensitive,
            dependencies=graph.resource_dependencies(address),
        )

    if address not in cache:
        values = await call_with_retry(
            lambda: provider.read_data(address.resource_type, config),
            settings=retry,
            describe=f"read {address}",
        )
        cache.put(address, values)
        log.debug("%s read during planning", address)
    return None


def _plan_resource(
    node: ResourceNode,
    graph: DependencyGraph,
    snapshot: StateSnapshot,
    providers: ProviderResolver,
    scope: PlanScope,
    document: Document,
) -> ResourceChange:
    address = node.address
    schema = providers.provider_for(address).resource_schema(address.resource_type)
    after = evaluate_map(node.attributes, scope)
    missing = sorted(schema.required - after.keys())
    if missing:
        raise ParseError(
            f"{address} is missing required attributes: {', '.join(missing)}", source=node.source
        )

    sensitive = _sensitive_attributes(node, providers, document) | schema.sensitive
    dependencies = graph.resource_dependencies(address)
    prior = snapshot.get(address)
    if prior is None:
        return ResourceChange(
            address=address,
            action=Action.CREATE,
            node=node,
            after=after,
            attribute_changes=creation_changes(after),
            sensitive=sensitive,
            dependencies=dependencies,
            computed=schema.computed,
        )

    after = apply_ignore_changes(after, prior.config, node.lifecycle)
    attribute_changes = diff_attributes(prior.config, after, schema)
    action = choose_action(attribute_changes)
    if action is Action.REPLACE and (node.lifecycle.prevent_destroy or prior.prevent_destroy):
        raise ProtectedResourceError(str(address), action="replaced")

    refresh = action is Action.NOOP and (
        prior.prevent_destroy != node.lifecycle.prevent_destroy
        or sorted(prior.dependencies) != sorted(str(dependency) for dependency in dependencies)
        or sorted(prior.sensitive_attributes) != sorted(sensitive)
    )
    return ResourceChange(
        address=address,
        action=action,
        node=node,
        prior=prior,
        after=after,
        attribute_changes=attribute_changes,
        sensitive=sensitive,
        dependencies=dependencies,
        computed=schema.computed,
        refresh_record=refresh,
        deposed=prior.deposed_ids,
    )


def _sensitive_attributes(
    node: Node, providers: ProviderResolver, document: Document
) -> frozenset[str]:
    """Attributes whose value derives from a sensitive variable or attribute."""

    sensitive: set[str] = set()
    for name, expression in node.attributes.items():
        for reference in iter_references(expression):
            if isinstance(reference, VariableReference):
                if reference.name in document.sensitive_variables:
                    sensitive.add(name)
            elif isinstance(reference, ResourceReference) and _references_sensitive(
                reference, providers
            ):
                sensitive.add(name)
    return frozenset(sensitive)


def _references_sensitive(reference: ResourceReference, providers: ProviderResolver) -> bool:
    target = reference.address
    provider = providers.provider_for(target)
    if target.kind is NodeKind.DATA:
        schema = provider.data_schema(target.resource_type)
    else:
        schema = provider.resource_schema(target.resource_type)
    if not reference.path:
        return bool(schema.sensitive)
    return reference.path[0] in schema.sensitive


def _removal(record: StateRecord, *, forget: bool) -> ResourceChange:
    address = record.node_address
    if not forget and record.prevent_destroy:
        raise ProtectedResourceError(record.address, action="destroyed")
    return ResourceChange(
        address=address,
        action=Action.FORGET if forget else Action.DELETE,
        prior=record,
        attribute_changes=tuple(
            AttributeChange(name=name, before=record.config[name], after=None)
            for name in sorted(record.config)
        ),
        sensitive=frozenset(record.sensitive_attributes),
        deposed=record.deposed_ids,
    )


def _declared_waits(
    graph: DependencyGraph, changes: Mapping[Address, ResourceChange]
) -> dict[Address, frozenset[Address]]:
    """Wait on actionable producers, looking through producers with nothing to do."""

    inherited: dict[Address, frozenset[Address]] = {}
    for address in graph.topological_order():
        waits: set[Address] = set()
        for producer in graph.producers(address):
            change = changes.get(producer)
            if change is not None and change.is_actionable:
                waits.add(producer)
            else:
                waits.update(inherited[producer])
        inherited[address] = frozenset(waits)
    return {address: inherited[address] for address in changes if address in inherited}


def _removal_waits(
    snapshot: StateSnapshot, changes: Mapping[Address, ResourceChange]
) -> dict[Address, frozenset[Address]]:
    """Removals wait for every change of a node recorded as depending on them."""

    waits: dict[Address, frozenset[Address]] = {}
    for address, change in changes.items():
        if change.action not in {Action.DELETE, Action.FORGET}:
            continue
        dependents = {
            record.node_address
            for name in snapshot.dependents_of(address)
            if (record := snapshot.get(name)) is not None
        }
        waits[address] = frozenset(
            dependent
            for dependent in dependents
            if dependent in changes and changes[dependent].is_actionable
        )
    return waits


def _order(
    changes: Mapping[Address, ResourceChange],
    waits: Mapping[Address, frozenset[Address]],
    rank: Mapping[Address, int],
) -> tuple[ResourceChange, ...]:
    ordering = nx.DiGraph()
    ordering.add_nodes_from(changes)
    for address, prerequisites in waits.items():
        ordering.add_edges_from((prerequisite, address) for prerequisite in prerequisites)

    def sort_key(address: Address) -> tuple[int, str]:
        return rank.get(address, len(rank)), str(address)

    try:
        addresses = list(nx.lexicographical_topological_sort(ordering, key=sort_key))
    except nx.NetworkXUnfeasible as exc:
        cycle = [str(edge[0]) for edge in nx.find_cycle(ordering)]
        raise DependencyCycleError([*cycle, cycle[0]]) from exc
    return tuple(changes[address] for address in addresses)
