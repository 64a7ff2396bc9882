"""Reconciliation core: turn a declaration document into applied state.

Layered flow:
1) build the dependency graph from references and ordering hints
2) refresh recorded resources and handle drift
3) plan the change-set against the State Snapshot
4) execute the change-set through providers, recording each result
"""

from __future__ import annotations

from .apply import ApplyResult, Executor
from .contracts import Action, AttributeChange, ChangeResult, Outcome, ResourceChange
from .engine import ApplyReport, PlanReport, ReconciliationEngine
from .evaluate import DataCache, evaluate_static
from .graph import DependencyGraph, EdgeKind, build_dependency_graph
from .plan import Plan, plan_changes, plan_destroy
from .refresh import DriftedResource, RefreshResult, refresh_state
from .retry import RetrySettings

__all__ = [
    "Action",
    "ApplyReport",
    "ApplyResult",
    "AttributeChange",
    "ChangeResult",
    "DataCache",
    "DependencyGraph",
    "DriftedResource",
    "EdgeKind",
    "Executor",
    "Outcome",
    "Plan",
    "PlanReport",
    "ReconciliationEngine",
    "RefreshResult",
    "ResourceChange",
    "RetrySettings",
    "build_dependency_graph",
    "evaluate_static",
    "plan_changes",
    "plan_destroy",
    "refresh_state",
]
