"""Orchestrator for plan/apply cycles.

The engine composes the graph builder, drift refresh, planner and executor
around the State Store lock. It does not prescribe concrete adapters: any
``ProviderResolver`` and ``StateStore`` can be supplied.
"""

from __future__ import annotations

import asyncio
import getpass
import logging
import os
import socket
from dataclasses import dataclass
from typing import TYPE_CHECKING

from converge.config import DriftMode
from converge.domain.errors import LockConflictError

from .apply import Executor
from .graph import build_dependency_graph
from .plan import plan_changes, plan_destroy
from .refresh import refresh_state
from .retry import RetrySettings

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from converge.config import RunConfig
    from converge.domain.model import Address, Document, StateLock, StateSnapshot
    from converge.domain.ports import ProviderResolver, StateStore

    from .apply import ApplyResult
    from .graph import DependencyGraph
    from .plan import Plan
    from .refresh import RefreshResult

log = logging.getLogger(__name__)


def default_holder() -> str:
    return f"{getpass.getuser()}@{socket.gethostname()}:{os.getpid()}"


@dataclass(slots=True, kw_only=True)
class PlanReport:
    plan: Plan
    graph: DependencyGraph | None = None
    refresh: RefreshResult | None = None


@dataclass(slots=True, kw_only=True)
class ApplyReport:
    plan: Plan
    result: ApplyResult
    refresh: RefreshResult | None = None

    @property
    def exit_code(self) -> int:
        return self.result.exit_code


class ReconciliationEngine:
    """Run plan, apply, destroy and refresh for one workspace."""

    def __init__(
        self,
        *,
        providers: ProviderResolver,
        store: StateStore,
        config: RunConfig,
        holder: str | None = None,
    ) -> None:
        self.providers = providers
        self.store = store
        self.config = config
        self.holder = holder or default_holder()
        self._executor: Executor | None = None
        self._cancel_requested = False

    @property
    def retry(self) -> RetrySettings:
        return RetrySettings(
            max_attempts=self.config.max_attempts,
            initial_seconds=self.config.backoff_initial_seconds,
            max_seconds=self.config.backoff_max_seconds,
        )

    def cancel(self) -> None:
        """Stop scheduling new changes; in-flight changes finish and are recorded."""

        self._cancel_requested = True
        if self._executor is not None:
            self._executor.cancel()

    async def plan(
        self,
        document: Document,
        *,
        variables: Mapping[str, object],
        detach: Iterable[Address] = (),
    ) -> PlanReport:
        """Plan without taking the lock; drift is adopted in memory only."""

        graph = build_dependency_graph(document)
        refresh = await self._refresh(self.store.snapshot())
        plan = await plan_changes(
            document,
            graph,
            refresh.snapshot,
            self.providers,
            variables=variables,
            detach=detach,
            retry=self.retry,
        )
        return PlanReport(plan=plan, graph=graph, refresh=refresh)

    async def apply(
        self,
        document: Document,
        *,
        variables: Mapping[str, object],
        detach: Iterable[Address] = (),
    ) -> ApplyReport:
        graph = build_dependency_graph(document)
        lock = await self._acquire("apply")
        try:
            refresh = await self._refresh(self.store.snapshot(), lock=lock)
            plan = await plan_changes(
                document,
                graph,
                refresh.snapshot,
                self.providers,
                variables=variables,
                detach=detach,
                retry=self.retry,
            )
            result = await self._execute(
                plan, lock=lock, snapshot=refresh.snapshot, document=document, variables=variables
            )
        finally:
            self._release(lock)
        return ApplyReport(plan=plan, result=result, refresh=refresh)

    async def destroy(self, *, detach: Iterable[Address] = ()) -> ApplyReport:
        lock = await self._acquire("destroy")
        try:
            refresh = await self._refresh(self.store.snapshot(), lock=lock)
            plan = plan_destroy(refresh.snapshot, detach=detach)
            result = await self._execute(plan, lock=lock, snapshot=refresh.snapshot)
        finally:
            self._release(lock)
        return ApplyReport(plan=plan, result=result, refresh=refresh)

    async def refresh(self, *, mode: DriftMode | None = None) -> RefreshResult:
        lock = await self._acquire("refresh")
        try:
            return await self._refresh(self.store.snapshot(), lock=lock, mode=mode)
        finally:
            self._release(lock)

    def forget(self, address: Address) -> bool:
        """Detach ``address`` from state without touching the live resource."""

        lock = self.store.lock(
            holder=self.holder, operation="forget", timeout=self.config.lock_timeout_seconds
        )
        try:
            removed = self.store.delete(str(address), lock=lock)
        finally:
            self._release(lock)
        if removed:
            log.info("%s removed from state", address)
        else:
            log.warning("%s is not in state", address)
        return removed

    async def _refresh(
        self,
        snapshot: StateSnapshot,
        *,
        lock: StateLock | None = None,
        mode: DriftMode | None = None,
    ) -> RefreshResult:
        return await refresh_state(
            snapshot,
            self.providers,
            mode=mode or self.config.drift_mode,
            store=self.store if lock is not None else None,
            lock=lock,
            retry=self.retry,
            parallelism=self.config.parallelism,
        )

    async def _execute(
        self,
        plan: Plan,
        *,
        lock: StateLock,
        snapshot: StateSnapshot,
        document: Document | None = None,
        variables: Mapping[str, object] | None = None,
    ) -> ApplyResult:
        executor = Executor(
            providers=self.providers,
            store=self.store,
            lock=lock,
            snapshot=snapshot,
            document=document,
            variables=variables,
            parallelism=self.config.parallelism,
            retry=self.retry,
            heartbeat_seconds=self.config.heartbeat_seconds,
        )
        self._executor = executor
        if self._cancel_requested:
            executor.cancel()
        try:
            return await executor.execute(plan)
        finally:
            self._executor = None

    async def _acquire(self, operation: str) -> StateLock:
        timeout = self.config.lock_timeout_seconds
        if timeout > 0:
            return await asyncio.to_thread(
                self.store.lock, holder=self.holder, operation=operation, timeout=timeout
            )
        return self.store.lock(holder=self.holder, operation=operation)

    def _release(self, lock: StateLock) -> None:
        try:
            self.store.unlock(lock)
        except LockConflictError as exc:
            log.error("Could not release state lock %s: %s", lock.lock_id, exc)
