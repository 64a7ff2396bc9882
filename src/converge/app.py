"""Application services wiring the loader, providers, engine and State Store."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import signal
from contextlib import contextmanager
from typing import TYPE_CHECKING

from converge.adapters.document import load_document
from converge.adapters.providers import default_registry
from converge.adapters.sqlalchemy import SqlAlchemyStateStore, is_started, startup
from converge.config import env_prefixed, get_run_config
from converge.domain.model import Address
from converge.domain.reconciliation import (
    ReconciliationEngine,
    build_dependency_graph,
    evaluate_static,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Iterator, Mapping
    from pathlib import Path

    from converge.adapters.providers import ProviderRegistry
    from converge.config import DriftMode, RunConfig
    from converge.domain.model import Document, StateRecord, StateSnapshot
    from converge.domain.ports import StateStore
    from converge.domain.reconciliation import (
        ApplyReport,
        DependencyGraph,
        PlanReport,
        RefreshResult,
    )

log = logging.getLogger(__name__)

VARIABLE_ENV_PREFIX = "CONVERGE_VAR_"


@dataclasses.dataclass(slots=True, kw_only=True)
class LoadedDocument:
    document: Document
    variables: dict[str, object]


def load(
    path: Path,
    *,
    variables: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> LoadedDocument:
    """Load ``path`` and bind its variables.

    Values from ``CONVERGE_VAR_<name>`` apply to declared variables only and
    are overridden by explicit ``variables``.
    """

    document = load_document(path)
    from_env = {
        name: value
        for name, value in env_prefixed(VARIABLE_ENV_PREFIX, environ=environ).items()
        if name in document.variables
    }
    bound = document.bind_variables({**from_env, **(variables or {})})
    return LoadedDocument(document=document, variables=bound)


def provider_configs(loaded: LoadedDocument) -> dict[str, dict[str, object]]:
    document = loaded.document
    return {
        name: evaluate_static(block, variables=loaded.variables, base_dir=document.base_dir)
        for name, block in document.providers.items()
    }


def open_state_store(config: RunConfig | None = None) -> SqlAlchemyStateStore:
    config = config or get_run_config()
    if not is_started():
        startup()
    return SqlAlchemyStateStore(
        config.workspace,
        stale_lock_seconds=config.stale_lock_seconds,
        poll_seconds=config.lock_poll_seconds,
    )


def parse_addresses(values: Iterable[str]) -> tuple[Address, ...]:
    return tuple(Address.parse(value) for value in values)


def plan_document(
    path: Path,
    *,
    variables: Mapping[str, object] | None = None,
    detach: Iterable[str] = (),
    config: RunConfig | None = None,
    registry: ProviderRegistry | None = None,
    state_store: StateStore | None = None,
) -> PlanReport:
    """Compute the change-set for ``path`` without touching anything."""

    loaded = load(path, variables=variables)
    addresses = parse_addresses(detach)

    async def operation(engine: ReconciliationEngine) -> PlanReport:
        return await engine.plan(loaded.document, variables=loaded.variables, detach=addresses)

    return _run(loaded, operation, config=config, registry=registry, state_store=state_store)


def apply_document(
    path: Path,
    *,
    variables: Mapping[str, object] | None = None,
    detach: Iterable[str] = (),
    config: RunConfig | None = None,
    registry: ProviderRegistry | None = None,
    state_store: StateStore | None = None,
) -> ApplyReport:
    loaded = load(path, variables=variables)
    addresses = parse_addresses(detach)

    async def operation(engine: ReconciliationEngine) -> ApplyReport:
        return await engine.apply(loaded.document, variables=loaded.variables, detach=addresses)

    report = _run(loaded, operation, config=config, registry=registry, state_store=state_store)
    log.info(report.result.summary())
    return report


def destroy_document(
    path: Path,
    *,
    variables: Mapping[str, object] | None = None,
    detach: Iterable[str] = (),
    config: RunConfig | None = None,
    registry: ProviderRegistry | None = None,
    state_store: StateStore | None = None,
) -> ApplyReport:
    """Delete every recorded resource; ``path`` supplies provider configuration."""

    loaded = load(path, variables=variables)
    addresses = parse_addresses(detach)

    async def operation(engine: ReconciliationEngine) -> ApplyReport:
        return await engine.destroy(detach=addresses)

    report = _run(loaded, operation, config=config, registry=registry, state_store=state_store)
    log.info(report.result.summary())
    return report


def refresh_document(
    path: Path,
    *,
    variables: Mapping[str, object] | None = None,
    mode: DriftMode | None = None,
    config: RunConfig | None = None,
    registry: ProviderRegistry | None = None,
    state_store: StateStore | None = None,
) -> RefreshResult:
    loaded = load(path, variables=variables)

    async def operation(engine: ReconciliationEngine) -> RefreshResult:
        return await engine.refresh(mode=mode)

    result = _run(loaded, operation, config=config, registry=registry, state_store=state_store)
    if result.has_drift:
        log.warning("Drift in %d resource(s)", len(result.drifted))
    return result


def dependency_graph(path: Path) -> DependencyGraph:
    return build_dependency_graph(load_document(path))


def list_state(*, state_store: StateStore | None = None) -> StateSnapshot:
    return (state_store or open_state_store()).snapshot()


def show_state(address: str, *, state_store: StateStore | None = None) -> StateRecord | None:
    return (state_store or open_state_store()).get(str(Address.parse(address)))


def forget_resource(
    address: str,
    *,
    config: RunConfig | None = None,
    state_store: StateStore | None = None,
) -> bool:
    """Remove ``address`` from state, leaving the live resource alone."""

    config = config or get_run_config()
    engine = ReconciliationEngine(
        providers=default_registry().bind(),
        store=state_store or open_state_store(config),
        config=config,
    )
    return engine.forget(Address.parse(address))


def force_unlock(lock_id: str, *, state_store: StateStore | None = None) -> None:
    store = state_store or open_state_store()
    store.force_unlock(lock_id)
    log.warning("Lock %s on workspace %s released by force", lock_id, store.workspace)


def _run[T](
    loaded: LoadedDocument,
    operation: Callable[[ReconciliationEngine], Awaitable[T]],
    *,
    config: RunConfig | None,
    registry: ProviderRegistry | None,
    state_store: StateStore | None,
) -> T:
    config = config or get_run_config()
    store = state_store or open_state_store(config)
    providers = (registry or default_registry()).bind(
        provider_configs(loaded), base_dir=loaded.document.base_dir
    )

    async def session() -> T:
        async with providers:
            engine = ReconciliationEngine(providers=providers, store=store, config=config)
            with _cancel_on_interrupt(engine):
                return await operation(engine)

    return asyncio.run(session())


@contextmanager
def _cancel_on_interrupt(engine: ReconciliationEngine) -> Iterator[None]:
    """Route SIGINT to ``engine.cancel`` while the event loop runs."""

    loop = asyncio.get_running_loop()

    def interrupt() -> None:
        log.warning("Interrupted: waiting for in-flight changes, no new changes will start")
        engine.cancel()

    installed = True
    try:
        loop.add_signal_handler(signal.SIGINT, interrupt)
    except (NotImplementedError, RuntimeError):
        log.debug("SIGINT handler unavailable; interrupts abort the run")
        installed = False
    try:
        yield
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)
