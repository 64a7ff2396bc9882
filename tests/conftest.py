from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TC002
from sqlalchemy.pool import StaticPool

from converge.adapters.sqlalchemy import SqlAlchemyStateStore, start_mappers
from converge.adapters.sqlalchemy.migrations import upgrade_head
from converge.adapters.sqlalchemy.unit_of_work import shutdown, startup
from converge.config import RunConfig
from converge.domain.reconciliation import ReconciliationEngine
from tests.support.providers import FakeCloud, fake_providers

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Iterator

WORKSPACE = "test"


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    start_mappers()
    upgrade_head(engine=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def state_store(sqlite_engine: Engine) -> Iterator[SqlAlchemyStateStore]:
    startup(engine=sqlite_engine, force=True)
    try:
        yield SqlAlchemyStateStore(WORKSPACE, poll_seconds=0.01)
    finally:
        shutdown()


@pytest.fixture
def run_config() -> RunConfig:
    return RunConfig(
        workspace=WORKSPACE,
        max_attempts=3,
        backoff_initial_seconds=0.0,
        backoff_max_seconds=0.0,
        heartbeat_seconds=60.0,
    )


@pytest.fixture
def cloud() -> FakeCloud:
    return FakeCloud()


@pytest.fixture
def engine(
    cloud: FakeCloud, state_store: SqlAlchemyStateStore, run_config: RunConfig
) -> ReconciliationEngine:
    return ReconciliationEngine(
        providers=fake_providers(cloud),
        store=state_store,
        config=run_config,
        holder="tester@localhost:1",
    )
