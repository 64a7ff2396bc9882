from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine, inspect

from converge.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyStateUnitOfWork,
    StartupError,
    configured_engine,
    is_started,
    shutdown,
    startup,
)
from converge.domain.model import StateLock, StateRecord

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sqlalchemy.engine import Engine


@pytest.fixture(autouse=True)
def reset_unit_of_work_state() -> Iterator[None]:
    shutdown()
    yield
    shutdown()


def test_unit_of_work_requires_startup() -> None:
    assert not is_started()
    with pytest.raises(StartupError):
        SqlAlchemyStateUnitOfWork()


def test_startup_requires_force_for_reconfiguration() -> None:
    engine_a = create_engine("sqlite+pysqlite:///:memory:", future=True)
    engine_b = create_engine("sqlite+pysqlite:///:memory:", future=True)

    startup(engine=engine_a, force=True)

    with pytest.raises(StartupError):
        startup(engine=engine_b)

    startup(engine=engine_b, force=True)
    assert configured_engine() is engine_b


def test_startup_migrates_the_schema(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)

    tables = set(inspect(sqlite_engine).get_table_names())

    assert {"state_record", "state_lock"} <= tables


def test_unit_of_work_commits_records_and_locks(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)

    with SqlAlchemyStateUnitOfWork() as uow:
        uow.repositories.records.put(
            StateRecord(workspace="w", address="local_file.motd", resource_type="local_file")
        )
        uow.repositories.locks.add(StateLock(workspace="w", holder="me", operation="apply"))
        uow.commit()

    with SqlAlchemyStateUnitOfWork() as uow:
        assert [record.address for record in uow.repositories.records.list("w")] == [
            "local_file.motd"
        ]
        lock = uow.repositories.locks.get("w")
        assert lock is not None
        assert lock.holder == "me"


def test_unit_of_work_rolls_back_on_error(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)

    with pytest.raises(RuntimeError), SqlAlchemyStateUnitOfWork() as uow:
        uow.repositories.records.put(
            StateRecord(workspace="w", address="local_file.motd", resource_type="local_file")
        )
        raise RuntimeError("boom")

    with SqlAlchemyStateUnitOfWork() as uow:
        assert uow.repositories.records.list("w") == []
