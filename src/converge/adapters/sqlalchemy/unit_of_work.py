"""Engine lifecycle and the transactional unit of work behind the State Store.

The adapter keeps one process-wide engine. ``startup`` binds it and brings the
schema to the latest revision; every ``SqlAlchemyStateUnitOfWork`` then opens a
short-lived session on it. Nothing is committed implicitly: callers commit once
their lock check and write succeeded, and any exception rolls the session back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from converge.adapters.sqlalchemy.mappings import start_mappers
from converge.adapters.sqlalchemy.migrations import upgrade_head
from converge.adapters.sqlalchemy.repositories import (
    SqlAlchemyStateLockRepository,
    SqlAlchemyStateRecordRepository,
)
from converge.config import get_database_uri
from converge.domain.ports import StateRepositories

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)

# seconds a SQLite connection waits on a writer before raising "database is locked"
SQLITE_BUSY_TIMEOUT = 15.0


class StartupError(RuntimeError):
    """Raised when the State Store adapter is used before ``startup`` or started twice."""


@dataclass(slots=True)
class _Binding:
    engine: Engine | None = None
    sessions: sessionmaker[Session] | None = field(default=None, repr=False)

    def bind(self, engine: Engine | None) -> None:
        self.engine = engine
        self.sessions = (
            sessionmaker(bind=engine, expire_on_commit=False) if engine is not None else None
        )

    def open_session(self) -> Session:
        if self.sessions is None:
            raise StartupError(
                "State Store not initialised; call "
                "converge.adapters.sqlalchemy.unit_of_work.startup() first."
            )
        return self.sessions()


_BINDING = _Binding()


def create_state_engine(database_uri: str) -> Engine:
    """Build an engine for ``database_uri``; SQLite connections wait on busy writers."""

    connect_args: dict[str, object] = {}
    if make_url(database_uri).get_backend_name() == "sqlite":
        connect_args["timeout"] = SQLITE_BUSY_TIMEOUT
    return create_engine(database_uri, future=True, connect_args=connect_args)


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
) -> None:
    """Bind the adapter to an engine and migrate the State Store schema to head."""

    if _BINDING.engine is not None and not force:
        raise StartupError("State Store already initialised. Pass force=True to rebind.")

    resolved = engine or create_state_engine(database_uri or get_database_uri())
    start_mappers()
    upgrade_head(engine=resolved)
    _BINDING.bind(resolved)
    log.debug("State Store bound to %s", resolved.url.render_as_string(hide_password=True))


def configured_engine() -> Engine | None:
    return _BINDING.engine


def is_started() -> bool:
    return _BINDING.engine is not None


def shutdown() -> None:
    """Dispose the bound engine; ``startup`` may be called again afterwards."""

    if _BINDING.engine is not None:
        _BINDING.engine.dispose()
    _BINDING.bind(None)


class SqlAlchemyStateUnitOfWork:
    """One transaction against the ``state_record`` and ``state_lock`` tables."""

    def __init__(self) -> None:
        self._session: Session | None = _BINDING.open_session()
        self._repositories = StateRepositories(
            records=SqlAlchemyStateRecordRepository(self._session),
            locks=SqlAlchemyStateLockRepository(self._session),
        )

    def __enter__(self) -> SqlAlchemyStateUnitOfWork:
        if self._session is None:
            raise StartupError("Unit of work already closed")
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        session = self.session
        if exc_type is not None:
            session.rollback()
        session.close()
        self._session = None
        return False

    @property
    def session(self) -> Session:
        if self._session is None:
            raise StartupError("Unit of work already closed")
        return self._session

    @property
    def repositories(self) -> StateRepositories:
        return self._repositories

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()


if TYPE_CHECKING:
    from converge.domain.ports import StateUnitOfWork

    _uow_check: StateUnitOfWork = SqlAlchemyStateUnitOfWork()
