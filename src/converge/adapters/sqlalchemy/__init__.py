"""SQLAlchemy adapter package for converge."""

from __future__ import annotations

from .mappings import mapper_registry, start_mappers
from .repositories import SqlAlchemyStateLockRepository, SqlAlchemyStateRecordRepository
from .state_store import SqlAlchemyStateStore
from .unit_of_work import (
    SqlAlchemyStateUnitOfWork,
    StartupError,
    is_started,
    shutdown,
    startup,
)

__all__ = [
    "SqlAlchemyStateLockRepository",
    "SqlAlchemyStateRecordRepository",
    "SqlAlchemyStateStore",
    "SqlAlchemyStateUnitOfWork",
    "StartupError",
    "is_started",
    "mapper_registry",
    "shutdown",
    "start_mappers",
    "startup",
]
