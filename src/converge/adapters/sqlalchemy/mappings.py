"""SQLAlchemy mapping metadata for State Records and workspace locks."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from functools import cache

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Dialect,
    Index,
    String,
    Table,
    TypeDecorator,
    orm,
)

from converge.domain.model import StateLock, StateRecord

log = logging.getLogger(__name__)


class UTCDateTime(TypeDecorator[datetime]):
    """Store aware datetimes as UTC; SQLite hands them back naive, so reattach UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        return None if value is None else _as_utc(value)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        return None if value is None else _as_utc(value)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

state_record_table = Table(
    "state_record",
    mapper_registry.metadata,
    Column("workspace", String(255), primary_key=True),
    Column("address", String(512), primary_key=True),
    Column("resource_type", String(255), nullable=False),
    Column("provider_id", String(1024), nullable=True),
    Column("config", JSON, nullable=False, default=dict),
    Column("attributes", JSON, nullable=False, default=dict),
    Column("dependencies", JSON, nullable=False, default=list),
    Column("prevent_destroy", Boolean, nullable=False, default=False),
    Column("sensitive_attributes", JSON, nullable=False, default=list),
    Column("deposed", JSON, nullable=False, default=list),
    Column("updated_at", UTCDateTime(), nullable=False),
    Index("ix_state_record_resource_type", "workspace", "resource_type"),
)

state_lock_table = Table(
    "state_lock",
    mapper_registry.metadata,
    Column("workspace", String(255), primary_key=True),
    Column("lock_id", String(64), nullable=False, unique=True),
    Column("holder", String(255), nullable=False),
    Column("operation", String(64), nullable=False),
    Column("acquired_at", UTCDateTime(), nullable=False),
    Column("heartbeat_at", UTCDateTime(), nullable=False),
)


@cache
def start_mappers() -> orm.registry:
    """Configure SQLAlchemy mappers for State Records and locks."""

    log.debug("Mapping State Records and locks")
    mapper_registry.map_imperatively(StateRecord, state_record_table)
    mapper_registry.map_imperatively(StateLock, state_lock_table)
    return mapper_registry

