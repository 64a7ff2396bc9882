"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from converge.adapters.sqlalchemy.mappings import state_record_table
from converge.domain.model import StateLock, StateRecord

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


class SqlAlchemyStateRecordRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, workspace: str, address: str) -> StateRecord | None:
        return self.session.get(StateRecord, (workspace, address))

    def list(self, workspace: str) -> list[StateRecord]:
        stmt = (
            select(StateRecord)
            .where(state_record_table.c.workspace == workspace)
            .order_by(state_record_table.c.address)
        )
        return list(self.session.execute(stmt).scalars())

    def put(self, record: StateRecord) -> None:
        # whole-record write: every column is replaced
        self.session.merge(record)

    def delete(self, workspace: str, address: str) -> bool:
        record = self.get(workspace, address)
        if record is None:
            return False
        self.session.delete(record)
        return True


class SqlAlchemyStateLockRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, workspace: str) -> StateLock | None:
        return self.session.get(StateLock, workspace)

    def add(self, lock: StateLock) -> None:
        self.session.add(lock)

    def remove(self, lock: StateLock) -> None:
        current = self.get(lock.workspace)
        if current is not None:
            self.session.delete(current)
