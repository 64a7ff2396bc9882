"""State Store over SQLAlchemy units of work.

Every write runs in its own transaction and first checks that the caller
still holds the workspace lock. A lock is a row keyed by workspace, so two
writers racing for it are separated by the primary key constraint.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from converge.adapters.sqlalchemy.unit_of_work import SqlAlchemyStateUnitOfWork
from converge.domain.errors import LockConflictError
from converge.domain.model import StateLock, StateSnapshot, utcnow

if TYPE_CHECKING:
    from collections.abc import Callable

    from converge.domain.model import StateRecord
    from converge.domain.ports import StateUnitOfWork

log = logging.getLogger(__name__)


class SqlAlchemyStateStore:
    def __init__(
        self,
        workspace: str,
        *,
        stale_lock_seconds: float = 300.0,
        poll_seconds: float = 1.0,
        unit_of_work_factory: Callable[[], StateUnitOfWork] = SqlAlchemyStateUnitOfWork,
    ) -> None:
        self.workspace = workspace
        self.stale_lock_seconds = stale_lock_seconds
        self.poll_seconds = poll_seconds
        self._uow_factory = unit_of_work_factory

    def get(self, address: str) -> StateRecord | None:
        with self._uow_factory() as uow:
            return uow.repositories.records.get(self.workspace, address)

    def snapshot(self) -> StateSnapshot:
        with self._uow_factory() as uow:
            return StateSnapshot(uow.repositories.records.list(self.workspace))

    def put(self, record: StateRecord, *, lock: StateLock) -> None:
        if record.workspace != self.workspace:
            raise ValueError(
                f"Record {record.address} belongs to workspace {record.workspace!r}, "
                f"not {self.workspace!r}"
            )
        record.updated_at = utcnow()
        with self._uow_factory() as uow:
            self._require_lock(uow, lock)
            uow.repositories.records.put(record)
            uow.commit()
        log.debug("Recorded %s", record.address)

    def delete(self, address: str, *, lock: StateLock) -> bool:
        with self._uow_factory() as uow:
            self._require_lock(uow, lock)
            removed = uow.repositories.records.delete(self.workspace, address)
            uow.commit()
        if removed:
            log.debug("Removed %s from state", address)
        return removed

    def lock(self, *, holder: str, operation: str, timeout: float = 0.0) -> StateLock:
        """Take the workspace lock, polling until ``timeout`` seconds have passed."""

        deadline = time.monotonic() + timeout
        while True:
            try:
                lock = self._try_lock(holder=holder, operation=operation)
            except LockConflictError as exc:
                if time.monotonic() + self.poll_seconds > deadline:
                    raise
                log.info("Waiting for state lock: %s", exc)
                time.sleep(self.poll_seconds)
                continue
            log.info("Acquired state lock %s for %s", lock.lock_id, operation)
            return lock

    def unlock(self, lock: StateLock) -> None:
        with self._uow_factory() as uow:
            current = uow.repositories.locks.get(self.workspace)
            if current is None:
                log.warning("State lock %s was already released", lock.lock_id)
                return
            if current.lock_id != lock.lock_id:
                raise self._conflict(current)
            uow.repositories.locks.remove(current)
            uow.commit()
        log.info("Released state lock %s", lock.lock_id)

    def heartbeat(self, lock: StateLock) -> None:
        with self._uow_factory() as uow:
            current = self._require_lock(uow, lock)
            now = utcnow()
            current.heartbeat_at = now
            uow.commit()
        lock.heartbeat_at = now

    def force_unlock(self, lock_id: str) -> None:
        with self._uow_factory() as uow:
            current = uow.repositories.locks.get(self.workspace)
            if current is None or current.lock_id != lock_id:
                raise LockConflictError(
                    f"Workspace {self.workspace!r} holds no lock with id {lock_id}",
                    lock_id=lock_id,
                )
            uow.repositories.locks.remove(current)
            uow.commit()
        log.warning("Force-released state lock %s held by %s", lock_id, current.holder)

    def current_lock(self) -> StateLock | None:
        with self._uow_factory() as uow:
            return uow.repositories.locks.get(self.workspace)

    def _try_lock(self, *, holder: str, operation: str) -> StateLock:
        with self._uow_factory() as uow:
            existing = uow.repositories.locks.get(self.workspace)
            if existing is not None:
                raise self._conflict(existing)
            lock = StateLock(workspace=self.workspace, holder=holder, operation=operation)
            uow.repositories.locks.add(lock)
            try:
                uow.commit()
            except IntegrityError as exc:
                raise LockConflictError(
                    f"Workspace {self.workspace!r} was locked concurrently"
                ) from exc
        return lock

    def _require_lock(self, uow: StateUnitOfWork, lock: StateLock) -> StateLock:
        current = uow.repositories.locks.get(self.workspace)
        if current is None:
            raise LockConflictError(
                f"Workspace {self.workspace!r} is not locked; writes require the state lock",
                lock_id=lock.lock_id,
            )
        if current.lock_id != lock.lock_id:
            raise self._conflict(current)
        return current

    def _conflict(self, existing: StateLock) -> LockConflictError:
        stale = existing.is_stale(stale_after_seconds=self.stale_lock_seconds)
        message = (
            f"Workspace {self.workspace!r} is locked by {existing.holder} "
            f"({existing.operation} since {existing.acquired_at.isoformat()}, "
            f"lock id {existing.lock_id})"
        )
        if stale:
            message += (
                f". The lock has not been refreshed for over {self.stale_lock_seconds:g}s; "
                f"if its holder is gone run: converge force-unlock {existing.lock_id}"
            )
        return LockConflictError(
            message,
            lock_id=existing.lock_id,
            holder=existing.holder,
            acquired_at=existing.acquired_at,
            stale=stale,
        )
