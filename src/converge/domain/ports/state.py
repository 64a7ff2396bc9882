"""State Store port and the repositories backing it."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from types import TracebackType

    from converge.domain.model import StateLock, StateRecord, StateSnapshot


@runtime_checkable
class StateRecordRepository(Protocol):
    def get(self, workspace: str, address: str) -> StateRecord | None: ...

    def list(self, workspace: str) -> list[StateRecord]: ...

    def put(self, record: StateRecord) -> None: ...

    def delete(self, workspace: str, address: str) -> bool: ...


@runtime_checkable
class StateLockRepository(Protocol):
    def get(self, workspace: str) -> StateLock | None: ...

    def add(self, lock: StateLock) -> None: ...

    def remove(self, lock: StateLock) -> None: ...


@dataclass(slots=True)
class StateRepositories:
    """Repositories required to persist state documents."""

    records: StateRecordRepository
    locks: StateLockRepository


@runtime_checkable
class StateUnitOfWork(Protocol):
    @property
    def repositories(self) -> StateRepositories: ...

    def __enter__(self) -> StateUnitOfWork: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> bool: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


@runtime_checkable
class StateStore(Protocol):
    """Durable node identity -> realized attributes, with single-writer locking."""

    workspace: str

    def get(self, address: str) -> StateRecord | None: ...

    def snapshot(self) -> StateSnapshot: ...

    def put(self, record: StateRecord, *, lock: StateLock) -> None: ...

    def delete(self, address: str, *, lock: StateLock) -> bool: ...

    def lock(self, *, holder: str, operation: str, timeout: float = 0.0) -> StateLock: ...

    def unlock(self, lock: StateLock) -> None: ...

    def heartbeat(self, lock: StateLock) -> None: ...

    def force_unlock(self, lock_id: str) -> None: ...

    def current_lock(self) -> StateLock | None: ...
