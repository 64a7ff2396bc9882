"""Drift detection: compare recorded resources with what providers report live."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from converge.config import DriftMode
from converge.domain.errors import DriftError
from converge.domain.model import utcnow

from .retry import RetrySettings, call_with_retry

if TYPE_CHECKING:
    from converge.domain.model import StateLock, StateRecord, StateSnapshot
    from converge.domain.ports import ProviderResolver, StateStore

log = logging.getLogger(__name__)

_ABSENT = object()


@dataclass(frozen=True, slots=True)
class DriftedResource:
    address: str
    vanished: bool = False
    changed: tuple[str, ...] = ()


@dataclass(slots=True, kw_only=True)
class RefreshResult:
    snapshot: StateSnapshot
    drifted: tuple[DriftedResource, ...] = ()
    adopted: bool = False

    @property
    def has_drift(self) -> bool:
        return bool(self.drifted)


async def refresh_state(
    snapshot: StateSnapshot,
    providers: ProviderResolver,
    *,
    mode: DriftMode,
    store: StateStore | None = None,
    lock: StateLock | None = None,
    retry: RetrySettings | None = None,
    parallelism: int = 10,
) -> RefreshResult:
    """Read every recorded resource and handle drift according to ``mode``.

    ``fail`` raises ``DriftError``. ``adopt`` returns a snapshot holding the
    observed values (a vanished resource loses its record) and, given a
    ``store`` and its ``lock``, writes them through. ``skip`` reads nothing.
    """

    if mode is DriftMode.SKIP or not len(snapshot):
        return RefreshResult(snapshot=snapshot)

    settings = retry or RetrySettings()
    semaphore = asyncio.Semaphore(parallelism)

    async def observe(record: StateRecord) -> tuple[StateRecord, dict[str, object] | None]:
        provider = providers.provider_for(record.node_address)
        async with semaphore:
            live = await call_with_retry(
                lambda: provider.read(
                    record.resource_type, record.provider_id or "", record.attributes
                ),
                settings=settings,
                describe=f"refresh {record.address}",
            )
        return record, live

    observed = await asyncio.gather(*(observe(record) for record in snapshot))

    drifted: list[DriftedResource] = []
    for record, live in observed:
        if live is None:
            drifted.append(DriftedResource(address=record.address, vanished=True))
            continue
        changed = tuple(
            sorted(
                name
                for name, value in live.items()
                if record.attributes.get(name, _ABSENT) != value
            )
        )
        if changed:
            drifted.append(DriftedResource(address=record.address, changed=changed))

    if not drifted:
        log.info("No drift across %s recorded resources", len(snapshot))
        return RefreshResult(snapshot=snapshot)

    for drift in drifted:
        if drift.vanished:
            log.warning("%s no longer exists", drift.address)
        else:
            log.warning("%s drifted: %s", drift.address, ", ".join(drift.changed))

    if mode is DriftMode.FAIL:
        raise DriftError([drift.address for drift in drifted])

    live_by_address = {record.address: live for record, live in observed}
    refreshed = snapshot
    for drift in drifted:
        if drift.vanished:
            if store is not None and lock is not None:
                store.delete(drift.address, lock=lock)
            refreshed = refreshed.without(drift.address)
            continue
        record = snapshot.get(drift.address)
        live = live_by_address[drift.address]
        if record is None or live is None:
            continue
        adopted = _adopt(record, live)
        if store is not None and lock is not None:
            store.put(adopted, lock=lock)
        refreshed = refreshed.replace(adopted)
    log.info("Adopted drift for %s resources", len(drifted))
    return RefreshResult(snapshot=refreshed, drifted=tuple(drifted), adopted=True)


def _adopt(record: StateRecord, live: dict[str, object]) -> StateRecord:
    config = {name: live.get(name, value) for name, value in record.config.items()}
    return dataclasses.replace(
        record,
        config=config,
        attributes={**record.attributes, **live},
        updated_at=utcnow(),
    )
