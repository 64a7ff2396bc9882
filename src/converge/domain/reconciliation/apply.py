"""Executor: run a plan's changes through providers and record the results.

Changes run concurrently, bounded by ``parallelism``. A change starts only
once every change it waits for has succeeded; the State Record of a change is
written before any dependent starts. A failure marks every change that
transitively waits on it as skipped while independent branches carry on.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from converge.domain.errors import ConvergeError, LockConflictError, ProtectedResourceError
from converge.domain.model import ResourceNode, StateRecord, evaluate, utcnow

from .contracts import Action, ChangeResult, Outcome
from .evaluate import ApplyScope
from .policy import apply_ignore_changes, choose_action, diff_attributes
from .retry import RetrySettings, call_with_retry

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from converge.domain.model import Address, Document, StateLock, StateSnapshot
    from converge.domain.ports import ProviderResolver, RealizedResource, StateStore

    from .contracts import ResourceChange
    from .plan import Plan

log = logging.getLogger(__name__)

_SUCCEEDED = frozenset(
    {
        Outcome.CREATED,
        Outcome.UPDATED,
        Outcome.REPLACED,
        Outcome.DELETED,
        Outcome.FORGOTTEN,
        Outcome.READ,
        Outcome.UNCHANGED,
    }
)
_FAILED = frozenset({Outcome.FAILED, Outcome.SKIPPED})


@dataclass(slots=True, kw_only=True)
class ApplyResult:
    results: tuple[ChangeResult, ...]
    outputs: dict[str, object] = field(default_factory=dict[str, object])
    sensitive_outputs: frozenset[str] = frozenset()
    cancelled: bool = False

    def result_for(self, address: Address) -> ChangeResult | None:
        for result in self.results:
            if result.address == address:
                return result
        return None

    @property
    def failed(self) -> tuple[ChangeResult, ...]:
        return tuple(result for result in self.results if result.outcome is Outcome.FAILED)

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def counts(self) -> dict[Outcome, int]:
        counter = Counter(result.outcome for result in self.results)
        return {outcome: counter[outcome] for outcome in Outcome if counter[outcome]}

    def summary(self) -> str:
        counts = self.counts()
        parts = [f"{count} {outcome}" for outcome, count in counts.items()]
        prefix = "Apply cancelled" if self.cancelled else "Apply complete"
        return f"{prefix}: " + (", ".join(parts) if parts else "nothing to do") + "."


@dataclass(slots=True)
class _Attempts:
    count: int = 0


class Executor:
    """Apply one plan under a held state lock.

    ``cancel()`` stops scheduling: changes already talking to a provider finish
    and are recorded, changes not yet started are reported cancelled.
    """

    def __init__(
        self,
        *,
        providers: ProviderResolver,
        store: StateStore,
        lock: StateLock,
        snapshot: StateSnapshot,
        document: Document | None = None,
        variables: Mapping[str, object] | None = None,
        parallelism: int = 10,
        retry: RetrySettings | None = None,
        heartbeat_seconds: float = 30.0,
    ) -> None:
        self._providers = providers
        self._store = store
        self._lock = lock
        self._document = document
        self._variables = dict(variables or {})
        self._parallelism = parallelism
        self._retry = retry or RetrySettings()
        self._heartbeat_seconds = heartbeat_seconds
        self._records: dict[str, StateRecord] = {record.address: record for record in snapshot}
        self._cancel_requested = False

    def cancel(self) -> None:
        if not self._cancel_requested:
            log.warning("Cancellation requested; waiting for in-flight changes")
        self._cancel_requested = True

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    async def execute(self, plan: Plan) -> ApplyResult:
        scope = ApplyScope(
            variables=self._variables,
            base_dir=self._document.base_dir if self._document else Path(),
            data=plan.data,
            records=self._records,
        )
        results: dict[Address, ChangeResult] = {
            change.address: ChangeResult(
                address=change.address, action=change.action, outcome=Outcome.UNCHANGED
            )
            for change in plan.changes
            if not change.is_actionable
        }
        remaining = [change for change in plan.changes if change.is_actionable]
        semaphore = asyncio.Semaphore(self._parallelism)
        running: dict[Address, asyncio.Task[ChangeResult]] = {}
        heartbeat = asyncio.create_task(self._heartbeat())

        try:
            while remaining or running:
                if self._cancel_requested:
                    for change in remaining:
                        results[change.address] = _result(change, Outcome.CANCELLED)
                    remaining = []

                for change in list(remaining):
                    waits = plan.waits_for.get(change.address, frozenset())
                    blocked = {results[w].outcome for w in waits if w in results} - _SUCCEEDED
                    if blocked:
                        remaining.remove(change)
                        outcome = Outcome.SKIPPED if blocked & _FAILED else Outcome.CANCELLED
                        results[change.address] = _result(change, outcome)
                        if outcome is Outcome.SKIPPED:
                            log.warning("%s skipped: a dependency failed", change.address)
                        continue
                    if all(w in results for w in waits):
                        remaining.remove(change)
                        running[change.address] = asyncio.create_task(
                            self._run(change, scope, semaphore)
                        )

                if not running:
                    if remaining:
                        raise ConvergeError(
                            "Plan cannot make progress: "
                            + ", ".join(str(change.address) for change in remaining)
                        )
                    break

                done, _ = await asyncio.wait(
                    running.values(), return_when=asyncio.FIRST_COMPLETED
                )
                for task in done:
                    result = task.result()
                    results[result.address] = result
                    del running[result.address]
        except asyncio.CancelledError:
            self._cancel_requested = True
            if running:
                await asyncio.gather(*running.values(), return_exceptions=True)
            raise
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat

        outputs, sensitive_outputs = self._outputs(scope)
        apply_result = ApplyResult(
            results=tuple(results[change.address] for change in plan.changes),
            outputs=outputs,
            sensitive_outputs=sensitive_outputs,
            cancelled=self._cancel_requested,
        )
        log.info(apply_result.summary())
        return apply_result

    async def _run(
        self, change: ResourceChange, scope: ApplyScope, semaphore: asyncio.Semaphore
    ) -> ChangeResult:
        async with semaphore:
            if self._cancel_requested:
                return _result(change, Outcome.CANCELLED)
            attempts = _Attempts()
            log.info("%s: %s", change.address, change.action)
            try:
                outcome = await self._perform(change, scope, attempts)
            except ConvergeError as exc:
                log.error("%s failed: %s", change.address, exc)
                return _result(change, Outcome.FAILED, error=str(exc), attempts=attempts.count)
            except Exception as exc:
                log.exception("%s failed unexpectedly", change.address)
                return _result(change, Outcome.FAILED, error=str(exc), attempts=attempts.count)
            log.info("%s: %s", change.address, outcome)
            return _result(change, outcome, attempts=attempts.count)

    async def _perform(
        self, change: ResourceChange, scope: ApplyScope, attempts: _Attempts
    ) -> Outcome:
        match change.action:
            case Action.READ:
                return await self._read(change, scope, attempts)
            case Action.CREATE:
                config = self._configuration(change, scope)
                await self._create(change, config, attempts)
                return Outcome.CREATED
            case Action.UPDATE | Action.NOOP:
                outcome = await self._update(change, scope, attempts)
                await self._purge_deposed(change, attempts)
                return outcome
            case Action.REPLACE:
                config = self._configuration(change, scope)
                await self._replace(change, config, attempts)
                return Outcome.REPLACED
            case Action.DELETE:
                await self._purge_deposed(change, attempts)
                await self._destroy(change, attempts)
                self._forget(change.address)
                return Outcome.DELETED
            case Action.FORGET:
                if change.deposed:
                    log.warning(
                        "%s: deposed objects %s are left running",
                        change.address,
                        ", ".join(change.deposed),
                    )
                self._forget(change.address)
                return Outcome.FORGOTTEN
            case _:
                raise ConvergeError(f"Unsupported action {change.action} for {change.address}")

    async def _read(
        self, change: ResourceChange, scope: ApplyScope, attempts: _Attempts
    ) -> Outcome:
        node = change.node
        if node is None:
            raise ConvergeError(f"{change.address} has no declaration to read")
        config = {name: evaluate(expression, scope) for name, expression in node.attributes.items()}
        provider = self._providers.provider_for(change.address)
        values = await self._call(
            attempts,
            f"read {change.address}",
            lambda: provider.read_data(change.address.resource_type, config),
        )
        scope.data.put(change.address, values)
        return Outcome.READ

    async def _update(
        self, change: ResourceChange, scope: ApplyScope, attempts: _Attempts
    ) -> Outcome:
        prior = change.prior
        if prior is None:
            raise ConvergeError(f"{change.address} has no State Record to update")
        config = self._configuration(change, scope)
        schema = self._providers.provider_for(change.address).resource_schema(
            change.address.resource_type
        )
        action = choose_action(diff_attributes(prior.config, config, schema))
        if action is Action.NOOP:
            self._write(
                change,
                config=prior.config,
                resource_id=prior.provider_id,
                attributes=prior.attributes,
            )
            return Outcome.UNCHANGED
        if action is Action.REPLACE:
            log.info("%s now requires replacement", change.address)
            await self._replace(change, config, attempts)
            return Outcome.REPLACED

        provider = self._providers.provider_for(change.address)
        realized = await self._call(
            attempts,
            f"update {change.address}",
            lambda: provider.update(
                change.address.resource_type, prior.provider_id or "", prior.attributes, config
            ),
        )
        self._record(change, config, realized)
        return Outcome.UPDATED

    async def _replace(
        self, change: ResourceChange, config: dict[str, object], attempts: _Attempts
    ) -> None:
        node = _resource_node(change)
        if node.lifecycle.prevent_destroy or (change.prior and change.prior.prevent_destroy):
            raise ProtectedResourceError(str(change.address), action="replaced")
        if node.lifecycle.create_before_destroy:
            # the superseded object stays in state until its delete succeeds
            current = self._records.get(str(change.address))
            deposed = list(current.deposed) if current else []
            if current is not None and current.provider_id is not None:
                deposed.append(
                    {"provider_id": current.provider_id, "attributes": dict(current.attributes)}
                )
            await self._create(change, config, attempts, deposed=deposed)
            await self._purge_deposed(change, attempts)
            return
        await self._purge_deposed(change, attempts)
        await self._destroy(change, attempts)
        self._forget(change.address)
        await self._create(change, config, attempts)

    async def _create(
        self,
        change: ResourceChange,
        config: dict[str, object],
        attempts: _Attempts,
        *,
        deposed: list[dict[str, object]] | None = None,
    ) -> None:
        provider = self._providers.provider_for(change.address)
        realized = await self._call(
            attempts,
            f"create {change.address}",
            lambda: provider.create(change.address.resource_type, config),
        )
        self._record(change, config, realized, deposed=deposed)

    async def _destroy(self, change: ResourceChange, attempts: _Attempts) -> None:
        prior = change.prior or self._records.get(str(change.address))
        if prior is None:
            return
        await self._destroy_record(prior, attempts)

    async def _destroy_record(self, record: StateRecord, attempts: _Attempts) -> None:
        provider = self._providers.provider_for(record.node_address)
        await self._call(
            attempts,
            f"delete {record.address}",
            lambda: provider.delete(
                record.resource_type, record.provider_id or "", record.attributes
            ),
        )

    async def _purge_deposed(self, change: ResourceChange, attempts: _Attempts) -> None:
        """Delete superseded objects one by one, dropping each from the record once gone."""

        record = self._records.get(str(change.address))
        while record is not None and record.deposed:
            entry = record.deposed[0]
            await self._delete_deposed(record, entry, attempts)
            record = dataclasses.replace(record, deposed=record.deposed[1:], updated_at=utcnow())
            self._store.put(record, lock=self._lock)
            self._records[record.address] = record
            log.info("%s: deleted deposed object %s", change.address, entry.get("provider_id"))

    async def _delete_deposed(
        self, record: StateRecord, entry: Mapping[str, object], attempts: _Attempts
    ) -> None:
        provider = self._providers.provider_for(record.node_address)
        resource_id = str(entry.get("provider_id") or "")
        attributes = entry.get("attributes")
        await self._call(
            attempts,
            f"delete deposed {record.address} ({resource_id})",
            lambda: provider.delete(
                record.resource_type,
                resource_id,
                attributes if isinstance(attributes, dict) else {},  # pyright: ignore[reportUnknownArgumentType]
            ),
        )

    def _configuration(self, change: ResourceChange, scope: ApplyScope) -> dict[str, object]:
        node = _resource_node(change)
        config = {name: evaluate(expression, scope) for name, expression in node.attributes.items()}
        if change.prior is not None:
            config = apply_ignore_changes(config, change.prior.config, node.lifecycle)
        return config

    def _record(
        self,
        change: ResourceChange,
        config: dict[str, object],
        realized: RealizedResource,
        *,
        deposed: list[dict[str, object]] | None = None,
    ) -> None:
        try:
            self._write(
                change,
                config=config,
                resource_id=realized.resource_id,
                attributes={**config, **realized.attributes},
                deposed=deposed,
            )
        except Exception:
            log.error(
                "%s exists as %s but could not be recorded; remove or import it by hand",
                change.address,
                realized.resource_id,
            )
            raise

    def _write(
        self,
        change: ResourceChange,
        *,
        config: Mapping[str, object],
        resource_id: str | None,
        attributes: Mapping[str, object],
        deposed: list[dict[str, object]] | None = None,
    ) -> None:
        node = _resource_node(change)
        if deposed is None:
            current = self._records.get(str(change.address))
            deposed = list(current.deposed) if current else []
        record = StateRecord(
            workspace=self._store.workspace,
            address=str(change.address),
            resource_type=change.address.resource_type,
            provider_id=resource_id,
            config=dict(config),
            attributes=dict(attributes),
            dependencies=[str(dependency) for dependency in change.dependencies],
            prevent_destroy=node.lifecycle.prevent_destroy,
            sensitive_attributes=sorted(change.sensitive),
            deposed=deposed,
        )
        self._store.put(record, lock=self._lock)
        self._records[record.address] = record

    def _forget(self, address: Address) -> None:
        self._store.delete(str(address), lock=self._lock)
        self._records.pop(str(address), None)

    async def _call[T](
        self, attempts: _Attempts, describe: str, func: Callable[[], Awaitable[T]]
    ) -> T:
        async def attempt() -> T:
            attempts.count += 1
            return await func()

        return await call_with_retry(attempt, settings=self._retry, describe=describe)

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_seconds)
            try:
                self._store.heartbeat(self._lock)
            except LockConflictError as exc:
                log.error("Lost the state lock: %s", exc)
                self.cancel()
                return
            except Exception:
                # transient store errors; try again on the next beat
                log.exception("Could not refresh the state lock; retrying")

    def _outputs(self, scope: ApplyScope) -> tuple[dict[str, object], frozenset[str]]:
        if self._document is None:
            return {}, frozenset()
        values: dict[str, object] = {}
        for name, output in self._document.outputs.items():
            try:
                values[name] = evaluate(output.expression, scope)
            except ConvergeError as exc:
                log.warning("Output %s is unavailable: %s", name, exc)
        sensitive = frozenset(
            name for name, output in self._document.outputs.items() if output.sensitive
        )
        return values, sensitive


def _resource_node(change: ResourceChange) -> ResourceNode:
    if not isinstance(change.node, ResourceNode):
        raise ConvergeError(f"{change.address} has no resource declaration")
    return change.node


def _result(
    change: ResourceChange,
    outcome: Outcome,
    *,
    error: str | None = None,
    attempts: int = 0,
) -> ChangeResult:
    return ChangeResult(
        address=change.address,
        action=change.action,
        outcome=outcome,
        error=error,
        attempts=attempts,
    )

