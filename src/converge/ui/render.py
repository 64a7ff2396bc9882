"""Text rendering of plans, apply results and state for the CLI.

Every value flagged sensitive is replaced by ``(sensitive)`` before it is
formatted; values only known after apply read ``(known after apply)``.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from converge.domain.model import UNKNOWN, is_known
from converge.domain.reconciliation import Action, Outcome

if TYPE_CHECKING:
    from collections.abc import Collection, Iterable, Mapping

    from converge.domain.model import StateRecord, StateSnapshot
    from converge.domain.reconciliation import ApplyResult, Plan, RefreshResult, ResourceChange

REDACTED = "(sensitive)"
UNKNOWN_VALUE = "(known after apply)"

_SYMBOLS = {
    Action.CREATE: "+",
    Action.UPDATE: "~",
    Action.REPLACE: "-/+",
    Action.DELETE: "-",
    Action.FORGET: "x",
    Action.READ: "<=",
    Action.NOOP: " ",
}

_FAILED_OUTCOMES = frozenset({Outcome.FAILED, Outcome.SKIPPED, Outcome.CANCELLED})


def format_value(value: object, *, sensitive: bool = False) -> str:
    if sensitive:
        return REDACTED
    if value is UNKNOWN:
        return UNKNOWN_VALUE
    return json.dumps(_displayable(value), sort_keys=True, default=str)


def _displayable(value: object) -> object:
    if isinstance(value, dict):
        return {str(key): _displayable(item) for key, item in value.items()}  # pyright: ignore[reportUnknownVariableType]
    if isinstance(value, list | tuple):
        return [_displayable(item) for item in value]  # pyright: ignore[reportUnknownVariableType]
    if not is_known(value):
        return UNKNOWN_VALUE
    return value


def render_plan(plan: Plan) -> list[str]:
    lines: list[str] = []
    for change in plan.actionable:
        lines.extend(_render_change(change))
    lines.append(plan.summary())
    return lines


def _render_change(change: ResourceChange) -> list[str]:
    action = change.action
    header = f"{_SYMBOLS[action]} {change.address} ({action})"
    if action is Action.NOOP:
        if change.deposed:
            header = f"- {change.address} (delete deposed)"
        else:
            header = f"  {change.address} (record metadata)"
    lines = [header]
    if action in (Action.CREATE, Action.READ):
        lines.extend(_attribute_lines(change.after, change.sensitive))
    elif action in (Action.UPDATE, Action.REPLACE):
        for attribute in change.attribute_changes:
            hidden = attribute.name in change.sensitive
            before = format_value(attribute.before, sensitive=hidden)
            after = format_value(attribute.after, sensitive=hidden)
            suffix = "  # forces replacement" if attribute.requires_replace else ""
            lines.append(f"    {attribute.name}: {before} -> {after}{suffix}")
    lines.extend(f"    - deposed object {provider_id}" for provider_id in change.deposed)
    return lines


def _attribute_lines(values: Mapping[str, object], sensitive: Collection[str]) -> list[str]:
    return [
        f"    {name}: {format_value(value, sensitive=name in sensitive)}"
        for name, value in sorted(values.items())
    ]


def render_apply(result: ApplyResult) -> list[str]:
    lines: list[str] = []
    for change in result.results:
        if change.outcome is Outcome.UNCHANGED:
            continue
        line = f"{change.address}: {change.outcome}"
        if change.attempts > 1:
            line += f" after {change.attempts} attempts"
        if change.error and change.outcome in _FAILED_OUTCOMES:
            line += f" ({change.error})"
        lines.append(line)
    lines.append(result.summary())
    if result.outputs:
        lines.append("Outputs:")
        lines.extend(_attribute_lines(result.outputs, result.sensitive_outputs))
    return lines


def render_refresh(result: RefreshResult) -> list[str]:
    if not result.has_drift:
        return ["No drift detected."]
    lines: list[str] = []
    for drifted in result.drifted:
        if drifted.vanished:
            lines.append(f"{drifted.address}: no longer exists")
        else:
            lines.append(f"{drifted.address}: changed {', '.join(drifted.changed)}")
    if result.adopted:
        lines.append("Drift adopted into state.")
    return lines


def render_state_list(snapshot: StateSnapshot) -> list[str]:
    return [f"{record.address}\t{record.provider_id or '-'}" for record in snapshot]


def render_record(record: StateRecord) -> list[str]:
    lines = [
        f"address:         {record.address}",
        f"provider id:     {record.provider_id or '-'}",
        f"updated at:      {record.updated_at.isoformat()}",
        f"prevent destroy: {str(record.prevent_destroy).lower()}",
        f"depends on:      {', '.join(record.dependencies) or '-'}",
        f"deposed:         {', '.join(record.deposed_ids) or '-'}",
        "attributes:",
    ]
    lines.extend(_attribute_lines(record.attributes, record.sensitive_attributes))
    return lines


def join(lines: Iterable[str]) -> str:
    return "\n".join(lines)
