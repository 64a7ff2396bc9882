"""Per-attribute mutability policy.

Compares the last-applied configuration with the desired one and decides
whether a resource can be updated in place or must be replaced. Attribute
values are compared whole: an embedded manifest or any other nested blob is a
single opaque value.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from converge.domain.model import is_known

from .contracts import Action, AttributeChange

if TYPE_CHECKING:
    from collections.abc import Mapping

    from converge.domain.model import Lifecycle
    from converge.domain.ports import ResourceSchema

_ABSENT = object()


def apply_ignore_changes(
    desired: Mapping[str, object],
    prior_config: Mapping[str, object],
    lifecycle: Lifecycle,
) -> dict[str, object]:
    """Pin ignored attributes to their last-applied values."""

    pinned = dict(desired)
    for name in lifecycle.ignore_changes:
        if name in prior_config:
            pinned[name] = prior_config[name]
        else:
            pinned.pop(name, None)
    return pinned


def diff_attributes(
    prior_config: Mapping[str, object],
    desired: Mapping[str, object],
    schema: ResourceSchema,
) -> tuple[AttributeChange, ...]:
    changes: list[AttributeChange] = []
    for name in sorted(set(prior_config) | set(desired)):
        before = prior_config.get(name, _ABSENT)
        after = desired.get(name, _ABSENT)
        if is_known(after) and before == after:
            continue
        changes.append(
            AttributeChange(
                name=name,
                before=None if before is _ABSENT else before,
                after=None if after is _ABSENT else after,
                requires_replace=schema.requires_replace(name),
            )
        )
    return tuple(changes)


def creation_changes(desired: Mapping[str, object]) -> tuple[AttributeChange, ...]:
    return tuple(
        AttributeChange(name=name, before=None, after=desired[name]) for name in sorted(desired)
    )


def choose_action(changes: tuple[AttributeChange, ...]) -> Action:
    if not changes:
        return Action.NOOP
    if any(change.requires_replace for change in changes):
        return Action.REPLACE
    return Action.UPDATE
