"""Translate validated document payloads into domain nodes."""

from __future__ import annotations

import re
from logging import getLogger
from typing import TYPE_CHECKING, cast

from converge.domain.errors import ParseError
from converge.domain.model import (
    Address,
    DataNode,
    Lifecycle,
    Output,
    ResourceNode,
    Variable,
    compile_value,
)

from .schema import LifecyclePayload

if TYPE_CHECKING:
    from collections.abc import Mapping

    from converge.domain.model import Document, Expression

    from .schema import DocumentPayload

log = getLogger(__name__)

_TYPE_RE = re.compile(r"^[a-z][a-z0-9]*_[a-z0-9_]+$")
_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")
_RESERVED_TYPES = frozenset({"data", "var"})


def translate_payload(
    payload: DocumentPayload,
    *,
    document: Document,
    source: str,
    start_index: int = 0,
) -> int:
    """Add the declarations of one file to ``document``.

    Returns the next free declaration index so that several files share one
    declaration order.
    """

    for name, variable in payload.variables.items():
        _check_name(name, what="variable", source=source)
        if name in document.variables:
            raise ParseError(f"Duplicate variable {name}", source=source)
        document.variables[name] = Variable(
            name=name,
            default=variable.default if variable else None,
            has_default=variable.has_default if variable else False,
            sensitive=variable.sensitive if variable else False,
            description=variable.description if variable else None,
        )

    for provider, block in payload.providers.items():
        if provider in document.providers:
            raise ParseError(f"Duplicate configuration for provider {provider}", source=source)
        document.providers[provider] = _compile_attributes(
            block, source=f"{source}: provider.{provider}"
        )

    index = start_index
    for resource_type, bodies in payload.resources.items():
        _check_type(resource_type, source=source)
        for name, body in bodies.items():
            _check_name(name, what="resource", source=source)
            address = Address.resource(resource_type, name)
            location = f"{source}: {address}"
            attributes = dict(body)
            depends_on = _depends_on(attributes.pop("depends_on", None), source=location)
            lifecycle = _lifecycle(attributes.pop("lifecycle", None), source=location)
            document.add(
                ResourceNode(
                    address=address,
                    attributes=_compile_attributes(attributes, source=location),
                    depends_on=depends_on,
                    lifecycle=lifecycle,
                    index=index,
                    source=location,
                )
            )
            index += 1

    for data_type, bodies in payload.data.items():
        _check_type(data_type, source=source)
        for name, body in bodies.items():
            _check_name(name, what="data node", source=source)
            address = Address.data(data_type, name)
            location = f"{source}: {address}"
            attributes = dict(body)
            depends_on = _depends_on(attributes.pop("depends_on", None), source=location)
            document.add(
                DataNode(
                    address=address,
                    attributes=_compile_attributes(attributes, source=location),
                    depends_on=depends_on,
                    index=index,
                    source=location,
                )
            )
            index += 1

    for name, output in payload.outputs.items():
        _check_name(name, what="output", source=source)
        if name in document.outputs:
            raise ParseError(f"Duplicate output {name}", source=source)
        document.outputs[name] = Output(
            name=name,
            expression=compile_value(output.value, source=f"{source}: output.{name}"),
            sensitive=output.sensitive,
            description=output.description,
        )

    log.debug("Translated %s declarations from %s", index - start_index, source)
    return index


def _compile_attributes(raw: Mapping[str, object], *, source: str) -> dict[str, Expression]:
    return {name: compile_value(value, source=f"{source}.{name}") for name, value in raw.items()}


def _check_type(resource_type: str, *, source: str) -> None:
    if resource_type in _RESERVED_TYPES or not _TYPE_RE.match(resource_type):
        raise ParseError(
            f"Invalid type {resource_type!r}: expected '<provider>_<kind>' in lowercase",
            source=source,
        )


def _check_name(name: str, *, what: str, source: str) -> None:
    if not _NAME_RE.match(name):
        raise ParseError(f"Invalid {what} name {name!r}", source=source)


def _depends_on(raw: object, *, source: str) -> tuple[Address, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ParseError("depends_on must be a list of addresses", source=source)
    addresses: list[Address] = []
    for item in cast("list[object]", raw):
        if not isinstance(item, str):
            raise ParseError(f"depends_on entry {item!r} is not an address", source=source)
        try:
            addresses.append(Address.parse(item))
        except ValueError as exc:
            raise ParseError(str(exc), source=source) from exc
    return tuple(addresses)


def _lifecycle(raw: object, *, source: str) -> Lifecycle:
    if raw is None:
        return Lifecycle()
    if not isinstance(raw, dict):
        raise ParseError("lifecycle must be a mapping", source=source)
    payload = LifecyclePayload.model_validate(raw)
    return Lifecycle(
        prevent_destroy=payload.prevent_destroy,
        create_before_destroy=payload.create_before_destroy,
        ignore_changes=frozenset(payload.ignore_changes),
    )
