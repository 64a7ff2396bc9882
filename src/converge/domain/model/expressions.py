"""Attribute expressions embedded in declaration documents.

Every attribute value is compiled into an ``Expression`` tree at load time:

- plain scalars become ``Literal``
- mappings and lists become ``MapExpression`` / ``ListExpression``
- strings containing ``${ ... }`` become ``Template`` (or the bare inner
  expression when the string is exactly one interpolation, which keeps its type)

Inside an interpolation the grammar is small: numbers, quoted strings,
``true``/``false``/``null``, references with ``.key`` / ``[index]`` traversal and
function calls. ``$${`` escapes a literal ``${``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar, Protocol

from converge.domain.errors import ExpressionError

from .address import Address
from .functions import FUNCTIONS, FunctionContext

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping
    from pathlib import Path


class Unknown:
    """Placeholder for a value that is only known after apply."""

    _instance: ClassVar[Unknown | None] = None

    def __new__(cls) -> Unknown:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "(known after apply)"


UNKNOWN = Unknown()


def is_known(value: object) -> bool:
    """Return whether ``value`` contains no ``UNKNOWN`` placeholder at any depth."""

    if value is UNKNOWN:
        return False
    if isinstance(value, dict):
        return all(is_known(item) for item in value.values())  # pyright: ignore[reportUnknownVariableType]
    if isinstance(value, list):
        return all(is_known(item) for item in value)  # pyright: ignore[reportUnknownVariableType]
    return True


type PathSegment = str | int


@dataclass(frozen=True, slots=True)
class Literal:
    value: object


@dataclass(frozen=True, slots=True)
class MapExpression:
    items: tuple[tuple[str, Expression], ...]


@dataclass(frozen=True, slots=True)
class ListExpression:
    items: tuple[Expression, ...]


@dataclass(frozen=True, slots=True)
class ResourceReference:
    address: Address
    path: tuple[PathSegment, ...] = ()

    def __str__(self) -> str:
        return _render_path(str(self.address), self.path)


@dataclass(frozen=True, slots=True)
class VariableReference:
    name: str
    path: tuple[PathSegment, ...] = ()

    def __str__(self) -> str:
        return _render_path(f"var.{self.name}", self.path)


@dataclass(frozen=True, slots=True)
class Call:
    function: str
    args: tuple[Expression, ...]


@dataclass(frozen=True, slots=True)
class Template:
    parts: tuple[str | Expression, ...]


type Expression = (
    Literal
    | MapExpression
    | ListExpression
    | ResourceReference
    | VariableReference
    | Call
    | Template
)
type Reference = ResourceReference | VariableReference


def _render_path(root: str, path: tuple[PathSegment, ...]) -> str:
    rendered = root
    for segment in path:
        rendered += f"[{segment}]" if isinstance(segment, int) else f".{segment}"
    return rendered


# Compilation -----------------------------------------------------------------


def compile_value(raw: object, *, source: str | None = None) -> Expression:
    """Compile a raw document value (as loaded from YAML/JSON) into an expression."""

    if isinstance(raw, str):
        return parse_template(raw, source=source)
    if isinstance(raw, dict):
        return MapExpression(
            tuple(
                (str(key), compile_value(value, source=source))
                for key, value in raw.items()  # pyright: ignore[reportUnknownVariableType]
            )
        )
    if isinstance(raw, list | tuple):
        return ListExpression(tuple(compile_value(item, source=source) for item in raw))  # pyright: ignore[reportUnknownVariableType]
    if raw is None or isinstance(raw, bool | int | float):
        return Literal(raw)
    raise ExpressionError(f"Unsupported value type {type(raw).__name__}", source=source)


def parse_template(text: str, *, source: str | None = None) -> Expression:
    parts: list[str | Expression] = []
    buffer: list[str] = []
    index = 0
    while index < len(text):
        if text.startswith("$${", index):
            buffer.append("${")
            index += 3
            continue
        if text.startswith("${", index):
            parser = _ExpressionParser(text, index + 2, source=source)
            expression = parser.parse_expression()
            index = parser.expect_close()
            if buffer:
                parts.append("".join(buffer))
                buffer = []
            parts.append(expression)
            continue
        buffer.append(text[index])
        index += 1
    if buffer:
        parts.append("".join(buffer))

    if not parts:
        return Literal("")
    if len(parts) == 1:
        only = parts[0]
        return Literal(only) if isinstance(only, str) else only
    return Template(tuple(parts))


_TOKEN_RE = re.compile(
    r"""
    (?P<number>-?\d+(?:\.\d+)?)
  | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
  | (?P<ident>[A-Za-z_][A-Za-z0-9_-]*)
  | (?P<punct>[().,\[\]}])
    """,
    re.VERBOSE,
)


class _ExpressionParser:
    def __init__(self, text: str, position: int, *, source: str | None) -> None:
        self._text = text
        self._position = position
        self._source = source

    def _error(self, message: str) -> ExpressionError:
        return ExpressionError(
            f"{message} at offset {self._position} in {self._text!r}",
            source=self._source,
        )

    def _skip_whitespace(self) -> None:
        while self._position < len(self._text) and self._text[self._position].isspace():
            self._position += 1

    def _peek(self) -> tuple[str, str] | None:
        self._skip_whitespace()
        match = _TOKEN_RE.match(self._text, self._position)
        if match is None or match.lastgroup is None:
            return None
        return match.lastgroup, match.group()

    def _take(self) -> tuple[str, str]:
        self._skip_whitespace()
        match = _TOKEN_RE.match(self._text, self._position)
        if match is None or match.lastgroup is None:
            if self._position >= len(self._text):
                raise self._error("Unterminated interpolation")
            raise self._error(f"Unexpected character {self._text[self._position]!r}")
        self._position = match.end()
        return match.lastgroup, match.group()

    def _expect(self, punct: str) -> None:
        kind, value = self._take()
        if kind != "punct" or value != punct:
            raise self._error(f"Expected {punct!r} but found {value!r}")

    def expect_close(self) -> int:
        self._expect("}")
        return self._position

    def parse_expression(self) -> Expression:
        kind, value = self._take()
        if kind == "number":
            return Literal(float(value) if "." in value else int(value))
        if kind == "string":
            return Literal(_unquote(value))
        if kind == "ident":
            if value == "true":
                return Literal(True)  # noqa: FBT003
            if value == "false":
                return Literal(False)  # noqa: FBT003
            if value == "null":
                return Literal(None)
            peeked = self._peek()
            if peeked == ("punct", "("):
                return self._parse_call(value)
            return self._parse_reference(value)
        raise self._error(f"Unexpected token {value!r}")

    def _parse_call(self, name: str) -> Call:
        if name not in FUNCTIONS:
            raise self._error(f"Unknown function {name!r}")
        self._expect("(")
        args: list[Expression] = []
        if self._peek() == ("punct", ")"):
            self._take()
            return Call(name, ())
        while True:
            args.append(self.parse_expression())
            kind, value = self._take()
            if kind == "punct" and value == ")":
                return Call(name, tuple(args))
            if kind != "punct" or value != ",":
                raise self._error(f"Expected ',' or ')' but found {value!r}")

    def _parse_reference(self, first: str) -> Reference:
        segments: list[PathSegment] = [first]
        while True:
            peeked = self._peek()
            if peeked == ("punct", "."):
                self._take()
                kind, value = self._take()
                if kind == "ident":
                    segments.append(value)
                elif kind == "number" and "." not in value:
                    segments.append(int(value))
                else:
                    raise self._error(f"Expected attribute name after '.' but found {value!r}")
            elif peeked == ("punct", "["):
                self._take()
                kind, value = self._take()
                if kind == "number" and "." not in value:
                    segments.append(int(value))
                elif kind == "string":
                    segments.append(_unquote(value))
                else:
                    raise self._error(f"Expected index but found {value!r}")
                self._expect("]")
            else:
                break
        return self._reference_from(segments)

    def _reference_from(self, segments: list[PathSegment]) -> Reference:
        head = segments[0]
        if head == "var":
            match segments:
                case ["var", str(name), *rest]:
                    return VariableReference(name, tuple(rest))
                case _:
                    raise self._error("Variable reference needs a name")
        if head == "data":
            match segments:
                case ["data", str(data_type), str(name), *rest]:
                    return ResourceReference(Address.data(data_type, name), tuple(rest))
                case _:
                    raise self._error("Data reference needs a type and a name")
        match segments:
            case [str(resource_type), str(name), *rest]:
                return ResourceReference(Address.resource(resource_type, name), tuple(rest))
            case _:
                raise self._error(f"Bare identifier {head!r} is not a reference")


def _unquote(token: str) -> str:
    body = token[1:-1]
    if token[0] == '"':
        return json.loads(token)
    return body.replace("\\'", "'").replace("\\\\", "\\")


# Inspection ------------------------------------------------------------------


def iter_references(expression: Expression) -> Iterator[Reference]:
    """Yield every reference inside ``expression`` in document order."""

    match expression:
        case ResourceReference() | VariableReference():
            yield expression
        case MapExpression(items=items):
            for _key, item in items:
                yield from iter_references(item)
        case ListExpression(items=items) | Call(args=items):
            for item in items:
                yield from iter_references(item)
        case Template(parts=parts):
            for part in parts:
                if not isinstance(part, str):
                    yield from iter_references(part)
        case Literal():
            return


# Evaluation ------------------------------------------------------------------


class EvaluationScope(Protocol):
    """Supplies reference and variable values while evaluating expressions."""

    @property
    def base_dir(self) -> Path: ...

    def resolve(self, reference: ResourceReference) -> object: ...

    def variable(self, name: str) -> object: ...


def evaluate(expression: Expression, scope: EvaluationScope) -> object:
    """Evaluate ``expression``; returns ``UNKNOWN`` when any input is unknown."""

    match expression:
        case Literal(value=value):
            return value
        case MapExpression(items=items):
            return {key: evaluate(item, scope) for key, item in items}
        case ListExpression(items=items):
            return [evaluate(item, scope) for item in items]
        case ResourceReference():
            return scope.resolve(expression)
        case VariableReference(name=name, path=path):
            return traverse(scope.variable(name), path, describe=str(expression))
        case Call(function=function, args=args):
            values = [evaluate(arg, scope) for arg in args]
            if not all(is_known(value) for value in values):
                return UNKNOWN
            try:
                return FUNCTIONS[function](FunctionContext(base_dir=scope.base_dir), *values)
            except ExpressionError:
                raise
            except (TypeError, ValueError, OSError, LookupError) as exc:
                raise ExpressionError(f"{function}() failed: {exc}") from exc
        case Template(parts=parts):
            rendered: list[str] = []
            for part in parts:
                if isinstance(part, str):
                    rendered.append(part)
                    continue
                value = evaluate(part, scope)
                if not is_known(value):
                    return UNKNOWN
                rendered.append(stringify(value))
            return "".join(rendered)


def evaluate_map(
    expressions: Mapping[str, Expression], scope: EvaluationScope
) -> dict[str, object]:
    return {name: evaluate(expression, scope) for name, expression in expressions.items()}


def traverse(value: object, path: tuple[PathSegment, ...], *, describe: str) -> object:
    """Walk ``path`` into ``value``; raises ``ExpressionError`` for missing keys."""

    current = value
    for segment in path:
        if current is UNKNOWN:
            return UNKNOWN
        if isinstance(current, dict) and isinstance(segment, str):
            if segment not in current:
                raise ExpressionError(f"{describe}: no attribute {segment!r}")
            current = current[segment]  # pyright: ignore[reportUnknownVariableType]
        elif isinstance(current, list) and isinstance(segment, int):
            if not -len(current) <= segment < len(current):  # pyright: ignore[reportUnknownArgumentType]
                raise ExpressionError(f"{describe}: index {segment} out of range")
            current = current[segment]  # pyright: ignore[reportUnknownVariableType]
        else:
            kind = type(current).__name__  # pyright: ignore[reportUnknownArgumentType]
            raise ExpressionError(f"{describe}: cannot index {kind} with {segment!r}")
    return current  # pyright: ignore[reportUnknownVariableType]


def stringify(value: object) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, dict | list):
        return json.dumps(value, sort_keys=True)
    return str(value)
