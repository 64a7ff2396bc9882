"""Built-in functions callable from attribute expressions."""

from __future__ import annotations

import base64
import hashlib
import json
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml


@dataclass(frozen=True, slots=True)
class FunctionContext:
    base_dir: Path


type ExpressionFunction = Callable[..., Any]


def _text(value: object) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True)


def _file(context: FunctionContext, path: str) -> str:
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = context.base_dir / candidate
    return candidate.read_text(encoding="utf-8")


def _sha256(_context: FunctionContext, value: object) -> str:
    return hashlib.sha256(_text(value).encode("utf-8")).hexdigest()


def _md5(_context: FunctionContext, value: object) -> str:
    return hashlib.md5(_text(value).encode("utf-8"), usedforsecurity=False).hexdigest()


def _base64encode(_context: FunctionContext, value: object) -> str:
    return base64.b64encode(_text(value).encode("utf-8")).decode("ascii")


def _base64decode(_context: FunctionContext, value: str) -> str:
    return base64.b64decode(value, validate=True).decode("utf-8")


def _jsonencode(_context: FunctionContext, value: object) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def _jsondecode(_context: FunctionContext, value: str) -> object:
    return json.loads(value)


def _yamlencode(_context: FunctionContext, value: object) -> str:
    return yaml.safe_dump(value, sort_keys=True)


def _yamldecode(_context: FunctionContext, value: str) -> object:
    try:
        return yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise ValueError(f"invalid YAML: {exc}") from exc


def _format(_context: FunctionContext, template: str, *args: object) -> str:
    return template % args


def _lower(_context: FunctionContext, value: str) -> str:
    return value.lower()


def _upper(_context: FunctionContext, value: str) -> str:
    return value.upper()


def _join(_context: FunctionContext, separator: str, items: list[object]) -> str:
    return separator.join(_text(item) for item in items)


FUNCTIONS: dict[str, ExpressionFunction] = {
    "base64decode": _base64decode,
    "base64encode": _base64encode,
    "file": _file,
    "format": _format,
    "join": _join,
    "jsondecode": _jsondecode,
    "jsonencode": _jsonencode,
    "lower": _lower,
    "md5": _md5,
    "sha256": _sha256,
    "upper": _upper,
    "yamldecode": _yamldecode,
    "yamlencode": _yamlencode,
}
