"""Load declaration documents from YAML or JSON files."""

from __future__ import annotations

import json
from logging import getLogger
from pathlib import Path

import yaml
from pydantic import ValidationError

from converge.domain.errors import ParseError
from converge.domain.model import Document

from .schema import DocumentPayload
from .translator import translate_payload

log = getLogger(__name__)

DOCUMENT_SUFFIXES = frozenset({".yaml", ".yml", ".json"})


def load_document(path: str | Path) -> Document:
    """Load a document file, or every document file of a directory in name order."""

    root = Path(path)
    if root.is_dir():
        files = sorted(
            candidate
            for candidate in root.iterdir()
            if candidate.is_file() and candidate.suffix in DOCUMENT_SUFFIXES
        )
        if not files:
            raise ParseError(f"No *.yaml, *.yml or *.json files in {root}")
        base_dir = root
    elif root.is_file():
        files = [root]
        base_dir = root.parent
    else:
        raise ParseError(f"{root} does not exist")

    document = Document(base_dir=base_dir.resolve())
    index = 0
    for file in files:
        index = _load_file(file, document=document, start_index=index)
    log.info(
        "Loaded %s resources and %s data nodes from %s",
        len(document.resources),
        len(document.data),
        root,
    )
    return document


def _load_file(file: Path, *, document: Document, start_index: int) -> int:
    source = str(file)
    raw = _read(file)
    if raw is None:
        log.warning("%s is empty", file)
        return start_index
    try:
        payload = DocumentPayload.model_validate(raw)
        return translate_payload(
            payload, document=document, source=source, start_index=start_index
        )
    except ValidationError as exc:
        raise ParseError(_describe_validation(exc), source=source) from exc


def _read(file: Path) -> object:
    try:
        text = file.read_text(encoding="utf-8")
    except OSError as exc:
        raise ParseError(f"Cannot read file: {exc}", source=str(file)) from exc
    if file.suffix == ".json":
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise ParseError(
                f"Invalid JSON at line {exc.lineno} column {exc.colno}: {exc.msg}",
                source=str(file),
            ) from exc
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        where = f" at line {mark.line + 1} column {mark.column + 1}" if mark else ""
        raise ParseError(f"Invalid YAML{where}: {exc}", source=str(file)) from exc


def _describe_validation(exc: ValidationError) -> str:
    problems = [
        f"{'.'.join(str(part) for part in error['loc']) or '<document>'}: {error['msg']}"
        for error in exc.errors()
    ]
    return "Invalid document: " + "; ".join(problems)
