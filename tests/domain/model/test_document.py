from __future__ import annotations

from pathlib import Path

import pytest

from converge.domain.errors import ParseError
from converge.domain.model import Address, Document, Literal, ResourceNode, Variable


def _document() -> Document:
    document = Document(base_dir=Path.cwd())
    document.variables["region"] = Variable(name="region", default="eu", has_default=True)
    document.variables["token"] = Variable(name="token", sensitive=True)
    return document


def test_bind_variables_prefers_given_values_over_defaults() -> None:
    bound = _document().bind_variables({"region": "us", "token": "t0k"})

    assert bound == {"region": "us", "token": "t0k"}


def test_bind_variables_requires_a_value_without_default() -> None:
    with pytest.raises(ParseError, match="No value for variables: token"):
        _document().bind_variables({})


def test_bind_variables_rejects_undeclared_names() -> None:
    with pytest.raises(ParseError, match="undeclared variables: zone"):
        _document().bind_variables({"token": "x", "zone": "b"})


def test_sensitive_variables_are_listed() -> None:
    assert _document().sensitive_variables == frozenset({"token"})


def test_duplicate_declaration_is_rejected() -> None:
    document = _document()
    node = ResourceNode(
        address=Address.resource("local_file", "a"), attributes={"path": Literal("a.txt")}
    )
    document.add(node)

    with pytest.raises(ParseError, match="Duplicate declaration of local_file.a"):
        document.add(node)


def test_nodes_follow_declaration_order() -> None:
    document = _document()
    second = ResourceNode(address=Address.resource("local_file", "b"), attributes={}, index=1)
    first = ResourceNode(address=Address.resource("local_file", "z"), attributes={}, index=0)
    document.add(second)
    document.add(first)

    assert [node.address.name for node in document.nodes()] == ["z", "b"]
