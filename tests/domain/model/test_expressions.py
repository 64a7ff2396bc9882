from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from converge.domain.errors import ExpressionError, ParseError
from converge.domain.model import (
    UNKNOWN,
    Address,
    Call,
    Literal,
    ResourceReference,
    Template,
    VariableReference,
    compile_value,
    evaluate,
    is_known,
    iter_references,
    parse_template,
    traverse,
)


@dataclass
class DictScope:
    base_dir: Path = field(default_factory=Path.cwd)
    values: dict[Address, object] = field(default_factory=dict[Address, object])
    variables: dict[str, object] = field(default_factory=dict[str, object])

    def resolve(self, reference: ResourceReference) -> object:
        if reference.address not in self.values:
            return UNKNOWN
        return traverse(self.values[reference.address], reference.path, describe=str(reference))

    def variable(self, name: str) -> object:
        return self.variables[name]


def test_plain_string_is_a_literal() -> None:
    assert parse_template("hello") == Literal("hello")


def test_single_interpolation_keeps_expression_type() -> None:
    expression = parse_template("${var.port}")

    assert expression == VariableReference("port")
    assert evaluate(expression, DictScope(variables={"port": 8080})) == 8080


def test_mixed_text_renders_as_string() -> None:
    expression = parse_template("http://${var.host}:${var.port}/")

    assert isinstance(expression, Template)
    assert evaluate(expression, DictScope(variables={"host": "db", "port": 5432})) == (
        "http://db:5432/"
    )


def test_escaped_interpolation_stays_literal() -> None:
    assert parse_template("$${not.a.reference}") == Literal("${not.a.reference}")


def test_resource_reference_with_traversal() -> None:
    expression = parse_template('${http_object.api.body["items"][1].name}')

    assert expression == ResourceReference(
        Address.resource("http_object", "api"), ("body", "items", 1, "name")
    )
    scope = DictScope(
        values={
            Address.resource("http_object", "api"): {
                "body": {"items": [{"name": "first"}, {"name": "second"}]}
            }
        }
    )
    assert evaluate(expression, scope) == "second"


def test_data_reference_parses_to_data_address() -> None:
    expression = parse_template("${data.env_variable.token.value}")

    assert expression == ResourceReference(Address.data("env_variable", "token"), ("value",))


def test_function_calls_nest() -> None:
    expression = parse_template('${upper(format("%s-%s", var.env, "api"))}')

    assert isinstance(expression, Call)
    assert evaluate(expression, DictScope(variables={"env": "prod"})) == "PROD-API"


def test_file_function_reads_relative_to_base_dir(tmp_path: Path) -> None:
    (tmp_path / "motd.txt").write_text("welcome", encoding="utf-8")

    value = evaluate(parse_template('${file("motd.txt")}'), DictScope(base_dir=tmp_path))

    assert value == "welcome"


def test_unknown_function_is_a_parse_error() -> None:
    with pytest.raises(ParseError, match="Unknown function 'nope'"):
        parse_template("${nope(1)}")


def test_unterminated_interpolation_is_rejected() -> None:
    with pytest.raises(ExpressionError, match="Unterminated"):
        parse_template("${var.name")


def test_bare_identifier_is_not_a_reference() -> None:
    with pytest.raises(ExpressionError, match="Bare identifier"):
        parse_template("${oops}")


def test_unknown_input_propagates_through_templates_and_calls() -> None:
    scope = DictScope()

    assert evaluate(parse_template("id-${fake_thing.a.id}"), scope) is UNKNOWN
    assert evaluate(parse_template("${sha256(fake_thing.a.id)}"), scope) is UNKNOWN


def test_is_known_checks_nested_values() -> None:
    assert is_known({"a": [1, {"b": 2}]})
    assert not is_known({"a": [1, {"b": UNKNOWN}]})


def test_compile_value_walks_nested_structures() -> None:
    expression = compile_value({"labels": ["${var.team}", "static"], "replicas": 3})

    references = list(iter_references(expression))

    assert references == [VariableReference("team")]
    assert evaluate(expression, DictScope(variables={"team": "infra"})) == {
        "labels": ["infra", "static"],
        "replicas": 3,
    }


def test_traverse_reports_missing_attribute() -> None:
    with pytest.raises(ExpressionError, match="no attribute 'missing'"):
        traverse({"present": 1}, ("missing",), describe="fake_thing.a")


@pytest.mark.parametrize(
    "text",
    [
        '${jsonencode({"a": 1})}',
        "${jsondecode(var.raw).a}",
    ],
)
def test_unsupported_syntax_is_rejected(text: str) -> None:
    with pytest.raises(ExpressionError):
        parse_template(text)


def test_digest_functions_hash_the_utf8_text() -> None:
    scope = DictScope(variables={"body": "converge"})

    assert evaluate(parse_template("${sha256(var.body)}"), scope) == hashlib.sha256(
        b"converge"
    ).hexdigest()
    assert evaluate(parse_template("${md5(var.body)}"), scope) == hashlib.md5(
        b"converge", usedforsecurity=False
    ).hexdigest()


def test_yamldecode_exposes_manifest_fields() -> None:
    manifest = "kind: Deployment\nspec:\n  replicas: 2\n"
    scope = DictScope(variables={"manifest": manifest})

    assert evaluate(parse_template("${yamldecode(var.manifest)}"), scope) == {
        "kind": "Deployment",
        "spec": {"replicas": 2},
    }


def test_failing_function_raises_expression_error() -> None:
    with pytest.raises(ExpressionError, match="base64decode"):
        evaluate(parse_template('${base64decode("***")}'), DictScope())
