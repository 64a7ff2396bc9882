from __future__ import annotations

from converge.domain.model import UNKNOWN, Address, StateRecord, StateSnapshot
from converge.domain.reconciliation import (
    Action,
    ApplyResult,
    AttributeChange,
    ChangeResult,
    Outcome,
    Plan,
    ResourceChange,
)
from converge.ui.render import (
    REDACTED,
    UNKNOWN_VALUE,
    format_value,
    render_apply,
    render_plan,
    render_record,
    render_state_list,
)

SERVER = Address.resource("fake_thing", "server")


def test_format_value_redacts_and_marks_unknowns() -> None:
    assert format_value("hunter2", sensitive=True) == REDACTED
    assert format_value(UNKNOWN) == UNKNOWN_VALUE
    assert format_value({"b": [1, UNKNOWN], "a": "x"}) == (
        '{"a": "x", "b": [1, "(known after apply)"]}'
    )


def test_create_lists_attributes_with_sensitive_values_hidden() -> None:
    plan = Plan(
        changes=(
            ResourceChange(
                address=SERVER,
                action=Action.CREATE,
                after={"password": "hunter2", "name": "web", "id": UNKNOWN},
                sensitive=frozenset({"password"}),
            ),
        )
    )

    output = "\n".join(render_plan(plan))

    assert "+ fake_thing.server (create)" in output
    assert '    name: "web"' in output
    assert f"    password: {REDACTED}" in output
    assert f"    id: {UNKNOWN_VALUE}" in output
    assert "hunter2" not in output


def test_replacement_marks_the_forcing_attribute() -> None:
    plan = Plan(
        changes=(
            ResourceChange(
                address=SERVER,
                action=Action.REPLACE,
                attribute_changes=(
                    AttributeChange(name="zone", before="eu", after="us", requires_replace=True),
                    AttributeChange(name="token", before="old", after="new"),
                ),
                sensitive=frozenset({"token"}),
            ),
        )
    )

    lines = render_plan(plan)

    assert lines[0] == "-/+ fake_thing.server (replace)"
    assert '    zone: "eu" -> "us"  # forces replacement' in lines
    assert f"    token: {REDACTED} -> {REDACTED}" in lines


def test_noop_changes_are_not_listed() -> None:
    plan = Plan(changes=(ResourceChange(address=SERVER, action=Action.NOOP),))

    assert render_plan(plan) == ["No changes. Infrastructure matches the declaration."]


def test_apply_lists_failures_and_redacts_outputs() -> None:
    result = ApplyResult(
        results=(
            ChangeResult(address=SERVER, action=Action.CREATE, outcome=Outcome.FAILED,
                         error="quota exceeded", attempts=3),
            ChangeResult(
                address=Address.resource("fake_thing", "db"),
                action=Action.NOOP,
                outcome=Outcome.UNCHANGED,
            ),
        ),
        outputs={"endpoint": "https://db", "password": "hunter2"},
        sensitive_outputs=frozenset({"password"}),
    )

    lines = render_apply(result)

    assert lines[0] == "fake_thing.server: failed after 3 attempts (quota exceeded)"
    assert not any(line.startswith("fake_thing.db") for line in lines)
    assert "Outputs:" in lines
    assert f"    password: {REDACTED}" in lines
    assert '    endpoint: "https://db"' in lines


def test_state_views_hide_sensitive_attributes() -> None:
    record = StateRecord(
        workspace="test",
        address="fake_thing.server",
        resource_type="fake_thing",
        provider_id="server-1",
        attributes={"id": "server-1", "secret": "hunter2"},
        sensitive_attributes=["secret"],
    )

    listing = render_state_list(StateSnapshot([record]))
    details = "\n".join(render_record(record))

    assert listing == ["fake_thing.server\tserver-1"]
    assert f"    secret: {REDACTED}" in details
    assert "hunter2" not in details


def test_deposed_objects_are_listed_for_deletion() -> None:
    plan = Plan(
        changes=(ResourceChange(address=SERVER, action=Action.NOOP, deposed=("server-1",)),)
    )

    lines = render_plan(plan)

    assert lines[0] == "- fake_thing.server (delete deposed)"
    assert lines[1] == "    - deposed object server-1"
    assert lines[-1].endswith(", 1 deposed to delete.")
