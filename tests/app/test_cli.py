from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from converge.adapters.sqlalchemy.unit_of_work import shutdown, startup
from converge.ui.cli import main

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

MOTD = """
variables:
  greeting:
    sensitive: true
providers:
  local:
    root: out
resources:
  local_file:
    motd:
      path: motd.txt
      content: "${var.greeting}"
outputs:
  greeting:
    value: "${var.greeting}"
    sensitive: true
  digest:
    value: "${local_file.motd.sha256}"
"""

BLOCKED = """
resources:
  local_file:
    blocker:
      path: blocker
      content: ""
    nested:
      path: blocker/sub
      content: ""
      depends_on: [local_file.blocker]
"""


@pytest.fixture(autouse=True)
def state_database(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    monkeypatch.setenv("CONVERGE_MAX_ATTEMPTS", "1")
    monkeypatch.setenv("CONVERGE_LOCK_TIMEOUT", "0")
    monkeypatch.delenv("CONVERGE_WORKSPACE", raising=False)
    shutdown()
    startup(database_uri=f"sqlite+pysqlite:///{tmp_path / 'state.db'}", force=True)
    try:
        yield
    finally:
        shutdown()


def _write(directory: Path, text: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "main.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def _exit_code(argv: list[str]) -> int | str | None:
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


def test_apply_then_plan_reports_no_changes(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    path = _write(tmp_path / "stack", MOTD)
    common = ["--var", "greeting=xyzzy-secret", "--workspace", "cli"]

    main(["apply", str(path), *common])
    applied = capsys.readouterr().out

    assert (tmp_path / "stack" / "out" / "motd.txt").read_text(encoding="utf-8") == "xyzzy-secret"
    assert "+ local_file.motd (create)" in applied
    assert "local_file.motd: created" in applied
    assert "    greeting: (sensitive)" in applied
    assert "xyzzy-secret" not in applied

    main(["plan", str(path), *common])

    assert "No changes." in capsys.readouterr().out


def test_state_commands_list_and_show_records(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    path = _write(tmp_path / "stack", MOTD)
    main(["apply", str(path), "--var", "greeting=xyzzy-secret"])
    capsys.readouterr()

    main(["state", "list"])
    listing = capsys.readouterr().out
    main(["state", "show", "local_file.motd"])
    details = capsys.readouterr().out

    target = (tmp_path / "stack" / "out" / "motd.txt").resolve()
    assert listing.strip() == f"local_file.motd\t{target}"
    assert "address:         local_file.motd" in details
    assert "    content: (sensitive)" in details
    assert "xyzzy-secret" not in details


def test_state_show_of_unknown_address_exits_with_failure() -> None:
    assert _exit_code(["state", "show", "local_file.absent"]) == 1


def test_state_rm_forgets_without_deleting(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    path = _write(tmp_path / "stack", MOTD)
    main(["apply", str(path), "--var", "greeting=hi"])
    capsys.readouterr()

    main(["state", "rm", "local_file.motd"])
    main(["state", "list"])

    assert capsys.readouterr().out.strip() == ""
    assert (tmp_path / "stack" / "out" / "motd.txt").exists()
    assert _exit_code(["state", "rm", "local_file.motd"]) == 1


def test_graph_prints_dot(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = _write(tmp_path / "stack", BLOCKED)

    main(["graph", str(path)])

    output = capsys.readouterr().out
    assert output.startswith("digraph converge {")
    assert '"local_file.blocker" -> "local_file.nested" [style=dashed];' in output


@pytest.mark.parametrize(
    "extra",
    [["--var", "greeting"], ["--var", "=value"]],
)
def test_invalid_variable_flag_exits_with_usage_error(tmp_path: Path, extra: list[str]) -> None:
    path = _write(tmp_path / "stack", MOTD)

    assert _exit_code(["plan", str(path), *extra]) == 2


def test_missing_declaration_exits_with_usage_error(tmp_path: Path) -> None:
    assert _exit_code(["plan", str(tmp_path / "absent.yaml")]) == 2


def test_failed_apply_exits_with_failure(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    path = _write(tmp_path / "blocked", BLOCKED)

    assert _exit_code(["apply", str(path), "--workspace", "blocked"]) == 1

    output = capsys.readouterr().out
    assert "local_file.blocker: created" in output
    assert "local_file.nested: failed" in output


def test_non_string_content_does_not_read_back_as_drift(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    path = _write(
        tmp_path / "numbers",
        "resources:\n  local_file:\n    answer:\n      path: answer.txt\n      content: 42\n",
    )

    main(["apply", str(path), "--workspace", "numbers"])
    capsys.readouterr()
    main(["plan", str(path), "--workspace", "numbers"])

    assert (tmp_path / "numbers" / "answer.txt").read_text(encoding="utf-8") == "42"
    assert "No changes." in capsys.readouterr().out
