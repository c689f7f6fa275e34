"""
CLI tests.

The end-to-end tests run real commands against a store under tmp_path and read
the printed rows back.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from notekeeper.cli import build_parser, main


def _run(tmp_path: Path, capsys: pytest.CaptureFixture[str], *args: str) -> tuple[int, str]:
    code = main(["--data-root", str(tmp_path), *args])
    return code, capsys.readouterr().out


def test_help_exits_cleanly(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        build_parser().parse_args(["--help"])
    assert exc.value.code == 0
    assert "notekeeper" in capsys.readouterr().out


@pytest.mark.parametrize("subcommand", ["notebooks", "add-note", "edit-note", "delete-note"])
def test_subcommand_help(subcommand: str, capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        main([subcommand, "--help"])
    assert exc.value.code == 0
    out = capsys.readouterr().out.lower()
    assert "usage:" in out
    assert subcommand in out


def test_command_is_required() -> None:
    with pytest.raises(SystemExit) as exc:
        build_parser().parse_args([])
    assert exc.value.code == 2


def test_notebook_and_note_lifecycle(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(tmp_path, capsys, "add-notebook", "Groceries")[0] == 0
    code, out = _run(tmp_path, capsys, "notebooks")
    assert code == 0
    assert "Groceries" in out
    assert out.startswith("  0  ")

    for text in ("t1", "t2", "t3"):
        assert _run(tmp_path, capsys, "add-note", "Groceries", "--text", text)[0] == 0
    code, out = _run(tmp_path, capsys, "notes", "Groceries")
    assert [line.split()[-1] for line in out.splitlines()] == ["t3", "t2", "t1"]

    assert _run(tmp_path, capsys, "edit-note", "Groceries", "1", "--text", "t2 edited")[0] == 0
    assert _run(tmp_path, capsys, "delete-note", "Groceries", "0")[0] == 0
    code, out = _run(tmp_path, capsys, "notes", "Groceries")
    assert out.splitlines() == ["  0  t2 edited", "  1  t1"]

    assert _run(tmp_path, capsys, "delete-notebook", "Groceries")[0] == 0
    assert _run(tmp_path, capsys, "notebooks")[1] == ""
    assert (tmp_path / "stores" / "notekeeper.sqlite").is_file()


def test_default_note_text(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _run(tmp_path, capsys, "--store", "other", "add-notebook", "Inbox")
    _run(tmp_path, capsys, "--store", "other", "add-note", "Inbox")
    code, out = _run(tmp_path, capsys, "--store", "other", "notes", "Inbox")
    assert out.strip() == "0  New Note"


def test_unknown_notebook_is_a_domain_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code, out = _run(tmp_path, capsys, "notes", "Missing")
    assert code == 2
    assert out.startswith("ERROR: ")


def test_row_out_of_range_is_reported(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _run(tmp_path, capsys, "add-notebook", "Inbox")
    code, out = _run(tmp_path, capsys, "delete-note", "Inbox", "4")
    assert code == 2
    assert out.startswith("ERROR: ")


def test_unsafe_store_name_is_rejected(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code, out = _run(tmp_path, capsys, "--store", "../escape", "notebooks")
    assert code == 2
    assert "ERROR:" in out
