from __future__ import annotations

import json

import pytest

import wbsuite.cli as cli


def _run(root, *args: str) -> int:
    return cli.main(["--root", str(root), "--character", "alice", "--chat", "c1", *args])


def _book(root, name: str) -> dict:
    return json.loads((root / f"{name}.json").read_text(encoding="utf-8"))


def test_no_arguments_prints_help(capsys) -> None:
    assert cli.main([]) == 0
    assert "usage" in capsys.readouterr().out.lower()


def test_create_add_set_and_show(tmp_path, capsys) -> None:
    assert _run(tmp_path, "create", "Lore") == 0
    assert _run(tmp_path, "add", "Lore", "--comment", "Castle", "--key", "moat") == 0
    assert _run(tmp_path, "add", "Lore", "--comment", "Dragon") == 0
    assert _run(tmp_path, "set", "Lore", "--uid", "0", "order=5", "comment=42") == 0
    assert _run(tmp_path, "toggle", "Lore", "1", "disable") == 0
    capsys.readouterr()

    assert _run(tmp_path, "show", "Lore", "--search", "dragon") == 0
    output = capsys.readouterr().out

    assert "Dragon" in output
    assert "off" in output
    entries = _book(tmp_path, "Lore")["entries"]
    assert entries["0"]["comment"] == "42"
    assert entries["0"]["order"] == 5
    assert entries["0"]["key"] == ["moat"]
    assert entries["1"]["disable"] is True


def test_books_lists_counts_and_bindings(tmp_path, capsys) -> None:
    _run(tmp_path, "create", "Lore")
    _run(tmp_path, "add", "Lore", "--comment", "x")
    _run(tmp_path, "bind", "global", "Lore")
    capsys.readouterr()

    assert _run(tmp_path, "books") == 0
    output = capsys.readouterr().out

    assert "Lore" in output
    assert "global" in output


def test_rename_reports_success(tmp_path, capsys) -> None:
    _run(tmp_path, "create", "Old")
    _run(tmp_path, "bind", "primary", "Old")
    capsys.readouterr()

    assert _run(tmp_path, "rename", "Old", "New") == 0
    assert "Renamed Old -> New" in capsys.readouterr().out
    settings = json.loads((tmp_path / ".wbsuite-settings.json").read_text(encoding="utf-8"))
    assert settings["characters"]["alice"]["world"] == "New"


def test_stitch_copies_entries(tmp_path, capsys) -> None:
    _run(tmp_path, "create", "A")
    _run(tmp_path, "create", "B")
    _run(tmp_path, "add", "A", "--comment", "shared")
    capsys.readouterr()

    assert _run(tmp_path, "stitch", "A", "B", "--uid", "0") == 0

    assert "Copied A#0 -> B#0" in capsys.readouterr().out
    assert _book(tmp_path, "B")["entries"]["0"]["comment"] == "shared"
    assert "0" in _book(tmp_path, "A")["entries"]


def test_snapshot_round_trip(tmp_path, capsys) -> None:
    _run(tmp_path, "create", "Lore")
    _run(tmp_path, "add", "Lore", "--comment", "x")
    _run(tmp_path, "snapshot", "save", "Lore", "on")
    _run(tmp_path, "toggle", "Lore", "0", "disable")
    _run(tmp_path, "snapshot", "apply", "Lore", "on")
    capsys.readouterr()

    assert _run(tmp_path, "snapshot", "list", "Lore") == 0
    assert capsys.readouterr().out.strip() == "on"
    assert _book(tmp_path, "Lore")["entries"]["0"]["disable"] is False


def test_export_and_import(tmp_path, capsys) -> None:
    _run(tmp_path, "create", "Lore")
    _run(tmp_path, "add", "Lore", "--comment", "x")
    target = tmp_path / "out" / "lore-export.json"
    target.parent.mkdir()

    assert _run(tmp_path, "export", "Lore", "-o", str(target)) == 0
    assert _run(tmp_path, "import", str(target), "--name", "Copy") == 0

    assert _book(tmp_path, "Copy")["entries"]["0"]["comment"] == "x"
    assert "Imported 1 entries into Copy" in capsys.readouterr().out


def test_domain_errors_exit_with_message(tmp_path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        _run(tmp_path, "show", "Missing")
    assert str(excinfo.value) == "Book not found: Missing"

    with pytest.raises(SystemExit) as bad_field:
        _run(tmp_path, "create", "Lore")
        _run(tmp_path, "add", "Lore")
        _run(tmp_path, "set", "Lore", "--uid", "0", "colour=red")
    assert "cannot be edited" in str(bad_field.value)


def test_missing_root_exits(tmp_path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--root", str(tmp_path / "nowhere"), "books"])
    assert "Worldbook root not found" in str(excinfo.value)
