from __future__ import annotations

from pathlib import Path

import pytest

from notebook_engine.paths import (
    DATA_ROOT_ENV,
    SafetyViolationError,
    default_data_root,
    resolve_store_paths,
    store_db_path,
    validate_store_name,
)


@pytest.mark.parametrize("name", ["", "   ", ".", "..", "a/b", r"a\b", "c:", "what?"])
def test_unsafe_store_names_are_rejected(name: str) -> None:
    with pytest.raises(SafetyViolationError):
        validate_store_name(name)


def test_store_name_is_stripped() -> None:
    assert validate_store_name("  groceries ") == "groceries"


def test_store_paths_live_under_stores_directory(tmp_path: Path) -> None:
    paths = resolve_store_paths("work", tmp_path)

    assert paths.data_root == tmp_path.resolve()
    assert paths.stores_root == tmp_path.resolve() / "stores"
    assert paths.db_path == tmp_path.resolve() / "stores" / "work.sqlite"
    assert paths.settings_path == tmp_path.resolve() / "settings.json"
    assert not paths.stores_root.exists()


def test_store_db_path_matches_resolved_paths(tmp_path: Path) -> None:
    assert store_db_path("x", tmp_path) == resolve_store_paths("x", tmp_path).db_path


def test_default_data_root_prefers_explicit_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv(DATA_ROOT_ENV, str(tmp_path / "explicit"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))

    assert default_data_root() == tmp_path / "explicit"


def test_default_data_root_falls_back_to_xdg(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for var in (DATA_ROOT_ENV, "LOCALAPPDATA", "APPDATA"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))

    assert default_data_root() == tmp_path / "xdg" / "notekeeper"


def test_default_data_root_falls_back_to_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for var in (DATA_ROOT_ENV, "LOCALAPPDATA", "APPDATA", "XDG_DATA_HOME"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))

    assert default_data_root() == tmp_path / ".local" / "share" / "notekeeper"
