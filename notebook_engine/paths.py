"""
Filesystem path policy for notebook stores.

This module is the single choke point for deciding where store files live:

- Runtime data lives under a notekeeper "data root".
- Each named store is one SQLite file under ``<data root>/stores``.
- Store names are simple file stems; anything that could escape the stores
  directory is rejected.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from notebook_engine.errors import NotebookEngineError

DATA_ROOT_ENV = "NOTEKEEPER_DATA_ROOT"
APP_DIR_NAME = "notekeeper"


class SafetyViolationError(NotebookEngineError):
    """Raised when a store name or path is blocked by the path policy."""


@dataclass(frozen=True, slots=True)
class StorePaths:
    """
    Concrete resolved paths for a named store.

    Attributes
    ----------
    data_root:
        Root directory for all notekeeper runtime data.
    stores_root:
        Directory holding one SQLite file per store.
    db_path:
        SQLite database file of this store.
    settings_path:
        JSON settings file shared by all stores under the data root.
    """

    data_root: Path
    stores_root: Path
    db_path: Path
    settings_path: Path


def default_data_root() -> Path:
    """
    Resolve the default data root.

    Preference order:
    1) ``$NOTEKEEPER_DATA_ROOT`` (used as-is)
    2) ``%LOCALAPPDATA%`` then ``%APPDATA%`` (Windows)
    3) ``$XDG_DATA_HOME``
    4) ``~/.local/share``
    """
    explicit = os.environ.get(DATA_ROOT_ENV)
    if explicit:
        return Path(explicit).expanduser()

    for var in ("LOCALAPPDATA", "APPDATA", "XDG_DATA_HOME"):
        value = os.environ.get(var)
        if value:
            return Path(value) / APP_DIR_NAME

    return Path.home() / ".local" / "share" / APP_DIR_NAME


def validate_store_name(store_name: str) -> str:
    """
    Return the stripped store name, or raise if it is unsafe.

    Raises
    ------
    SafetyViolationError
        If the name is empty, is '.' or '..', or contains path or drive characters.
    """
    name = store_name.strip()
    if not name:
        raise SafetyViolationError("Store name must not be empty.")
    if any(ch in name for ch in r'\/:*?"<>|'):
        raise SafetyViolationError(f"Store name contains invalid characters: {name!r}")
    if name in {".", ".."}:
        raise SafetyViolationError("Store name must not be '.' or '..'.")
    return name


def resolve_store_paths(store_name: str, data_root: Path | None = None) -> StorePaths:
    """
    Resolve all filesystem paths for a named store.

    Parameters
    ----------
    store_name:
        Name of the store. Must be a simple file stem.
    data_root:
        Optional override for the data root.

    Returns
    -------
    StorePaths
        Resolved paths. Nothing is created on disk.
    """
    name = validate_store_name(store_name)
    root = (data_root or default_data_root()).expanduser().resolve()
    stores_root = (root / "stores").resolve()
    db_path = (stores_root / f"{name}.sqlite").resolve()

    try:
        db_path.relative_to(stores_root)
    except ValueError as exc:
        raise SafetyViolationError(f"Unsafe store path: {db_path} is not within {stores_root}") from exc

    return StorePaths(
        data_root=root,
        stores_root=stores_root,
        db_path=db_path,
        settings_path=root / "settings.json",
    )


def store_db_path(store_name: str, data_root: Path | None = None) -> Path:
    """Return the SQLite file path of ``store_name`` under ``data_root``."""
    return resolve_store_paths(store_name, data_root).db_path
