"""
Persisted engine settings.

Settings live in ``<data root>/settings.json``. They only control defaults
(which store to open, adapter commit behaviour, log level); command-line flags
and explicit arguments override them.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from notebook_engine.adapter import AdapterOptions, CommitMode, SupersessionPolicy
from notebook_engine.paths import SafetyViolationError, default_data_root, validate_store_name

DEFAULT_STORE_NAME = "notekeeper"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EngineSettings:
    """
    Persisted engine settings.

    Attributes
    ----------
    data_root:
        Data root override, or None for the platform default.
    store_name:
        Store opened when none is given explicitly.
    delete_commit:
        Commit mode used by adapters for deletes.
    supersession:
        How adapters treat async edits overtaken by newer ones.
    log_level:
        Root log level name.
    """

    data_root: Path | None = None
    store_name: str = DEFAULT_STORE_NAME
    delete_commit: CommitMode = CommitMode.FIRE_AND_FORGET
    supersession: SupersessionPolicy = SupersessionPolicy.LAST_COMMIT_WINS
    log_level: str = "WARNING"

    @staticmethod
    def defaults() -> EngineSettings:
        return EngineSettings()

    def adapter_options(self) -> AdapterOptions:
        """Return the adapter options these settings select."""
        return AdapterOptions(delete_commit=self.delete_commit, supersession=self.supersession)


def settings_path(data_root: Path | None) -> Path:
    root = default_data_root() if data_root is None else data_root
    return root / "settings.json"


def load_settings(*, data_root: Path | None) -> EngineSettings:
    """
    Load settings from disk.

    Parameters
    ----------
    data_root:
        Data root holding ``settings.json``. If None, the default is used.

    Returns
    -------
    EngineSettings
        Loaded settings. Missing files load as defaults; unreadable files and
        invalid values fall back to defaults field by field.
    """
    path = settings_path(data_root)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return EngineSettings.defaults()
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable settings file %s: %s", path, exc)
        return EngineSettings.defaults()

    if not isinstance(payload, dict):
        logger.warning("Ignoring settings file %s: not a JSON object", path)
        return EngineSettings.defaults()

    defaults = EngineSettings.defaults()

    raw_root = payload.get("data_root")
    data_root_val = Path(raw_root) if isinstance(raw_root, str) and raw_root.strip() else None

    store_name = payload.get("store_name", defaults.store_name)
    try:
        store_name = validate_store_name(str(store_name))
    except SafetyViolationError:
        store_name = defaults.store_name

    try:
        delete_commit = CommitMode(payload.get("delete_commit", defaults.delete_commit.value))
    except ValueError:
        delete_commit = defaults.delete_commit

    try:
        supersession = SupersessionPolicy(payload.get("supersession", defaults.supersession.value))
    except ValueError:
        supersession = defaults.supersession

    log_level = str(payload.get("log_level", defaults.log_level)).upper()
    if log_level not in LOG_LEVELS:
        log_level = defaults.log_level

    return EngineSettings(
        data_root=data_root_val,
        store_name=store_name,
        delete_commit=delete_commit,
        supersession=supersession,
        log_level=log_level,
    )


def save_settings(*, data_root: Path | None, settings: EngineSettings) -> None:
    """Write ``settings`` to ``settings.json`` under ``data_root``."""
    path = settings_path(data_root)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "data_root": str(settings.data_root) if settings.data_root is not None else None,
        "store_name": settings.store_name,
        "delete_commit": settings.delete_commit.value,
        "supersession": settings.supersession.value,
        "log_level": settings.log_level,
    }
    path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
