from __future__ import annotations

import json
from pathlib import Path

from notebook_engine.adapter import CommitMode, SupersessionPolicy
from notebook_engine.settings import EngineSettings, load_settings, save_settings, settings_path


def test_missing_settings_file_loads_defaults(tmp_path: Path) -> None:
    assert load_settings(data_root=tmp_path) == EngineSettings.defaults()


def test_settings_round_trip(tmp_path: Path) -> None:
    settings = EngineSettings(
        store_name="work",
        delete_commit=CommitMode.AWAIT,
        supersession=SupersessionPolicy.DISCARD_STALE,
        log_level="DEBUG",
    )

    save_settings(data_root=tmp_path, settings=settings)

    assert load_settings(data_root=tmp_path) == settings


def test_invalid_values_fall_back_field_by_field(tmp_path: Path) -> None:
    settings_path(tmp_path).write_text(
        json.dumps(
            {
                "store_name": "../escape",
                "delete_commit": "sometimes",
                "supersession": "discard_stale",
                "log_level": "chatty",
            }
        ),
        encoding="utf-8",
    )

    loaded = load_settings(data_root=tmp_path)

    assert loaded.store_name == "notekeeper"
    assert loaded.delete_commit is CommitMode.FIRE_AND_FORGET
    assert loaded.supersession is SupersessionPolicy.DISCARD_STALE
    assert loaded.log_level == "WARNING"


def test_unparseable_file_loads_defaults(tmp_path: Path) -> None:
    settings_path(tmp_path).write_text("{not json", encoding="utf-8")
    assert load_settings(data_root=tmp_path) == EngineSettings.defaults()


def test_non_object_file_loads_defaults(tmp_path: Path) -> None:
    settings_path(tmp_path).write_text("[1, 2]", encoding="utf-8")
    assert load_settings(data_root=tmp_path) == EngineSettings.defaults()


def test_adapter_options_follow_settings() -> None:
    options = EngineSettings(delete_commit=CommitMode.AWAIT).adapter_options()
    assert options.delete_commit is CommitMode.AWAIT
    assert options.supersession is SupersessionPolicy.LAST_COMMIT_WINS
