"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from ahacapture.engine.config import AuthMode, Config, RemoteConfig, StoreMode, SyncConfig


def test_defaults(tmp_path):
    config = Config(data_dir=tmp_path / "data")

    assert config.store_mode is StoreMode.REMOTE
    assert config.sync.create_timeout == 5.0
    assert config.sync.cache_limit == 50
    assert config.sync.retention_ms == 24 * 3600 * 1000
    assert config.sync.fetch_statuses == ["open", "active", "done"]
    assert config.store_dir == tmp_path.resolve() / "data" / "store"
    assert (tmp_path / "data").is_dir()


def test_save_and_load_round_trip(tmp_path):
    path = tmp_path / "ahacapture.yaml"
    config = Config(
        data_dir=tmp_path / "data",
        store_mode="local",
        remote=RemoteConfig(project_id="demo", auth="password"),
        sync=SyncConfig(trash_retention_hours=48)
    )
    config.save(path)

    loaded = Config.load(path)

    assert loaded.store_mode is StoreMode.LOCAL
    assert loaded.remote.auth is AuthMode.PASSWORD
    assert loaded.sync.retention_ms == 48 * 3600 * 1000
    assert loaded.data_dir == config.data_dir


def test_load_empty_file(tmp_path, monkeypatch):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    monkeypatch.setenv("HOME", str(tmp_path))

    config = Config.load(path)

    assert config.store_mode is StoreMode.REMOTE


@pytest.mark.parametrize("fields", [
    {"cache_limit": 0},
    {"create_timeout": 0},
    {"trash_retention_hours": -1},
])
def test_sync_validation(fields):
    with pytest.raises(ValidationError):
        SyncConfig(**fields)


def test_remote_credentials_from_env(monkeypatch):
    monkeypatch.setenv("AHA_FIREBASE_API_KEY", "env-key")
    monkeypatch.setenv("AHA_FIREBASE_PROJECT_ID", "env-project")

    assert not RemoteConfig().is_configured
    config = RemoteConfig(project_id="explicit").with_env()

    assert config.is_configured
    assert config.api_key == "env-key"
    assert config.project_id == "explicit"
