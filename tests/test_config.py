from __future__ import annotations

from datetime import timedelta

import pytest

from eventlens import config


@pytest.fixture()
def isolated_env(monkeypatch, tmp_path):
    for key in list(config.DEFAULTS):
        monkeypatch.delenv(f"EVENTLENS_{key.upper()}", raising=False)
    monkeypatch.setenv("EVENTLENS_BASE_DIR", str(tmp_path))
    monkeypatch.delenv("EVENTLENS_CONFIG", raising=False)
    monkeypatch.delenv("EVENTLENS_DATA_DIR", raising=False)
    monkeypatch.delenv("EVENTLENS_DB", raising=False)
    return tmp_path


def test_defaults_apply_without_config(isolated_env):
    settings = config.load_settings()
    assert settings.dm_message_budget == 10
    assert settings.event_id_max_length == 255
    assert settings.qr_id_max_length == 100
    assert settings.data_dir == isolated_env / "data"
    assert settings.database_path == isolated_env / "data" / "eventlens.db"
    assert settings.dm_retention == timedelta(days=1)
    assert settings.data_dir.is_dir()


def test_toml_then_env_layering(isolated_env, monkeypatch):
    config_path = isolated_env / "eventlens.toml"
    config.write_config_file(
        {"dm_message_budget": 5, "enable_scheduler": False}, path=config_path
    )
    settings = config.load_settings()
    assert settings.dm_message_budget == 5
    assert settings.enable_scheduler is False

    monkeypatch.setenv("EVENTLENS_DM_MESSAGE_BUDGET", "7")
    monkeypatch.setenv("EVENTLENS_ENABLE_SCHEDULER", "yes")
    settings = config.load_settings()
    assert settings.dm_message_budget == 7
    assert settings.enable_scheduler is True


def test_invalid_boolean_is_rejected(isolated_env, monkeypatch):
    monkeypatch.setenv("EVENTLENS_ENABLE_SCHEDULER", "maybe")
    with pytest.raises(ValueError):
        config.load_settings()


def test_update_config_file_ignores_unknown_keys(isolated_env, monkeypatch):
    monkeypatch.setattr(config, "settings", config.load_settings())
    path = isolated_env / "custom.toml"
    updated = config.update_config_file(
        {"dm_retention_days": "3", "not_a_setting": 1}, path=path
    )
    assert updated.dm_retention_days == 3
    text = path.read_text(encoding="utf-8")
    assert "dm_retention_days = 3" in text
    assert "not_a_setting" not in text


def test_settings_as_dict_exports_every_key(isolated_env):
    payload = config.settings_as_dict(config.load_settings())
    assert set(config.DEFAULTS) <= set(payload)
    assert payload["database_path"].endswith("eventlens.db")


def test_contradictory_settings_are_rejected(isolated_env, monkeypatch):
    monkeypatch.setenv("EVENTLENS_DM_MESSAGE_BUDGET", "2")
    monkeypatch.setenv("EVENTLENS_FEED_PAGE_SIZE", "500")
    with pytest.raises(ValueError) as excinfo:
        config.load_settings()
    message = str(excinfo.value)
    assert "dm_warning_threshold must be below dm_message_budget" in message
    assert "feed_page_size cannot exceed feed_max_page_size" in message


def test_update_config_file_refuses_invalid_values(isolated_env, monkeypatch):
    monkeypatch.setattr(config, "settings", config.load_settings())
    path = isolated_env / "custom.toml"
    with pytest.raises(ValueError):
        config.update_config_file({"qr_id_max_length": 300}, path=path)
    assert not path.exists()
