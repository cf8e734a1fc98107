"""Global configuration for EventLens."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable

DEFAULTS: dict[str, Any] = {
    "dm_message_budget": 10,
    "dm_content_max_length": 1000,
    "dm_warning_threshold": 3,
    "event_id_max_length": 255,
    "qr_id_max_length": 100,
    "token_max_length": 128,
    "dm_retention_days": 1,
    "retention_interval_hours": 1,
    "sqlite_vacuum_hours": 12,
    "feed_page_size": 50,
    "feed_max_page_size": 100,
    "qr_base_url": "https://eventlens.app",
    "enable_scheduler": True,
    "seed_events": 3,
    "seed_members_per_event": 4,
    "seed_posts_per_event": 6,
    "app_host": "0.0.0.0",
    "app_port": 8000,
}

TYPE_CASTERS: dict[str, Callable[[Any], Any]] = {
    "dm_message_budget": int,
    "dm_content_max_length": int,
    "dm_warning_threshold": int,
    "event_id_max_length": int,
    "qr_id_max_length": int,
    "token_max_length": int,
    "dm_retention_days": int,
    "retention_interval_hours": int,
    "sqlite_vacuum_hours": int,
    "feed_page_size": int,
    "feed_max_page_size": int,
    "qr_base_url": str,
    "enable_scheduler": bool,
    "seed_events": int,
    "seed_members_per_event": int,
    "seed_posts_per_event": int,
    "app_host": str,
    "app_port": int,
}


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    data_dir: Path
    database_path: Path
    dm_message_budget: int
    dm_content_max_length: int
    dm_warning_threshold: int
    event_id_max_length: int
    qr_id_max_length: int
    token_max_length: int
    dm_retention_days: int
    retention_interval_hours: int
    sqlite_vacuum_hours: int
    feed_page_size: int
    feed_max_page_size: int
    qr_base_url: str
    enable_scheduler: bool
    seed_events: int
    seed_members_per_event: int
    seed_posts_per_event: int
    app_host: str
    app_port: int
    config_path: Path

    @property
    def retention_interval(self) -> timedelta:
        return timedelta(hours=self.retention_interval_hours)

    @property
    def dm_retention(self) -> timedelta:
        return timedelta(days=self.dm_retention_days)

    @property
    def vacuum_interval(self) -> timedelta:
        return timedelta(hours=self.sqlite_vacuum_hours)


def _boolify(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Cannot parse boolean value from {value!r}")


def _cast_value(key: str, value: Any) -> Any:
    if key not in TYPE_CASTERS:
        return value
    caster = TYPE_CASTERS[key]
    if caster is bool:
        return _boolify(value)
    return caster(value)


def _load_toml_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        return tomllib.load(handle)


def _config_layered_value(key: str, *, toml_config: dict[str, Any]) -> Any:
    env_key = f"EVENTLENS_{key.upper()}"
    if env_key in os.environ:
        return _cast_value(key, os.environ[env_key])
    if key in toml_config:
        return _cast_value(key, toml_config[key])
    return DEFAULTS[key]


def _resolve_paths(
    *,
    base_dir: Path,
    data_dir: str | Path | None,
    database_path: str | Path | None,
):
    resolved_base = Path(base_dir)
    resolved_data = Path(data_dir) if data_dir else resolved_base / "data"
    if not resolved_data.is_absolute():
        resolved_data = resolved_base / resolved_data
    resolved_db = (
        Path(database_path) if database_path else resolved_data / "eventlens.db"
    )
    if not resolved_db.is_absolute():
        resolved_db = resolved_base / resolved_db
    return resolved_base, resolved_data, resolved_db


# Keys whose value must be at least 1.
POSITIVE_KEYS = (
    "dm_message_budget",
    "dm_content_max_length",
    "event_id_max_length",
    "qr_id_max_length",
    "token_max_length",
    "retention_interval_hours",
    "feed_page_size",
    "feed_max_page_size",
)


def validate_settings(values: dict[str, Any]) -> None:
    """Raise ``ValueError`` listing every setting that is out of range."""
    problems = [f"{key} must be at least 1" for key in POSITIVE_KEYS if values[key] < 1]
    if values["dm_retention_days"] < 0:
        problems.append("dm_retention_days cannot be negative")
    if not 0 <= values["dm_warning_threshold"] < values["dm_message_budget"]:
        problems.append("dm_warning_threshold must be below dm_message_budget")
    if values["feed_page_size"] > values["feed_max_page_size"]:
        problems.append("feed_page_size cannot exceed feed_max_page_size")
    if values["qr_id_max_length"] > values["event_id_max_length"]:
        problems.append("qr_id_max_length cannot exceed event_id_max_length")
    if problems:
        raise ValueError("Invalid configuration: " + "; ".join(problems))


def load_settings(config_override: Path | None = None) -> Settings:
    base_dir = Path(os.getenv("EVENTLENS_BASE_DIR", Path.cwd()))
    env_config = os.getenv("EVENTLENS_CONFIG")
    config_path = Path(config_override or env_config or base_dir / "eventlens.toml")
    toml_config = _load_toml_config(config_path)

    base_dir_value, data_dir_value, database_path_value = _resolve_paths(
        base_dir=base_dir,
        data_dir=os.getenv("EVENTLENS_DATA_DIR", toml_config.get("data_dir")),
        database_path=os.getenv("EVENTLENS_DB", toml_config.get("database_path")),
    )

    layered = {
        key: _config_layered_value(key, toml_config=toml_config) for key in DEFAULTS
    }
    validate_settings(layered)
    settings = Settings(
        base_dir=base_dir_value,
        data_dir=data_dir_value,
        database_path=database_path_value,
        config_path=config_path,
        **layered,
    )
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    return settings


def settings_as_dict(settings: Settings) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "base_dir": str(settings.base_dir),
        "data_dir": str(settings.data_dir),
        "database_path": str(settings.database_path),
    }
    for key in DEFAULTS:
        payload[key] = getattr(settings, key)
    return payload


def _toml_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def write_config_file(config: dict[str, Any], *, path: Path) -> None:
    lines = ["# EventLens configuration\n"]
    for key in sorted(config.keys()):
        lines.append(f"{key} = {_toml_literal(config[key])}\n")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(lines), encoding="utf-8")


def update_config_file(updates: dict[str, Any], *, path: Path | None = None) -> Settings:
    current_settings = settings if "settings" in globals() else load_settings()
    target_path = path or current_settings.config_path
    existing = _load_toml_config(target_path)
    accepted = {
        key: _cast_value(key, value) for key, value in updates.items() if key in DEFAULTS
    }
    validate_settings(
        {**{key: getattr(current_settings, key) for key in DEFAULTS}, **accepted}
    )
    merged = {**existing, **accepted}
    write_config_file(merged, path=target_path)
    new_settings = load_settings(target_path)
    globals()["settings"] = new_settings
    return new_settings


settings = load_settings()
