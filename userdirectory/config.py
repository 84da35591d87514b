"""Configuration management for the user directory service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

import yaml

from .database import resolve_database_path

STORE_BACKENDS = ("sqlite", "mongodb")

DEFAULT_CORS_ORIGINS = ("http://localhost:3000", "http://localhost:5173")


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the dispatch front and both adapters."""

    host: str = "0.0.0.0"
    port: int = 5000
    store: str = "sqlite"
    database_path: Path = field(default_factory=lambda: resolve_database_path(None))
    mongo_uri: Optional[str] = None
    mongo_database: str = "user_directory"
    api_prefix: str = "/api"
    soap_path: str = "/soap"
    soap_max_limit: int = 100
    service_name: str = "User Directory Service"
    cors_origins: Tuple[str, ...] = DEFAULT_CORS_ORIGINS

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from raw dictionary data."""

        unknown = set(data) - {f for f in Settings.__dataclass_fields__}
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        values: Dict[str, object] = dict(data)
        if "database_path" in values:
            raw_path = Path(str(values["database_path"])).expanduser()
            if not raw_path.is_absolute() and base_path is not None:
                raw_path = base_path / raw_path
            values["database_path"] = raw_path.resolve(strict=False)
        if "cors_origins" in values:
            values["cors_origins"] = _parse_origins(values["cors_origins"])
        for name in ("port", "soap_max_limit"):
            if name in values:
                values[name] = _parse_int(name, values[name])

        settings = replace(Settings(), **values)  # type: ignore[arg-type]
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.store not in STORE_BACKENDS:
            raise ValueError(
                f"Unknown store backend '{self.store}'. Expected one of: {', '.join(STORE_BACKENDS)}"
            )
        if self.store == "mongodb" and not self.mongo_uri:
            raise ValueError("MONGO_URI must be set when the mongodb store is selected")
        for name in ("api_prefix", "soap_path"):
            value = getattr(self, name)
            if not value.startswith("/") or value == "/":
                raise ValueError(f"{name} must be an absolute path below the root, got '{value}'")
        if self.soap_max_limit < 1:
            raise ValueError("soap_max_limit must be at least 1")


def _parse_int(name: str, value: object) -> int:
    try:
        return int(str(value).strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got '{value}'") from exc


def _parse_origins(value: object) -> Tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        raise ValueError("cors_origins must be a list or a comma separated string")
    return tuple(item.strip() for item in items if item.strip())


_ENV_KEYS = {
    "USER_DIRECTORY_STORE": "store",
    "USER_DIRECTORY_DB_PATH": "database_path",
    "MONGO_URI": "mongo_uri",
    "MONGO_DATABASE": "mongo_database",
    "USER_DIRECTORY_CORS_ORIGINS": "cors_origins",
    "USER_DIRECTORY_SERVICE_NAME": "service_name",
    "PORT": "port",
}


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the optional YAML settings file."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (Path(__file__).resolve().parent.parent / "config" / "settings.yaml").resolve(strict=False)


def load_settings(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from defaults, an optional YAML file and the environment."""

    env = os.environ if environ is None else environ
    path = config_path or resolve_config_path(env.get("USER_DIRECTORY_CONFIG"))

    raw: Dict[str, object] = {}
    if path.is_file():
        with path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        raw.update(loaded)

    for env_name, key in _ENV_KEYS.items():
        value = env.get(env_name)
        if value:
            raw[key] = value

    return Settings.from_dict(raw, base_path=path.parent)


__all__ = ["Settings", "load_settings", "resolve_config_path"]
