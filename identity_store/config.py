"""Configuration management for the identity store."""
from __future__ import annotations

import importlib
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from .paging import DEFAULT_PAGE_SIZE


def _env_flag(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _optional_str(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _resolve_path(raw: object, base_path: Optional[Path]) -> Path:
    candidate = Path(str(raw)).expanduser()
    if not candidate.is_absolute() and base_path is not None:
        candidate = base_path / candidate
    return candidate.resolve(strict=False)


@dataclass(frozen=True)
class StoreConfig:
    """Settings fixed when the store is wired together."""

    database_path: Optional[Path] = None
    page_size: int = DEFAULT_PAGE_SIZE
    deactivate_on_delete: bool = True
    hash_schemes: Tuple[str, ...] = ("pbkdf2_sha256",)
    hash_rounds: Optional[int] = None
    password_min_length: int = 8
    password_max_length: int = 255
    connect_timeout: float = 5.0
    filter_translator: Optional[str] = None
    password_policy: Optional[str] = None

    @staticmethod
    def from_dict(data: Mapping[str, Any], base_path: Path | None = None) -> "StoreConfig":
        """Create a :class:`StoreConfig` from raw dictionary data."""

        known = {
            "database_path",
            "page_size",
            "deactivate_on_delete",
            "hash_schemes",
            "hash_rounds",
            "password_min_length",
            "password_max_length",
            "connect_timeout",
            "filter_translator",
            "password_policy",
        }
        unknown = set(data.keys()) - known
        if unknown:
            raise ValueError(f"Unknown identity store configuration fields: {', '.join(sorted(unknown))}")

        page_size = int(data.get("page_size", DEFAULT_PAGE_SIZE))
        if page_size < 1:
            raise ValueError("page_size must be a positive integer")

        raw_schemes = data.get("hash_schemes", ("pbkdf2_sha256",))
        if isinstance(raw_schemes, str):
            raw_schemes = [raw_schemes]
        schemes = tuple(str(item).strip() for item in raw_schemes if str(item).strip())
        if not schemes:
            raise ValueError("hash_schemes must name at least one passlib scheme")

        hash_rounds = data.get("hash_rounds")
        min_length = int(data.get("password_min_length", 8))
        max_length = int(data.get("password_max_length", 255))
        if min_length < 1 or max_length < min_length:
            raise ValueError("Password length bounds are inconsistent")

        database_path = data.get("database_path")

        return StoreConfig(
            database_path=_resolve_path(database_path, base_path) if database_path else None,
            page_size=page_size,
            deactivate_on_delete=bool(data.get("deactivate_on_delete", True)),
            hash_schemes=schemes,
            hash_rounds=int(hash_rounds) if hash_rounds is not None else None,
            password_min_length=min_length,
            password_max_length=max_length,
            connect_timeout=float(data.get("connect_timeout", 5.0)),
            filter_translator=_optional_str(data.get("filter_translator")),
            password_policy=_optional_str(data.get("password_policy")),
        )


def load_store_config(config_path: Path) -> StoreConfig:
    """Load store settings from a YAML file."""

    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a mapping")
    section = raw.get("identity_store", raw)
    if not isinstance(section, dict):
        raise ValueError("The 'identity_store' section must be a mapping")
    return StoreConfig.from_dict(section, base_path=config_path.parent)


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (Path(__file__).resolve().parent.parent / "config" / "identity_store.yaml").resolve(strict=False)


def load_config_from_env() -> StoreConfig:
    """Read the configuration file, if present, and apply environment overrides."""

    config_path = resolve_config_path(os.getenv("IDENTITY_STORE_CONFIG"))
    config = load_store_config(config_path) if config_path.exists() else StoreConfig()

    overrides: Dict[str, Any] = {}
    db_env = os.getenv("IDENTITY_STORE_DB_PATH")
    if db_env:
        overrides["database_path"] = Path(db_env).expanduser().resolve(strict=False)
    deactivate_env = os.getenv("IDENTITY_STORE_DEACTIVATE_ON_DELETE")
    if deactivate_env is not None:
        overrides["deactivate_on_delete"] = _env_flag(deactivate_env, config.deactivate_on_delete)
    if not overrides:
        return config
    return replace(config, **overrides)


def import_object(path: str) -> Any:
    """Import ``module:attribute`` (or ``module.attribute``) and return the attribute."""

    if ":" in path:
        module_name, _, attribute = path.partition(":")
    else:
        module_name, _, attribute = path.rpartition(".")
    if not module_name or not attribute:
        raise ValueError(f"Invalid import path {path!r}; expected 'module:attribute'")
    module = importlib.import_module(module_name)
    try:
        return getattr(module, attribute)
    except AttributeError as exc:
        raise ValueError(f"Module {module_name!r} has no attribute {attribute!r}") from exc


__all__ = [
    "StoreConfig",
    "import_object",
    "load_config_from_env",
    "load_store_config",
    "resolve_config_path",
]
