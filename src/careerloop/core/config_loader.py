"""Load and query careerloop JSON config files.

The config file is optional: every accessor falls back to a default so the CLI
and app run against a fresh checkout. Set `CAREERLOOP_CONFIG_PATH` to point at a
file outside the repo.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

CONFIG_PATH_ENV = "CAREERLOOP_CONFIG_PATH"
DEFAULT_CONFIG_PATH = Path("config/config.json")
DEFAULT_TIMEZONE = "Asia/Kolkata"
DEFAULT_DB_PATH = "data/careerloop.db"
DEFAULT_UNKNOWN_CODE_FRACTION = 0.5

# resolved path -> (mtime_ns, parsed payload)
_CONFIG_CACHE: dict[Path, tuple[int, dict[str, Any]]] = {}


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[3]


def resolve_repo_path(path: str | Path) -> Path:
    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = _repo_root() / candidate
    return candidate.resolve()


def resolve_config_path(config_path: str | Path | None = None) -> Path:
    """Pick the config file: explicit argument, then `CAREERLOOP_CONFIG_PATH`, then `config/config.json`."""
    for raw in (config_path, os.getenv(CONFIG_PATH_ENV)):
        if raw:
            return resolve_repo_path(raw)
    return resolve_repo_path(DEFAULT_CONFIG_PATH)


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in config file: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Config root must be a JSON object: {path}")
    return payload


def load_config(config_path: str | Path | None = None, *, use_cache: bool = True) -> dict[str, Any]:
    """Parse the config file, reusing the cached payload until its mtime changes."""
    path = resolve_config_path(config_path)
    try:
        mtime_ns = path.stat().st_mtime_ns
    except FileNotFoundError as exc:
        raise FileNotFoundError(f"Config file not found: {path}") from exc

    cached = _CONFIG_CACHE.get(path) if use_cache else None
    if cached is not None and cached[0] == mtime_ns:
        return cached[1]

    payload = _read_config_file(path)
    _CONFIG_CACHE[path] = (mtime_ns, payload)
    return payload


def load_config_or_empty(config_path: str | Path | None = None) -> dict[str, Any]:
    """Like `load_config`, but a missing file yields `{}`."""
    try:
        return load_config(config_path)
    except FileNotFoundError:
        return {}


def clear_config_cache() -> None:
    _CONFIG_CACHE.clear()


def _section(config: dict[str, Any] | None, key: str) -> dict[str, Any]:
    payload = load_config_or_empty() if config is None else config
    value = payload.get(key)
    return value if isinstance(value, dict) else {}


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def get_timezone(config: dict[str, Any] | None = None) -> str:
    payload = load_config_or_empty() if config is None else config
    return _text(payload.get("timezone")) or DEFAULT_TIMEZONE


def get_database_path(config: dict[str, Any] | None = None) -> Path:
    raw = _text(_section(config, "database").get("path"))
    return resolve_repo_path(raw or DEFAULT_DB_PATH)


def get_catalog_path(config: dict[str, Any] | None = None) -> Path | None:
    """Configured catalog JSON path, or None for the built-in catalog."""
    payload = load_config_or_empty() if config is None else config
    raw = _text(payload.get("catalog_path"))
    return resolve_repo_path(raw) if raw else None


def get_engine_config(config: dict[str, Any] | None = None) -> dict[str, Any]:
    engine = _section(config, "engine")
    fraction = engine.get("unknown_code_fraction")
    if isinstance(fraction, bool) or not isinstance(fraction, (int, float)) or not 0 <= fraction <= 1:
        fraction = DEFAULT_UNKNOWN_CODE_FRACTION
    return {"unknown_code_fraction": float(fraction)}


def get_logging_config(config: dict[str, Any] | None = None) -> dict[str, Any]:
    level = _text(_section(config, "logging").get("level"))
    return {"level": level.upper() if level else "INFO"}
