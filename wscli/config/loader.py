"""Configuration loading and saving.

The file is JSON with camelCase keys; in memory everything is snake_case.
Keys of user-keyed mappings (account ids, service names) are kept verbatim.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from wscli.config.schema import Config
from wscli.utils.helpers import get_data_path

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"
VERBATIM_KEYS = frozenset({"accounts", "rate_limits"})
VERBATIM_KEYS_CAMEL = frozenset({"accounts", "rateLimits"})


def get_data_dir() -> Path:
    return get_data_path()


def get_config_path() -> Path:
    return get_data_dir() / CONFIG_FILENAME


def camel_to_snake(name: str) -> str:
    s1 = re.sub(r"(.)([A-Z][a-z]+)", r"\1_\2", name)
    return re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s1).lower()


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _convert(data: Any, fn, verbatim: frozenset[str], keep_keys: bool = False) -> Any:
    if isinstance(data, dict):
        out: dict[str, Any] = {}
        for key, value in data.items():
            new_key = key if keep_keys else fn(key)
            out[new_key] = _convert(value, fn, verbatim, keep_keys=not keep_keys and key in verbatim)
        return out
    if isinstance(data, list):
        return [_convert(item, fn, verbatim) for item in data]
    return data


def convert_keys(data: Any) -> Any:
    """Recursively convert camelCase keys to snake_case."""
    return _convert(data, camel_to_snake, VERBATIM_KEYS_CAMEL)


def convert_to_camel(data: Any) -> Any:
    """Recursively convert snake_case keys to camelCase."""
    return _convert(data, snake_to_camel, VERBATIM_KEYS)


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration; a missing or invalid file yields defaults."""
    path = config_path or get_config_path()
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("config root must be a JSON object")
            return Config(**convert_keys(data))
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Failed to load config from %s: %s; using defaults", path, exc)
    return Config()


def _read_file_data(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable config at %s: %s", path, exc)
        return {}
    return convert_keys(data) if isinstance(data, dict) else {}


def _merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in updates.items():
        current = merged.get(key)
        if isinstance(value, dict) and isinstance(current, dict) and key not in VERBATIM_KEYS:
            merged[key] = _merge(current, value)
        else:
            merged[key] = value
    return merged


def _write_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fp:
            json.dump(data, fp, indent=2, ensure_ascii=False)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def save_config(config: Config, config_path: Path | None = None) -> Path:
    """Write the whole configuration atomically, environment overrides included."""
    path = config_path or get_config_path()
    _write_json(path, convert_to_camel(config.model_dump(mode="json")))
    return path


def update_config(updates: dict[str, Any], config_path: Path | None = None) -> Path:
    """Patch snake_case ``updates`` into the file, leaving every other key as written.

    Values that only came from ``WSCLI_*`` variables are never persisted this way.
    Mappings of user-keyed entries (accounts, rate limits) are replaced whole.
    """
    path = config_path or get_config_path()
    data = _merge(_read_file_data(path), updates)
    _write_json(path, convert_to_camel(data))
    return path
