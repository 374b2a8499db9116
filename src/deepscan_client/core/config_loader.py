"""Settings file loading utilities: JSONC parsing, env substitution, deep merge."""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, Dict

import commentjson

from ..util.log import Log

log = Log.create({"service": "config.loader"})


class ConfigError(Exception):
    """Configuration error."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"Config error in {path}: {message}")


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries; lists and scalars in ``override`` win."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def substitute_env_vars(text: str) -> str:
    """Replace ``{env:VAR}`` patterns with environment variable values."""
    def replacer(match: re.Match[str]) -> str:
        return os.environ.get(match.group(1), "")

    return re.sub(r'\{env:([^}]+)\}', replacer, text)


def load_json_file(filepath: str) -> Dict[str, Any]:
    """Load a JSON or JSONC file.

    Returns ``{}`` when the file is missing or unreadable.

    Raises:
        ConfigError: if the file is not valid JSONC.
    """
    path = Path(filepath)
    if not path.exists():
        return {}

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        log.error("failed to read settings file", {"path": filepath, "error": str(e)})
        return {}

    try:
        data = commentjson.loads(substitute_env_vars(text))
    except Exception as e:
        # commentjson reports syntax errors with lark exceptions, not ValueError.
        raise ConfigError(filepath, f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        log.error("settings file is not an object", {"path": filepath})
        return {}
    return data


def write_json_file(filepath: str, data: Dict[str, Any]) -> None:
    """Write ``data`` as pretty JSON, creating parent directories."""
    path = Path(filepath)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    except OSError as e:
        raise ConfigError(filepath, str(e)) from e
