"""Settings management.

Loads and merges the ``deepscan`` settings section from multiple sources with
proper precedence and writes user decisions back to disk.
"""

import os
from contextvars import ContextVar, Token
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .config_loader import ConfigError, deep_merge, load_json_file, write_json_file
from .config_schema import SECTION, LoggingSettings, Settings
from .global_paths import GlobalPath
from ..util.log import Log

log = Log.create({"service": "config"})

__all__ = [
    "ConfigError",
    "ConfigManager",
    "LoggingSettings",
    "SECTION",
    "Settings",
]

GLOBAL_FILENAMES = ["settings.json", "settings.jsonc"]
PROJECT_FILENAMES = [".deepscan.json", ".deepscan.jsonc"]

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _env_overrides() -> Dict[str, Any]:
    result: Dict[str, Any] = {}

    server = os.environ.get("DEEPSCAN_SERVER", "").strip()
    if server:
        result["server"] = server

    enable = os.environ.get("DEEPSCAN_ENABLE", "").strip().lower()
    if enable in _TRUE:
        result["enable"] = True
    elif enable in _FALSE:
        result["enable"] = False

    return result


_config_var: ContextVar['ConfigManager'] = ContextVar('_config_var')


class ConfigManager:
    """Settings management.

    Instance-based with ContextVar for scoping. Class methods delegate
    to the current instance.

    Sources, in increasing precedence:
    1. Global settings (``<user config dir>/settings.json``)
    2. Project settings (``.deepscan.json`` from the filesystem root down to
       the workspace directory)
    3. Environment variable overrides (``DEEPSCAN_SERVER``, ``DEEPSCAN_ENABLE``)
    """

    def __init__(self) -> None:
        self._cache: Optional[Settings] = None
        self._directory: Optional[str] = None
        self._sources: List[str] = []

    # -- ContextVar plumbing --

    @classmethod
    def current(cls) -> 'ConfigManager':
        try:
            return _config_var.get()
        except LookupError:
            instance = cls()
            _config_var.set(instance)
            return instance

    @classmethod
    def provide(cls, instance: 'ConfigManager') -> Token['ConfigManager']:
        return _config_var.set(instance)

    @classmethod
    def restore(cls, token: Token['ConfigManager']) -> None:
        _config_var.reset(token)

    # -- Public API (class methods delegate to current instance) --

    @classmethod
    def reset(cls) -> None:
        """Drop cached settings; the next ``get`` reloads from disk."""
        cls.current()._cache = None

    @classmethod
    async def load(cls, directory: str = ".") -> Settings:
        return cls.current()._load(directory)

    @classmethod
    async def get(cls) -> Settings:
        inst = cls.current()
        if inst._cache is None:
            return inst._load(inst._directory or ".")
        return inst._cache

    @classmethod
    def sources(cls) -> List[str]:
        return cls.current()._sources.copy()

    @classmethod
    async def update(cls, updates: Dict[str, Any], global_: bool = False) -> Settings:
        return cls.current()._update(updates, global_)

    # -- Instance methods --

    def _project_files(self, directory: str) -> List[str]:
        found: List[str] = []
        current = Path(directory).resolve()
        while True:
            for filename in PROJECT_FILENAMES:
                filepath = current / filename
                if filepath.exists():
                    found.append(str(filepath))
            if current == current.parent:
                break
            current = current.parent
        # Root first, then more specific.
        return list(reversed(found))

    def _load(self, directory: str) -> Settings:
        if self._cache is not None and self._directory == str(Path(directory).resolve()):
            return self._cache

        result: Dict[str, Any] = {}
        sources: List[str] = []

        for filename in GLOBAL_FILENAMES:
            filepath = os.path.join(GlobalPath.config(), filename)
            data = load_json_file(filepath)
            if data:
                result = deep_merge(result, data)
                sources.append(filepath)
                log.info("loaded global settings", {"path": filepath})

        for filepath in self._project_files(directory):
            data = load_json_file(filepath)
            if data:
                result = deep_merge(result, data)
                sources.append(filepath)
                log.info("loaded project settings", {"path": filepath})

        result = deep_merge(result, _env_overrides())

        try:
            settings = Settings.model_validate(result)
        except ValidationError as e:
            source = sources[-1] if sources else "<defaults>"
            raise ConfigError(source, str(e)) from e

        self._cache = settings
        self._directory = str(Path(directory).resolve())
        self._sources = sources
        return settings

    def _update(self, updates: Dict[str, Any], global_: bool) -> Settings:
        if global_:
            filepath = os.path.join(GlobalPath.config(), GLOBAL_FILENAMES[0])
        else:
            filepath = os.path.join(self._directory or os.getcwd(), PROJECT_FILENAMES[0])

        data = deep_merge(load_json_file(filepath), updates)
        write_json_file(filepath, data)
        log.info("updated settings", {"path": filepath, "keys": sorted(updates)})

        self._cache = None
        return self._load(self._directory or os.getcwd())
