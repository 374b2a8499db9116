"""Static resources: the rule catalog and the rule stylesheet.

Both are read once at activation. Callers decide how to degrade when a read
fails; the loaders only raise :class:`ResourceError`.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

RESOURCES_DIR = Path(__file__).resolve().parent.parent / "resources"
RULES_FILE = "deepscan-rules.json"
STYLE_FILE = "style.css"


class ResourceError(Exception):
    """A static resource could not be read or parsed."""


class Rule(BaseModel):
    """One entry of the rule catalog."""
    key: str
    name: str = ""
    severity: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    description: str = ""
    examples: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class RuleCatalog(BaseModel):
    rules: List[Rule] = Field(default_factory=list)

    def find(self, key: object) -> Optional[Rule]:
        for rule in self.rules:
            if rule.key == key:
                return rule
        return None


def resources_dir(extension_path: Optional[str] = None) -> Path:
    if extension_path:
        return Path(extension_path) / "resources"
    return RESOURCES_DIR


def load_rule_catalog(directory: Path) -> RuleCatalog:
    path = directory / RULES_FILE
    try:
        return RuleCatalog.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError, ValidationError) as e:
        raise ResourceError(str(e)) from e


def load_stylesheet(directory: Path) -> str:
    path = directory / STYLE_FILE
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ResourceError(str(e)) from e
