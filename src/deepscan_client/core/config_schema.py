"""Settings schema: Pydantic models for the ``deepscan`` settings section."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SECTION = "deepscan"
DEFAULT_SERVER_URL = "https://deepscan.io"
DEFAULT_DEBUG_ARGS = ["--nolazy", "--inspect=6004"]


class LoggingSettings(BaseModel):
    """Logging configuration."""
    level: Optional[Literal["debug", "info", "warn", "warning", "error"]] = None
    format: Optional[Literal["kv", "json", "pretty"]] = None
    console: Optional[bool] = None

    model_config = ConfigDict(extra="forbid")


class Settings(BaseModel):
    """The ``deepscan`` settings section.

    Keys use the camelCase names the server expects; Python code uses the
    snake_case attributes. Unknown keys are kept so they reach the server
    unchanged when the section is synchronized.
    """
    enable: bool = False
    server: str = DEFAULT_SERVER_URL
    file_suffixes: List[str] = Field(default_factory=list, alias="fileSuffixes")
    ignore_confirm_warning: bool = Field(default=False, alias="ignoreConfirmWarning")
    server_command: Optional[List[str]] = Field(default=None, alias="serverCommand")
    debug: bool = False
    debug_args: List[str] = Field(default_factory=lambda: list(DEFAULT_DEBUG_ARGS), alias="debugArgs")
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("file_suffixes", mode="before")
    @classmethod
    def _normalize_suffixes(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("server_command")
    @classmethod
    def _reject_empty_command(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is not None and not value:
            raise ValueError("serverCommand must name an executable")
        return value

    def section(self) -> Dict[str, Any]:
        """Return the section as it is sent to the server."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
