"""Wire protocol between the client and the DeepScan server.

The transport is JSON-RPC 2.0 (Language Server Protocol framing). Besides the
standard LSP methods the server pushes two custom notifications:

* ``deepscan/status``: :class:`StatusParams`, the current inspection status,
  optionally scoped to a document URI.
* ``deepscan/exitCalled``: ``[exitCode, message]``, sent right before the
  server terminates itself.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# LSP methods
INITIALIZE = "initialize"
INITIALIZED = "initialized"
SHUTDOWN = "shutdown"
EXIT = "exit"
EXECUTE_COMMAND = "workspace/executeCommand"
DID_CHANGE_CONFIGURATION = "workspace/didChangeConfiguration"
WORKSPACE_CONFIGURATION = "workspace/configuration"
PUBLISH_DIAGNOSTICS = "textDocument/publishDiagnostics"
DID_OPEN = "textDocument/didOpen"
DID_CHANGE = "textDocument/didChange"
DID_CLOSE = "textDocument/didClose"
LOG_MESSAGE = "window/logMessage"

# DeepScan methods
STATUS_NOTIFICATION = "deepscan/status"
EXIT_CALLED = "deepscan/exitCalled"

# JSON-RPC error codes
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603


class Status(str, Enum):
    """Coordinator-wide inspection status."""
    NONE = "none"
    OK = "ok"
    WARN = "warn"
    FAIL = "fail"


# Older servers send the status as its ordinal.
_STATUS_ORDINALS = [Status.NONE, Status.OK, Status.WARN, Status.FAIL]


class StatusParams(BaseModel):
    """Payload of ``deepscan/status``."""
    state: Status
    uri: Optional[str] = None
    error: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("state", mode="before")
    @classmethod
    def _accept_ordinal(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            if 0 <= value < len(_STATUS_ORDINALS):
                return _STATUS_ORDINALS[value]
            raise ValueError(f"unknown status ordinal: {value}")
        return value


class ExitCalledParams(BaseModel):
    """Payload of ``deepscan/exitCalled``, sent on the wire as ``[code, message]``."""
    exit_code: int
    message: str = ""

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _from_tuple(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            code = value[0] if len(value) > 0 else -1
            message = value[1] if len(value) > 1 else ""
            return {"exit_code": code, "message": message or ""}
        return value


class VersionedTextDocumentIdentifier(BaseModel):
    """Identifies a specific version of a text document."""
    uri: str
    version: int


class ExecuteCommandParams(BaseModel):
    """Parameters of ``workspace/executeCommand``."""
    command: str
    arguments: List[Any] = Field(default_factory=list)


class InitializationOptions(BaseModel):
    """``initializationOptions`` sent with ``initialize``."""
    server: str
    default_file_suffixes: List[str] = Field(alias="DEFAULT_FILE_SUFFIXES")
    file_suffixes: List[str] = Field(alias="fileSuffixes")
    user_agent: str = Field(alias="userAgent")

    model_config = ConfigDict(populate_by_name=True)


class Diagnostic(BaseModel):
    """LSP diagnostic information.

    Attributes:
        range: Location of the diagnostic
        message: Diagnostic message
        severity: Severity level (1=Error, 2=Warning, 3=Info, 4=Hint)
        source: Source of the diagnostic (e.g., "deepscan")
        code: Rule key reported by the server
    """
    range: Dict[str, Any]
    message: str
    severity: int = 1
    source: Optional[str] = None
    code: Optional[Any] = None

    model_config = ConfigDict(frozen=True)

    def start_line(self) -> int:
        return int(self.range.get("start", {}).get("line", 0))


class DocumentFilter(BaseModel):
    """Document selector entry: a URI scheme plus a glob pattern."""
    scheme: str = "file"
    pattern: str
