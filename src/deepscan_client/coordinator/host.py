"""Interface of the editor host the coordinator drives.

The host owns rendering: it shows the status indicator, decorations, messages
and previews, and it tells the coordinator about the active document. Anything
satisfying :class:`EditorHost` can host the coordinator; the CLI ships a
console implementation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Protocol

from ..lsp.protocol import DocumentFilter
from ..util.log import OutputChannel


class Disposable(Protocol):
    def dispose(self) -> None: ...


class CallbackDisposable:
    """Disposable that runs a callback once."""

    def __init__(self, callback: Optional[Callable[[], None]] = None):
        self._callback = callback

    def dispose(self) -> None:
        callback, self._callback = self._callback, None
        if callback is not None:
            callback()


@dataclass(frozen=True)
class TextDocument:
    """A document open in the host."""
    uri: str
    file_name: str
    version: int = 0
    language_id: str = "plaintext"
    text: str = ""


@dataclass(frozen=True)
class StatusItem:
    """Snapshot of the status indicator the host renders."""
    text: str
    command: str
    tooltip: Optional[str] = None
    color: Optional[str] = None
    visible: bool = False


class EditorHost(Protocol):
    def workspace_root(self) -> Optional[str]: ...

    def active_document(self) -> Optional[TextDocument]: ...

    def is_document_open(self, uri: str) -> bool: ...

    def update_status_item(self, item: StatusItem) -> None: ...

    def set_status_message(self, text: str) -> Disposable: ...

    def show_error_message(self, text: str) -> None: ...

    def show_warning_message(self, text: str) -> None: ...

    def show_message_request(self, level: str, text: str, *actions: str) -> Awaitable[Optional[str]]: ...

    def set_decorations(self, uri: str, decorations: Any) -> None: ...

    def reveal_output(self, channel: OutputChannel, preserve_focus: bool) -> None: ...

    def show_preview(self, title: str, html: str) -> None: ...

    def register_command(self, command_id: str, handler: Callable[..., Any]) -> Disposable: ...

    def register_code_action_provider(self, selector: List[DocumentFilter], provider: Any) -> Disposable: ...

    def reload_window(self) -> None: ...
