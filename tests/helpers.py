"""Shared test helpers."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from deepscan_client.coordinator.host import CallbackDisposable, StatusItem, TextDocument
from deepscan_client.core.config import Settings
from deepscan_client.lsp.client import Session, SessionOptions, path_to_uri
from deepscan_client.lsp.protocol import DocumentFilter
from deepscan_client.lsp.server import ServerLaunch, ServerOptions
from deepscan_client.util.log import OutputChannel

FAKE_SERVER = Path(__file__).parent / "lsp" / "fake_server.py"


def fake_server_command(mode: str = "normal") -> List[str]:
    return [sys.executable, str(FAKE_SERVER), mode]


def fake_server_options(mode: str = "normal") -> ServerOptions:
    return ServerOptions(run=ServerLaunch(command=fake_server_command(mode)))


def document(path: str = "/work/app.js", version: int = 1, text: str = "let x = 1;\n") -> TextDocument:
    return TextDocument(
        uri=path_to_uri(path),
        file_name=path,
        version=version,
        language_id="javascript",
        text=text,
    )


def settings(**values: Any) -> Settings:
    return Settings.model_validate(values)


def idle_session(name: str = "DeepScan", selector: Optional[List[DocumentFilter]] = None) -> Session:
    """A session that is never started; the server command does not exist."""
    options = SessionOptions(document_selector=selector or [DocumentFilter(pattern="**/*.js")])
    return Session(name, ServerOptions(run=ServerLaunch(command=["deepscan-test-missing-server"])), options)


class FakeHost:
    """EditorHost that records every call."""

    def __init__(self, root: Optional[str] = "/work", active: Optional[TextDocument] = None):
        self.root = root
        self.active = active
        self.open_uris: set[str] = set()
        if active is not None:
            self.open_uris.add(active.uri)
        self.status_items: List[StatusItem] = []
        self.status_messages: List[str] = []
        self.disposed_status_messages: List[str] = []
        self.errors: List[str] = []
        self.warnings: List[str] = []
        self.requests: List[Tuple[str, str, Tuple[str, ...]]] = []
        self.answers: Dict[str, Optional[str]] = {}
        self.decorations: Dict[str, Any] = {}
        self.decoration_calls: List[Tuple[str, Any]] = []
        self.revealed: List[Tuple[str, bool]] = []
        self.previews: List[Tuple[str, str]] = []
        self.commands: Dict[str, Callable[..., Any]] = {}
        self.providers: List[Tuple[List[DocumentFilter], Any]] = []
        self.reloads = 0

    def open(self, doc: TextDocument, active: bool = True) -> None:
        self.open_uris.add(doc.uri)
        if active:
            self.active = doc

    def close(self, uri: str) -> None:
        self.open_uris.discard(uri)
        if self.active is not None and self.active.uri == uri:
            self.active = None

    @property
    def status_item(self) -> Optional[StatusItem]:
        return self.status_items[-1] if self.status_items else None

    # -- EditorHost --

    def workspace_root(self) -> Optional[str]:
        return self.root

    def active_document(self) -> Optional[TextDocument]:
        return self.active

    def is_document_open(self, uri: str) -> bool:
        return uri in self.open_uris

    def update_status_item(self, item: StatusItem) -> None:
        self.status_items.append(item)

    def set_status_message(self, text: str) -> CallbackDisposable:
        self.status_messages.append(text)
        return CallbackDisposable(lambda: self.disposed_status_messages.append(text))

    def show_error_message(self, text: str) -> None:
        self.errors.append(text)

    def show_warning_message(self, text: str) -> None:
        self.warnings.append(text)

    async def show_message_request(self, level: str, text: str, *actions: str) -> Optional[str]:
        self.requests.append((level, text, actions))
        return self.answers.get(text)

    def set_decorations(self, uri: str, decorations: Any) -> None:
        self.decorations[uri] = decorations
        self.decoration_calls.append((uri, decorations))

    def reveal_output(self, channel: OutputChannel, preserve_focus: bool) -> None:
        self.revealed.append((channel.name, preserve_focus))

    def show_preview(self, title: str, html: str) -> None:
        self.previews.append((title, html))

    def register_command(self, command_id: str, handler: Callable[..., Any]) -> CallbackDisposable:
        self.commands[command_id] = handler
        return CallbackDisposable(lambda: self.commands.pop(command_id, None))

    def register_code_action_provider(self, selector: List[DocumentFilter], provider: Any) -> CallbackDisposable:
        entry = (selector, provider)
        self.providers.append(entry)
        return CallbackDisposable(lambda: self.providers.remove(entry))

    def reload_window(self) -> None:
        self.reloads += 1


async def wait_until(predicate: Callable[[], bool], timeout: float = 10.0, interval: float = 0.02) -> None:
    """Poll ``predicate`` on the event loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(interval)


class RecordingWriter:
    """Stands in for JsonRpcStreamWriter."""

    def __init__(self) -> None:
        self.messages: List[Dict[str, Any]] = []
        self.closed = False

    def write(self, message: Dict[str, Any]) -> None:
        self.messages.append(message)

    def close(self) -> None:
        self.closed = True

    def by_method(self, method: str) -> List[Dict[str, Any]]:
        return [m for m in self.messages if m.get("method") == method]
