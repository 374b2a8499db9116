"""Console editor host.

Renders what an editor would show (status indicator, messages, decorations,
previews) as rich console output. Prompts are never answered: the console is
not interactive, so every message request resolves to no choice.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Tuple

from rich.console import Console
from rich.markup import escape

from ..coordinator.host import CallbackDisposable, Disposable, StatusItem, TextDocument
from ..lsp.protocol import DocumentFilter
from ..util.log import Log, OutputChannel

log = Log.create({"service": "cli.host"})


class ConsoleHost:
    """EditorHost implementation backed by a rich console."""

    def __init__(self, root: str, console: Optional[Console] = None):
        self.root = root
        self.console = console or Console(stderr=True)
        self.documents: Dict[str, TextDocument] = {}
        self.active: Optional[TextDocument] = None
        self.status_item: Optional[StatusItem] = None
        self.decorations: Dict[str, Any] = {}
        self.commands: Dict[str, Callable[..., Any]] = {}
        self.code_action_providers: List[Tuple[List[DocumentFilter], Any]] = []
        self.messages: List[Tuple[str, str]] = []

    # -- Documents --

    def open(self, document: TextDocument) -> None:
        self.documents[document.uri] = document
        self.active = document

    def close(self, uri: str) -> None:
        self.documents.pop(uri, None)
        if self.active is not None and self.active.uri == uri:
            self.active = None

    # -- EditorHost --

    def workspace_root(self) -> Optional[str]:
        return self.root

    def active_document(self) -> Optional[TextDocument]:
        return self.active

    def is_document_open(self, uri: str) -> bool:
        return uri in self.documents

    def update_status_item(self, item: StatusItem) -> None:
        previous, self.status_item = self.status_item, item
        if previous == item:
            return
        log.debug("status item", {"visible": item.visible, "tooltip": item.tooltip, "color": item.color})

    def set_status_message(self, text: str) -> Disposable:
        self.messages.append(("status", text))
        self.console.print(f"[dim]{escape(text)}[/dim]")
        return CallbackDisposable()

    def show_error_message(self, text: str) -> None:
        self.messages.append(("error", text))
        self.console.print(f"[red]Error:[/red] {escape(text)}")

    def show_warning_message(self, text: str) -> None:
        self.messages.append(("warning", text))
        self.console.print(f"[yellow]Warning:[/yellow] {escape(text)}")

    async def show_message_request(self, level: str, text: str, *actions: str) -> Optional[str]:
        self.messages.append((level, text))
        self.console.print(f"[dim]{escape(text)}[/dim]")
        return None

    def set_decorations(self, uri: str, decorations: Any) -> None:
        self.decorations[uri] = decorations

    def reveal_output(self, channel: OutputChannel, preserve_focus: bool) -> None:
        self.console.rule(channel.name)
        for line in channel.lines():
            self.console.print(escape(line), highlight=False)
        self.console.rule()

    def show_preview(self, title: str, html: str) -> None:
        self.console.print(f"[bold]{escape(title)}[/bold]")
        self.console.print(html, markup=False, highlight=False)

    def register_command(self, command_id: str, handler: Callable[..., Any]) -> Disposable:
        self.commands[command_id] = handler
        return CallbackDisposable(lambda: self.commands.pop(command_id, None))

    def register_code_action_provider(self, selector: List[DocumentFilter], provider: Any) -> Disposable:
        entry = (selector, provider)
        self.code_action_providers.append(entry)

        def remove() -> None:
            if entry in self.code_action_providers:
                self.code_action_providers.remove(entry)

        return CallbackDisposable(remove)

    def reload_window(self) -> None:
        log.info("reload requested; restart the command to pick up new settings")

    async def execute_command(self, command_id: str, *args: Any) -> Any:
        handler = self.commands.get(command_id)
        if handler is None:
            raise KeyError(command_id)
        result = handler(*args)
        if hasattr(result, "__await__"):
            result = await result
        return result
