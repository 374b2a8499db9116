"""Coordinator-wide inspection status and the status indicator.

The server is authoritative: every ``deepscan/status`` notification replaces
the current status outright. The indicator's colour and tooltip follow the
status; its visibility is recomputed from (status, session running, active
document) after every change and is never stored.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from ..core.bus import Bus, BusEvent
from ..lsp.client import SessionState, StateChangeEvent
from ..lsp.protocol import Status, StatusParams
from ..util.log import Log
from .host import Disposable, EditorHost, StatusItem, TextDocument
from .suffixes import EligibleSuffixes

log = Log.create({"service": "coordinator.status"})

STATUS_TEXT = "DeepScan"
RUNNING_TOOLTIP = "DeepScan server is running."
STOPPED_TOOLTIP = "DeepScan server stopped."

# status -> (color, tooltip); None keeps the current value
APPEARANCE = {
    Status.NONE: (None, None),
    Status.OK: ("lightgreen", "Issue-free!"),
    Status.WARN: ("yellow", "Issue(s) detected!"),
    Status.FAIL: ("darkred", "Inspection failed!"),
}


class StatusUpdatedProps(BaseModel):
    """Properties for the status updated event."""
    status: Status
    uri: Optional[str] = None
    error: Optional[str] = None


StatusUpdated = BusEvent.define("status.updated", StatusUpdatedProps)


def failure_banner(error: Optional[str]) -> str:
    return f"A problem occurred communicating with DeepScan server. ({error})"


def indicator_visible(
    running: bool,
    status: Status,
    document: Optional[TextDocument],
    suffixes: EligibleSuffixes,
) -> bool:
    """Visible iff running and (failed or the document is eligible)."""
    if not running:
        return False
    if status is Status.FAIL:
        return True
    return document is not None and suffixes.contains(document.file_name)


class StatusCell:
    """The single current status. Only ``apply`` writes it."""

    __slots__ = ("_status",)

    def __init__(self, initial: Status = Status.NONE):
        self._status = initial

    def apply(self, params: StatusParams) -> Status:
        self._status = params.state
        return self._status

    def current(self) -> Status:
        return self._status


class StatusStateMachine:
    """Drives the status indicator and the transient failure banner."""

    def __init__(
        self,
        host: EditorHost,
        suffixes: EligibleSuffixes,
        *,
        command: str,
        bus: Optional[Bus] = None,
    ):
        self._host = host
        self._suffixes = suffixes
        self._command = command
        self._bus = bus or Bus()
        self._cell = StatusCell()
        self._running = False
        self._color: Optional[str] = None
        self._tooltip: Optional[str] = None
        self._banner: Optional[Disposable] = None

    def current(self) -> Status:
        return self._cell.current()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def banner_visible(self) -> bool:
        return self._banner is not None

    def visible(self, document: Optional[TextDocument] = None) -> bool:
        if document is None:
            document = self._host.active_document()
        return indicator_visible(self._running, self.current(), document, self._suffixes)

    def item(self, document: Optional[TextDocument] = None) -> StatusItem:
        return StatusItem(
            text=STATUS_TEXT,
            command=self._command,
            tooltip=self._tooltip,
            color=self._color,
            visible=self.visible(document),
        )

    def refresh(self, document: Optional[TextDocument] = None) -> StatusItem:
        item = self.item(document)
        self._host.update_status_item(item)
        return item

    def clear_banner(self) -> None:
        banner, self._banner = self._banner, None
        if banner is not None:
            banner.dispose()

    async def apply(self, params: StatusParams) -> Status:
        """Replace the current status with ``params.state``."""
        self.clear_banner()

        status = self._cell.apply(params)
        color, tooltip = APPEARANCE[status]
        self._color = color
        if tooltip is not None:
            self._tooltip = tooltip

        if status is Status.FAIL:
            self._banner = self._host.set_status_message(failure_banner(params.error))

        log.debug("status applied", {"status": status.value, "uri": params.uri})
        self.refresh()
        await self._bus.publish(
            StatusUpdated,
            StatusUpdatedProps(status=status, uri=params.uri, error=params.error),
        )
        return status

    def on_state_change(self, event: StateChangeEvent) -> None:
        self._running = event.new_state is SessionState.RUNNING
        self._tooltip = RUNNING_TOOLTIP if self._running else STOPPED_TOOLTIP
        self.refresh()
