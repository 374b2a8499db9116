"""Per-document decorations derived from status notifications.

Every status notification for a URI is a full snapshot: the decoration set
for that URI is rebuilt from scratch and replaces the previous one, and only
that URI is re-rendered. Arrival order therefore does not matter, the last
notification received wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from ..lsp.protocol import Diagnostic, Status, StatusParams
from ..util.log import Log
from .host import EditorHost

log = Log.create({"service": "coordinator.decorations"})

STYLE_HIGH = "deepscan-high"
STYLE_MEDIUM = "deepscan-medium"
STYLE_LOW = "deepscan-low"

DiagnosticsSource = Callable[[str], List[Diagnostic]]


@dataclass(frozen=True)
class Decoration:
    range: Tuple[int, int, int, int]
    style: str
    hover_message: str


@dataclass(frozen=True)
class DecorationSet:
    uri: str
    status: Status
    decorations: Tuple[Decoration, ...] = ()

    def __len__(self) -> int:
        return len(self.decorations)


def _style(severity: int) -> str:
    if severity == 1:
        return STYLE_HIGH
    if severity == 2:
        return STYLE_MEDIUM
    return STYLE_LOW


def _range(diagnostic: Diagnostic) -> Tuple[int, int, int, int]:
    start = diagnostic.range.get("start", {})
    end = diagnostic.range.get("end", start)
    return (
        int(start.get("line", 0)),
        int(start.get("character", 0)),
        int(end.get("line", 0)),
        int(end.get("character", 0)),
    )


def to_decoration(diagnostic: Diagnostic) -> Decoration:
    hover = diagnostic.message
    if diagnostic.code is not None:
        hover = f"{hover} ({diagnostic.code})"
    return Decoration(range=_range(diagnostic), style=_style(diagnostic.severity), hover_message=hover)


def build_decoration_set(params: StatusParams, diagnostics: List[Diagnostic]) -> DecorationSet:
    """Decorations implied by one notification.

    Only ``warn`` carries findings; ``ok``, ``none`` and ``fail`` imply an
    empty set for the document.
    """
    uri = params.uri or ""
    if params.state is not Status.WARN:
        return DecorationSet(uri=uri, status=params.state)
    return DecorationSet(
        uri=uri,
        status=params.state,
        decorations=tuple(to_decoration(d) for d in diagnostics),
    )


class DecorationSynchronizer:
    """Owns the per-URI decoration sets and pushes them to the host."""

    def __init__(self, host: EditorHost, diagnostics: DiagnosticsSource):
        self._host = host
        self._diagnostics = diagnostics
        self._sets: Dict[str, DecorationSet] = {}

    def get(self, uri: str) -> Optional[DecorationSet]:
        return self._sets.get(uri)

    def uris(self) -> List[str]:
        return list(self._sets)

    def on_status(self, params: StatusParams) -> Optional[DecorationSet]:
        uri = params.uri
        if not uri:
            return None

        if not self._host.is_document_open(uri):
            self._sets.pop(uri, None)
            log.debug("status for a document that is not open", {"uri": uri})
            return None

        decoration_set = build_decoration_set(params, self._diagnostics(uri))
        self._sets[uri] = decoration_set
        self._host.set_decorations(uri, decoration_set)
        return decoration_set

    def forget(self, uri: str) -> None:
        """Drop the entry of a closed document."""
        self._sets.pop(uri, None)

    def clear(self) -> None:
        for uri in list(self._sets):
            self._host.set_decorations(uri, DecorationSet(uri=uri, status=Status.NONE))
        self._sets.clear()
