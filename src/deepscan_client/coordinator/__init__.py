"""Editor-facing side of the client.

Example:
    from deepscan_client.coordinator import activate

    coordinator = await activate(host)
    await coordinator.document_opened(document)
    ...
    await coordinator.deactivate()
"""

from .commands import CommandIds, CommandSurface
from .coordinator import Coordinator, FatalReporter, StatusWaiter, activate
from .decorations import Decoration, DecorationSet, DecorationSynchronizer
from .host import CallbackDisposable, Disposable, EditorHost, StatusItem, TextDocument
from .status import StatusStateMachine, StatusUpdated
from .suffixes import DEFAULT_FILE_SUFFIXES, EligibleSuffixes

__all__ = [
    "CallbackDisposable",
    "CommandIds",
    "CommandSurface",
    "Coordinator",
    "DEFAULT_FILE_SUFFIXES",
    "Decoration",
    "DecorationSet",
    "DecorationSynchronizer",
    "Disposable",
    "EditorHost",
    "EligibleSuffixes",
    "FatalReporter",
    "StatusItem",
    "StatusStateMachine",
    "StatusUpdated",
    "StatusWaiter",
    "TextDocument",
    "activate",
]
