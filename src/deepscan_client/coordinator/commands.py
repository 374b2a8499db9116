"""Editor-invokable commands."""

from __future__ import annotations

from typing import Any, Optional

from ..lsp.client import Session
from ..lsp.errors import RequestError, ServerError, SessionClosedError
from ..lsp.protocol import EXECUTE_COMMAND, ExecuteCommandParams, VersionedTextDocumentIdentifier
from ..util.log import Log
from .host import EditorHost

log = Log.create({"service": "coordinator.commands"})

INSPECT_FAILED = "Failed to inspect. Please consider opening an issue with steps to reproduce."


class CommandIds:
    INSPECT = "deepscan.inspect"
    SHOW_OUTPUT = "deepscan.showOutput"
    SHOW_RULE = "deepscan.showRule"
    # Executed by the server
    TRY_INSPECT = "deepscan.tryInspect"


class CommandSurface:
    """Commands that talk to the server through the session."""

    def __init__(self, host: EditorHost, session: Session):
        self._host = host
        self._session = session

    async def inspect(self) -> Optional[Any]:
        """Ask the server to inspect the active document.

        Does nothing without an active document. A failed request shows one
        error, unless the session closed or was restarted meanwhile; the
        answer then belongs to a session that no longer exists and is dropped.
        The close itself is reported by the error policy.
        """
        document = self._host.active_document()
        if document is None:
            return None

        identifier = VersionedTextDocumentIdentifier(uri=document.uri, version=document.version)
        params = ExecuteCommandParams(
            command=CommandIds.TRY_INSPECT,
            arguments=[identifier.model_dump()],
        )

        generation = self._session.generation
        try:
            return await self._session.send_request(EXECUTE_COMMAND, params.model_dump())
        except SessionClosedError:
            log.info("dropping request of a closed session", {"uri": document.uri})
            return None
        except (RequestError, ServerError) as e:
            if self._session.generation != generation:
                log.info("dropping failure from a previous session", {"uri": document.uri})
                return None
            log.error("Server failed", {"uri": document.uri, "error": str(e)})
            self._session.error("Inspection request failed.", str(e))
            self._host.show_error_message(INSPECT_FAILED)
            return None

    def show_output(self) -> None:
        self._session.output.show()
