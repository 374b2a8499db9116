"""Client side of the DeepScan server protocol.

Example:
    from deepscan_client.lsp import ServerOptions, Session, SessionOptions

    session = Session("DeepScan", ServerOptions.from_settings(settings), SessionOptions(root="."))
    session.on_notification(STATUS_NOTIFICATION, handle_status, StatusParams)
    await session.start()
    result = await session.send_request("workspace/executeCommand", params)
    await session.stop()
"""

from .client import Session, SessionOptions, SessionState, StateChangeEvent, path_to_uri, uri_to_path
from .error_policy import (
    CloseAction,
    CloseClassification,
    DefaultErrorHandler,
    ErrorAction,
    SessionErrorPolicy,
    classify_close,
)
from .errors import RequestError, ServerConnectionError, ServerError, SessionClosedError
from .protocol import Diagnostic, DocumentFilter, ExitCalledParams, Status, StatusParams
from .server import ServerLaunch, ServerOptions

__all__ = [
    "CloseAction",
    "CloseClassification",
    "DefaultErrorHandler",
    "Diagnostic",
    "DocumentFilter",
    "ErrorAction",
    "ExitCalledParams",
    "RequestError",
    "ServerConnectionError",
    "ServerError",
    "ServerLaunch",
    "ServerOptions",
    "Session",
    "SessionClosedError",
    "SessionErrorPolicy",
    "SessionOptions",
    "SessionState",
    "StateChangeEvent",
    "Status",
    "StatusParams",
    "classify_close",
    "path_to_uri",
    "uri_to_path",
]
