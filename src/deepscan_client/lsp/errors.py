"""Error taxonomy for the transport session."""

from typing import Any, Optional


class ServerConnectionError(ConnectionError):
    """The server process could not be spawned or the channel not established."""


class RequestError(Exception):
    """A request could not be delivered or its response could not be read.

    Raised for transport failures (closed connection, serialization problems)
    as opposed to failures reported by the server.
    """

    def __init__(self, method: str, message: str):
        self.method = method
        super().__init__(f"{method}: {message}")


class SessionClosedError(RequestError):
    """The session closed while the request was outstanding.

    The request belongs to a session that no longer exists; its outcome is
    not the caller's to report.
    """


class ServerError(Exception):
    """The server answered a request with a JSON-RPC error."""

    def __init__(self, method: str, code: int, message: str, data: Optional[Any] = None):
        self.method = method
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"{method} failed ({code}): {message}")
