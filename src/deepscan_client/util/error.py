"""Error formatting utilities.

Turns the errors raised by the session and the configuration layer into the
one-line messages shown to users.
"""

import json
import traceback
from typing import Any

from ..core.config_loader import ConfigError
from ..lsp.errors import RequestError, ServerConnectionError, ServerError


def format_error(error: Any) -> str | None:
    """Format known application errors into user-friendly messages.

    Returns None if the error type is not recognized, allowing
    fallback to format_unknown_error.
    """
    if isinstance(error, ServerConnectionError):
        return f"Could not connect to the DeepScan server: {error}"
    if isinstance(error, ServerError):
        return f"The DeepScan server rejected \"{error.method}\" (code {error.code}): {error.message}"
    if isinstance(error, RequestError):
        return f"Request \"{error.method}\" did not complete: {error}"
    if isinstance(error, ConfigError):
        return str(error)
    return None


def format_unknown_error(error: Any) -> str:
    """Format any error into a string representation.

    Handles Exception objects, serializable objects, and primitives.
    """
    if isinstance(error, Exception):
        if error.__traceback__:
            return ''.join(traceback.format_exception(type(error), error, error.__traceback__))
        return f"{error.__class__.__name__}: {str(error)}"

    if isinstance(error, (dict, list)):
        try:
            return json.dumps(error, indent=2)
        except (TypeError, ValueError):
            return "Unexpected error (unserializable)"

    return str(error)
