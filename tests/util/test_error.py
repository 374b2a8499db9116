from __future__ import annotations

from deepscan_client.core.config_loader import ConfigError
from deepscan_client.lsp.errors import RequestError, ServerConnectionError, ServerError
from deepscan_client.util.error import format_error, format_unknown_error


def test_format_error_known_errors() -> None:
    assert format_error(ServerConnectionError("cannot spawn 'deepscan-server'")) == (
        "Could not connect to the DeepScan server: cannot spawn 'deepscan-server'"
    )
    assert format_error(ServerError("workspace/executeCommand", -32603, "internal")) == (
        "The DeepScan server rejected \"workspace/executeCommand\" (code -32603): internal"
    )
    assert format_error(RequestError("initialize", "connection closed")) == (
        "Request \"initialize\" did not complete: initialize: connection closed"
    )
    error = ConfigError("/work/.deepscan.json", "bad value")
    assert format_error(error) == str(error)


def test_format_error_unknown_returns_none() -> None:
    assert format_error(ValueError("boom")) is None


def test_format_unknown_error() -> None:
    assert format_unknown_error(ValueError("boom")) == "ValueError: boom"
    assert format_unknown_error({"a": 1}) == '{\n  "a": 1\n}'
    assert format_unknown_error(42) == "42"
