"""Error and restart policy for the server connection.

The session consults an :class:`ErrorHandler` when the transport misbehaves
(``error``) and when the connection closes unexpectedly (``closed``).
:class:`DefaultErrorHandler` bounds both: consecutive transport errors and
crash restarts within a time window. :class:`SessionErrorPolicy` adds the one
DeepScan rule on top: a server that announced its own exit is never
restarted.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Callable, List, Optional, Protocol

from ..util.log import Log

log = Log.create({"service": "lsp.error_policy"})

MAX_CONSECUTIVE_ERRORS = 3
MAX_RESTART_COUNT = 5
RESTART_WINDOW_SECONDS = 180.0


class ErrorAction(str, Enum):
    CONTINUE = "continue"
    SHUTDOWN = "shutdown"


class CloseAction(str, Enum):
    RESTART = "restart"
    DO_NOT_RESTART = "do_not_restart"


class CloseClassification(str, Enum):
    DO_NOT_RESTART = "do_not_restart"
    DEFER_TO_DEFAULT = "defer_to_default"


def classify_close(self_exited: bool) -> CloseClassification:
    """Classify a connection close.

    A server that reported its own exit is misconfigured; restarting it would
    only hide that.
    """
    if self_exited:
        return CloseClassification.DO_NOT_RESTART
    return CloseClassification.DEFER_TO_DEFAULT


class ErrorHandler(Protocol):
    def error(self, error: BaseException, message: Optional[dict]) -> ErrorAction: ...

    def closed(self) -> CloseAction: ...

    def record_success(self) -> None: ...


class DefaultErrorHandler:
    """Bounded error and restart handling.

    Args:
        name: Server display name used in user-facing messages
        report: Called once with a user-facing message on every fatal decision
        output_name: Output channel the messages point to
        clock: Monotonic clock, replaceable in tests
    """

    def __init__(
        self,
        name: str,
        report: Callable[[str], None],
        *,
        output_name: Optional[str] = None,
        max_errors: int = MAX_CONSECUTIVE_ERRORS,
        max_restart_count: int = MAX_RESTART_COUNT,
        restart_window: float = RESTART_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.output_name = output_name or name
        self._report = report
        self._max_errors = max_errors
        self._max_restart_count = max_restart_count
        self._restart_window = restart_window
        self._clock = clock
        self._errors = 0
        self._restarts: List[float] = []

    @property
    def consecutive_errors(self) -> int:
        return self._errors

    def _pointer(self) -> str:
        return f"See '{self.output_name}' output channel for details."

    def error(self, error: BaseException, message: Optional[dict]) -> ErrorAction:
        self._errors += 1
        if self._errors <= self._max_errors:
            log.warn("transport error", {"error": error, "count": self._errors})
            return ErrorAction.CONTINUE

        self._report(
            f"The {self.name} server failed {self._errors} times in a row "
            f"and will be shut down. {self._pointer()}"
        )
        return ErrorAction.SHUTDOWN

    def record_success(self) -> None:
        self._errors = 0

    def closed(self) -> CloseAction:
        self._restarts.append(self._clock())
        if len(self._restarts) < self._max_restart_count:
            return CloseAction.RESTART

        elapsed = self._restarts[-1] - self._restarts[0]
        if elapsed <= self._restart_window:
            minutes = int(self._restart_window // 60)
            self._report(
                f"The {self.name} server crashed {self._max_restart_count} times in the last "
                f"{minutes} minutes. The server will not be restarted. {self._pointer()}"
            )
            return CloseAction.DO_NOT_RESTART

        self._restarts.pop(0)
        return CloseAction.RESTART


class SessionErrorPolicy:
    """Default policy plus the self-reported exit rule."""

    def __init__(self, default: ErrorHandler):
        self.default = default
        self.server_exited = False

    def mark_server_exited(self) -> None:
        self.server_exited = True

    def reset(self) -> None:
        self.server_exited = False

    def error(self, error: BaseException, message: Optional[dict]) -> ErrorAction:
        return self.default.error(error, message)

    def record_success(self) -> None:
        self.default.record_success()

    def closed(self) -> CloseAction:
        if classify_close(self.server_exited) is CloseClassification.DO_NOT_RESTART:
            log.info("server exited on its own; not restarting")
            return CloseAction.DO_NOT_RESTART
        return self.default.closed()
