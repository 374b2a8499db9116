from __future__ import annotations

import asyncio
import contextlib
from typing import Any

import pytest

from deepscan_client.lsp import protocol
from deepscan_client.lsp.client import _CLOSED, _RELEASE, Session, SessionOptions, SessionState
from deepscan_client.lsp.error_policy import CloseAction, DefaultErrorHandler, ErrorAction, SessionErrorPolicy
from deepscan_client.lsp.errors import RequestError, ServerConnectionError, ServerError, SessionClosedError
from deepscan_client.lsp.protocol import DocumentFilter, ExitCalledParams, StatusParams
from tests.helpers import RecordingWriter, idle_session, wait_until


class _Policy:
    def __init__(self, close_action: CloseAction = CloseAction.DO_NOT_RESTART) -> None:
        self.close_action = close_action
        self.errors: list[BaseException] = []
        self.closes = 0
        self.successes = 0

    def error(self, error: BaseException, message: Any) -> ErrorAction:
        self.errors.append(error)
        return ErrorAction.CONTINUE

    def closed(self) -> CloseAction:
        self.closes += 1
        return self.close_action

    def record_success(self) -> None:
        self.successes += 1


def _wire(session: Session) -> tuple[asyncio.Queue, RecordingWriter, asyncio.Task]:
    queue: asyncio.Queue = asyncio.Queue()
    writer = RecordingWriter()
    session._queue = queue
    session._loop = asyncio.get_running_loop()
    session._stream_writer = writer  # type: ignore[assignment]
    task = asyncio.create_task(session._dispatch(session.generation, queue))
    return queue, writer, task


async def _settle(queue: asyncio.Queue) -> None:
    await wait_until(queue.empty, timeout=2.0)
    await asyncio.sleep(0.05)


async def _cancel(task: asyncio.Task) -> None:
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


def _status(state: str, uri: str = "file:///work/a.js") -> dict:
    return {"jsonrpc": "2.0", "method": protocol.STATUS_NOTIFICATION, "params": {"state": state, "uri": uri}}


@pytest.mark.anyio
async def test_notifications_held_while_starting_follow_the_running_transition() -> None:
    session = idle_session()
    session.error_handler = _Policy()
    order: list[tuple[str, str]] = []
    session.on_state_change(lambda e: order.append(("state", e.new_state.value)))
    session.on_notification(
        protocol.STATUS_NOTIFICATION,
        lambda p: order.append(("status", p.state.value)),
        StatusParams,
    )

    await session._set_state(SessionState.STARTING)
    session._holding = True
    queue, _, task = _wire(session)

    queue.put_nowait(_status("ok"))
    queue.put_nowait(_status("warn"))
    await _settle(queue)
    assert order == [("state", "starting")]

    await session._set_state(SessionState.RUNNING)
    queue.put_nowait(_RELEASE)
    queue.put_nowait(_status("fail"))
    queue.put_nowait(_CLOSED)
    await asyncio.wait_for(task, timeout=2.0)

    assert order == [
        ("state", "starting"),
        ("state", "running"),
        ("status", "ok"),
        ("status", "warn"),
        ("status", "fail"),
        ("state", "stopped"),
    ]


@pytest.mark.anyio
async def test_exit_called_is_handled_before_the_close_is_classified() -> None:
    session = idle_session()
    reports: list[str] = []
    policy = SessionErrorPolicy(DefaultErrorHandler("DeepScan", reports.append))
    session.error_handler = policy
    exits: list[ExitCalledParams] = []

    def on_exit(params: ExitCalledParams) -> None:
        exits.append(params)
        policy.mark_server_exited()

    session.on_notification(protocol.EXIT_CALLED, on_exit, ExitCalledParams)
    await session._set_state(SessionState.RUNNING)
    queue, _, task = _wire(session)

    queue.put_nowait({"jsonrpc": "2.0", "method": protocol.EXIT_CALLED, "params": [1, "fatal config error"]})
    queue.put_nowait(_CLOSED)
    await asyncio.wait_for(task, timeout=2.0)

    assert exits == [ExitCalledParams(exit_code=1, message="fatal config error")]
    assert session.state is SessionState.STOPPED
    assert not session._background
    assert reports == []


@pytest.mark.anyio
async def test_unexpected_close_restarts_with_a_new_generation() -> None:
    session = idle_session()
    failures: list[ServerConnectionError] = []
    session.options.start_failed_handler = failures.append
    session.error_handler = _Policy(CloseAction.RESTART)
    await session._set_state(SessionState.RUNNING)
    queue, _, task = _wire(session)

    queue.put_nowait(_CLOSED)
    await asyncio.wait_for(task, timeout=2.0)
    await asyncio.gather(*session._background)

    # The restart cannot spawn the missing server, but it is a new session.
    assert session.generation == 1
    assert len(failures) == 1
    assert session.state is SessionState.STOPPED


@pytest.mark.anyio
async def test_close_of_an_older_generation_is_ignored() -> None:
    session = idle_session()
    policy = _Policy(CloseAction.RESTART)
    session.error_handler = policy
    await session._set_state(SessionState.RUNNING)
    session.generation = 3

    await session._on_closed(2)

    assert session.state is SessionState.RUNNING
    assert policy.closes == 0


@pytest.mark.anyio
async def test_handler_errors_go_to_the_policy_and_dispatch_continues() -> None:
    session = idle_session()
    policy = _Policy()
    session.error_handler = policy
    seen: list[str] = []

    def handler(params: StatusParams) -> None:
        if params.state is protocol.Status.FAIL:
            raise ValueError("boom")
        seen.append(params.state.value)

    session.on_notification(protocol.STATUS_NOTIFICATION, handler, StatusParams)
    await session._set_state(SessionState.RUNNING)
    queue, _, task = _wire(session)

    queue.put_nowait(_status("fail"))
    queue.put_nowait(_status("ok"))
    await _settle(queue)
    await _cancel(task)

    assert seen == ["ok"]
    assert [str(e) for e in policy.errors] == ["boom"]
    assert any("Notification handler for deepscan/status failed." in line for line in session.output.lines())


@pytest.mark.anyio
async def test_async_handlers_run_to_completion_in_order() -> None:
    session = idle_session()
    session.error_handler = _Policy()
    seen: list[str] = []

    async def slow(params: StatusParams) -> None:
        await asyncio.sleep(0.02)
        seen.append(f"slow:{params.state.value}")

    session.on_notification(protocol.STATUS_NOTIFICATION, slow, StatusParams)
    await session._set_state(SessionState.RUNNING)
    queue, _, task = _wire(session)

    for state in ("ok", "warn", "none"):
        queue.put_nowait(_status(state))
    await _settle(queue)
    await wait_until(lambda: len(seen) == 3, timeout=2.0)
    await _cancel(task)

    assert seen == ["slow:ok", "slow:warn", "slow:none"]


@pytest.mark.anyio
async def test_responses_resolve_pending_requests() -> None:
    session = idle_session()
    policy = _Policy()
    session.error_handler = policy
    await session._set_state(SessionState.RUNNING)
    queue, writer, task = _wire(session)

    request = asyncio.create_task(session.send_request(protocol.EXECUTE_COMMAND, {"command": "x"}))
    await wait_until(lambda: bool(writer.by_method(protocol.EXECUTE_COMMAND)), timeout=2.0)
    request_id = writer.by_method(protocol.EXECUTE_COMMAND)[0]["id"]
    queue.put_nowait({"jsonrpc": "2.0", "id": request_id, "result": {"done": True}})

    assert await asyncio.wait_for(request, timeout=2.0) == {"done": True}
    assert policy.successes == 1

    failing = asyncio.create_task(session.send_request(protocol.EXECUTE_COMMAND))
    await wait_until(lambda: len(writer.by_method(protocol.EXECUTE_COMMAND)) == 2, timeout=2.0)
    request_id = writer.by_method(protocol.EXECUTE_COMMAND)[1]["id"]
    queue.put_nowait({"jsonrpc": "2.0", "id": request_id, "error": {"code": -32603, "message": "nope"}})

    with pytest.raises(ServerError) as exc:
        await asyncio.wait_for(failing, timeout=2.0)
    assert exc.value.code == -32603
    await _cancel(task)


@pytest.mark.anyio
async def test_close_fails_outstanding_requests() -> None:
    session = idle_session()
    session.error_handler = _Policy()
    await session._set_state(SessionState.RUNNING)
    queue, writer, task = _wire(session)

    request = asyncio.create_task(session.send_request(protocol.EXECUTE_COMMAND))
    await wait_until(lambda: bool(writer.messages), timeout=2.0)
    queue.put_nowait(_CLOSED)

    with pytest.raises(SessionClosedError):
        await asyncio.wait_for(request, timeout=2.0)
    await asyncio.wait_for(task, timeout=2.0)


@pytest.mark.anyio
async def test_server_requests_are_answered() -> None:
    session = idle_session()
    session.error_handler = _Policy()
    session.options.settings = lambda: {"enable": True, "server": "https://example.test"}
    await session._set_state(SessionState.RUNNING)
    queue, writer, task = _wire(session)

    queue.put_nowait({
        "jsonrpc": "2.0",
        "id": 7,
        "method": protocol.WORKSPACE_CONFIGURATION,
        "params": {"items": [{"section": "deepscan"}, {"section": "deepscan.server"}, {"section": "editor"}]},
    })
    queue.put_nowait({"jsonrpc": "2.0", "id": 8, "method": "client/registerCapability", "params": {}})
    queue.put_nowait({"jsonrpc": "2.0", "id": 9, "method": "custom/unknown"})
    await _settle(queue)
    await _cancel(task)

    answers = {m["id"]: m for m in writer.messages}
    assert answers[7]["result"] == [{"enable": True, "server": "https://example.test"}, "https://example.test", None]
    assert answers[8]["result"] is None
    assert answers[9]["error"]["code"] == protocol.METHOD_NOT_FOUND


@pytest.mark.anyio
async def test_log_messages_and_diagnostics_are_recorded() -> None:
    session = idle_session()
    session.error_handler = _Policy()
    await session._set_state(SessionState.RUNNING)
    queue, _, task = _wire(session)

    queue.put_nowait({"jsonrpc": "2.0", "method": protocol.LOG_MESSAGE, "params": {"type": 1, "message": "disk full"}})
    queue.put_nowait({
        "jsonrpc": "2.0",
        "method": protocol.PUBLISH_DIAGNOSTICS,
        "params": {
            "uri": "file:///work/a.js",
            "diagnostics": [{"range": {"start": {"line": 1, "character": 0}}, "message": "m", "code": "R"}],
        },
    })
    await _settle(queue)
    await _cancel(task)

    assert any(line.startswith("[Error - ") and "disk full" in line for line in session.output.lines())
    assert [d.code for d in session.diagnostics("file:///work/a.js")] == ["R"]
    assert session.diagnostics("file:///work/other.js") == []


@pytest.mark.anyio
async def test_documents_outside_the_selector_are_not_synchronized() -> None:
    session = idle_session(selector=[DocumentFilter(pattern="**/*.js")])
    await session._set_state(SessionState.RUNNING)
    session._loop = asyncio.get_running_loop()
    writer = RecordingWriter()
    session._stream_writer = writer  # type: ignore[assignment]

    assert await session.did_open("file:///work/a.js", "javascript", 1, "x") is True
    assert await session.did_open("file:///work/a.js", "javascript", 1, "x") is False
    assert await session.did_open("file:///work/a.py", "python", 1, "x") is False
    assert await session.did_change("file:///work/a.js", 2, "y") is True
    assert await session.did_change("file:///work/b.js", 2, "y") is False
    assert await session.did_close("file:///work/a.js") is True

    methods = [m["method"] for m in writer.messages]
    assert methods == [protocol.DID_OPEN, protocol.DID_CHANGE, protocol.DID_CLOSE]
    assert writer.messages[1]["params"]["contentChanges"] == [{"text": "y"}]


@pytest.mark.anyio
async def test_start_failure_calls_the_handler_once() -> None:
    session = idle_session()
    failures: list[ServerConnectionError] = []
    states: list[str] = []
    session.options.start_failed_handler = failures.append
    session.on_state_change(lambda e: states.append(e.new_state.value))

    with pytest.raises(ServerConnectionError):
        await session.start()

    assert len(failures) == 1
    assert session.state is SessionState.STOPPED
    assert session.generation == 1
    assert states == ["starting", "stopped"]


@pytest.mark.anyio
async def test_stop_is_idempotent_when_stopped() -> None:
    session = idle_session()
    await session.stop()
    await session.stop()
    assert session.state is SessionState.STOPPED


@pytest.mark.anyio
async def test_requests_fail_without_a_connection() -> None:
    session = idle_session()
    with pytest.raises(RequestError):
        await session.send_request(protocol.EXECUTE_COMMAND)


def test_configuration_section_lookup() -> None:
    session = Session("DeepScan", idle_session().server_options, SessionOptions(
        settings=lambda: {"logging": {"level": "debug"}},
    ))
    assert session._configuration_for("deepscan.logging.level") == "debug"
    assert session._configuration_for("deepscan.missing.key") is None
    assert session._configuration_for(None) == {"logging": {"level": "debug"}}
