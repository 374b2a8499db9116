"""Transport session with the DeepScan server.

The session owns the server process and the JSON-RPC channel over its stdio.
A reader thread parses frames with ``pylsp_jsonrpc`` and hands every message
to the event loop through a queue; one dispatcher task drains that queue, so
responses, notifications and the final "connection closed" signal are all
handled on the loop, one at a time, in receipt order.
"""

import asyncio
import os
import subprocess
from contextvars import Context, copy_context
from dataclasses import dataclass, field
from enum import Enum
from fnmatch import fnmatch
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Type, Union
from urllib.parse import quote, unquote, urlparse

from pydantic import BaseModel
from pylsp_jsonrpc.streams import JsonRpcStreamReader, JsonRpcStreamWriter

from ..core.bus import Bus, BusEvent, EventPayload
from ..util.log import Log, OutputChannel
from . import protocol
from .error_policy import CloseAction, DefaultErrorHandler, ErrorAction, ErrorHandler
from .errors import RequestError, ServerConnectionError, ServerError, SessionClosedError
from .server import ServerHandle, ServerOptions

log = Log.create({"service": "lsp.client"})

INITIALIZE_TIMEOUT = 45.0
SHUTDOWN_TIMEOUT = 2.0
TERMINATE_TIMEOUT = 5.0


class SessionState(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"


class StateChangeEvent(BaseModel):
    """Properties for the session state change event."""
    old_state: SessionState
    new_state: SessionState
    generation: int


SessionStateChanged = BusEvent.define("session.state_changed", StateChangeEvent)

NotificationHandler = Callable[[Any], Union[None, Awaitable[None]]]
StateChangeHandler = Callable[[StateChangeEvent], Union[None, Awaitable[None]]]

# Queue markers
_CLOSED = object()
_RELEASE = object()

_NO_RESULT_REQUESTS = {
    "client/registerCapability",
    "client/unregisterCapability",
    "window/workDoneProgress/create",
}


def path_to_uri(path: str) -> str:
    """Convert a file path to a file URI."""
    path = os.path.abspath(path)
    if os.name == "nt":
        path = "/" + path.replace("\\", "/")
    return "file://" + quote(path, safe="/:")


def uri_to_path(uri: str) -> str:
    """Convert a file URI to a file path."""
    path = unquote(urlparse(uri).path)
    if os.name == "nt" and path.startswith("/"):
        path = path[1:]
    return os.path.normpath(path)


@dataclass
class SessionOptions:
    """Client-side options fixed for the lifetime of a session.

    Attributes:
        document_selector: Documents synchronized with the server
        initialization_options: Produces ``initializationOptions`` at each start
        configuration_section: Settings section synchronized to the server
        settings: Produces the current settings section
        start_failed_handler: Called once when ``start()`` fails
        root: Workspace root directory
        debug: Launch the server in debug mode
    """
    document_selector: List[protocol.DocumentFilter] = field(default_factory=list)
    initialization_options: Callable[[], Dict[str, Any]] = dict
    configuration_section: str = "deepscan"
    settings: Callable[[], Dict[str, Any]] = dict
    start_failed_handler: Optional[Callable[[ServerConnectionError], None]] = None
    initialize_timeout: float = INITIALIZE_TIMEOUT
    root: Optional[str] = None
    debug: bool = False


class Session:
    """Live connection to the DeepScan server.

    ``generation`` increases on every start; callers compare it before
    applying the result of a request to drop answers from an older session.
    """

    def __init__(
        self,
        name: str,
        server_options: ServerOptions,
        options: Optional[SessionOptions] = None,
        *,
        bus: Optional[Bus] = None,
    ):
        self.name = name
        self.server_options = server_options
        self.options = options or SessionOptions()
        self.bus = bus or Bus()
        self.output = OutputChannel(name)
        self.generation = 0
        self.capabilities: Dict[str, Any] = {}
        self._log = log.to_channel(self.output)
        self.error_handler: ErrorHandler = self.create_default_error_handler(self._log.error)
        self._state = SessionState.STOPPED
        self._server: Optional[ServerHandle] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_context: Context | None = None
        self._queue: Optional[asyncio.Queue] = None
        self._stream_reader: Optional[JsonRpcStreamReader] = None
        self._stream_writer: Optional[JsonRpcStreamWriter] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._dispatch_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._request_id = 0
        self._pending: Dict[int, Tuple[str, asyncio.Future]] = {}
        self._handlers: Dict[str, List[NotificationHandler]] = {}
        self._holding = False
        self._held: List[Dict[str, Any]] = []
        self._stopping = False
        self._handshake_done = asyncio.Event()
        self._diagnostics: Dict[str, List[protocol.Diagnostic]] = {}
        self._open_documents: Dict[str, int] = {}
        self._background: Set[asyncio.Task] = set()

    # -- State --

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SessionState.RUNNING

    def create_default_error_handler(self, report: Callable[[str], None]) -> DefaultErrorHandler:
        return DefaultErrorHandler(self.name, report, output_name=self.output.name)

    def on_state_change(self, handler: StateChangeHandler) -> Callable[[], None]:
        """Register a handler called once per state transition."""
        def callback(payload: EventPayload) -> Union[None, Awaitable[None]]:
            return handler(StateChangeEvent.model_validate(payload.properties))

        return self.bus.subscribe(SessionStateChanged, callback)

    def on_notification(
        self,
        method: str,
        handler: NotificationHandler,
        params_type: Optional[Type[BaseModel]] = None,
    ) -> Callable[[], None]:
        """Register a handler for a server notification.

        When ``params_type`` is given, the params are validated into that
        model before the handler sees them.
        """
        if params_type is not None:
            raw = handler

            def handler(params: Any) -> Union[None, Awaitable[None]]:
                return raw(params_type.model_validate(params))

        handlers = self._handlers.setdefault(method, [])
        handlers.append(handler)

        def unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    async def _set_state(self, new_state: SessionState) -> None:
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state
        log.info("state changed", {"from": old_state.value, "to": new_state.value})
        await self.bus.publish(
            SessionStateChanged,
            StateChangeEvent(old_state=old_state, new_state=new_state, generation=self.generation),
        )

    # -- Output --

    def info(self, message: str, data: Any = None) -> None:
        self._log.info(message, {"data": data} if data is not None else None)

    def error(self, message: str, data: Any = None) -> None:
        self._log.error(message, {"data": data} if data is not None else None)

    # -- Lifecycle --

    async def start(self) -> None:
        """Spawn the server and run the initialize handshake.

        Raises:
            ServerConnectionError: if the process cannot be spawned or the
                handshake fails. The session is stopped afterwards.
        """
        if self._state is not SessionState.STOPPED:
            return

        self.generation += 1
        self._loop = asyncio.get_running_loop()
        self._loop_context = copy_context()
        self._queue = asyncio.Queue()
        self._holding = True
        self._held = []
        self._stopping = False
        self._handshake_done = asyncio.Event()
        self._diagnostics.clear()
        self._open_documents.clear()
        await self._set_state(SessionState.STARTING)

        try:
            self._server = self.server_options.spawn(self.options.debug, cwd=self.options.root)
        except ServerConnectionError as e:
            await self._start_failed(e)
            raise

        process = self._server.process
        self._stream_reader = JsonRpcStreamReader(process.stdout)
        self._stream_writer = JsonRpcStreamWriter(process.stdin)
        self._reader_task = asyncio.create_task(self._read_messages(self._queue))
        self._dispatch_task = asyncio.create_task(self._dispatch(self.generation, self._queue))
        if process.stderr is not None:
            self._stderr_task = asyncio.create_task(self._drain_stderr(process.stderr))

        try:
            await self._handshake()
        finally:
            self._handshake_done.set()
        self._log.info(f"{self.name} server is running.")

    async def _handshake(self) -> None:
        try:
            result = await asyncio.wait_for(
                self.send_request(protocol.INITIALIZE, self._initialize_params()),
                timeout=self.options.initialize_timeout,
            )
            if isinstance(result, dict):
                self.capabilities = result.get("capabilities") or {}
            await self.send_notification(protocol.INITIALIZED, {})
        except (asyncio.TimeoutError, RequestError, ServerError) as e:
            error = ServerConnectionError(
                f"{self.name} server initialization failed: {str(e) or 'timed out'}"
            )
            if self._stopping:
                raise error from e
            await self._teardown()
            await self._start_failed(error)
            raise error from e

        await self._set_state(SessionState.RUNNING)
        self._queue.put_nowait(_RELEASE)

    async def _start_failed(self, error: ServerConnectionError) -> None:
        self._log.error(f"{self.name} server initialization failed.", {"error": error})
        await self._set_state(SessionState.STOPPED)
        if self.options.start_failed_handler is not None:
            self.options.start_failed_handler(error)

    async def _restart(self) -> None:
        try:
            await self.start()
        except ServerConnectionError as e:
            log.error("restart failed", {"error": str(e)})

    async def stop(self) -> None:
        """Shut the server down. Outstanding requests fail with RequestError."""
        if self._state is SessionState.STOPPED:
            return

        self._stopping = True
        if self._state is SessionState.RUNNING:
            try:
                await asyncio.wait_for(self.send_request(protocol.SHUTDOWN), timeout=SHUTDOWN_TIMEOUT)
                await self.send_notification(protocol.EXIT)
            except (asyncio.TimeoutError, RequestError, ServerError) as e:
                self._log.warn("server did not shut down cleanly", {"error": e})

        with log.time("teardown", {"generation": self.generation}):
            await self._teardown()
        await self._set_state(SessionState.STOPPED)
        self._log.info(f"{self.name} server stopped.")

    async def _teardown(self) -> None:
        writer, self._stream_writer = self._stream_writer, None
        if writer is not None:
            try:
                writer.close()
            except OSError as e:
                log.debug("closing server stdin failed", {"error": str(e)})

        server, self._server = self._server, None
        if server is not None:
            await self._terminate(server.process)

        current = asyncio.current_task()
        for task in (self._dispatch_task, self._stderr_task):
            if task is not None and task is not current and not task.done():
                task.cancel()

        reader_task, self._reader_task = self._reader_task, None
        if reader_task is not None and not reader_task.done():
            reader_task.cancel()
            try:
                await asyncio.wait_for(reader_task, timeout=1.0)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                pass

        self._dispatch_task = None
        self._stderr_task = None
        self._stream_reader = None
        self._fail_pending(f"{self.name} server connection closed")
        self._open_documents.clear()

    async def _terminate(self, process: subprocess.Popen) -> None:
        if process.poll() is not None:
            return
        process.terminate()
        try:
            await asyncio.to_thread(process.wait, TERMINATE_TIMEOUT)
        except subprocess.TimeoutExpired:
            process.kill()
            try:
                await asyncio.to_thread(process.wait, 1)
            except subprocess.TimeoutExpired:
                log.error("server process did not exit", {"pid": process.pid})

    def _fail_pending(self, reason: str) -> None:
        pending, self._pending = self._pending, {}
        for method, future in pending.values():
            if not future.done():
                future.set_exception(SessionClosedError(method, reason))

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _initialize_params(self) -> Dict[str, Any]:
        root = self.options.root or os.getcwd()
        root_uri = path_to_uri(root)
        return {
            "processId": os.getpid(),
            "clientInfo": {"name": self.name},
            "rootUri": root_uri,
            "workspaceFolders": [
                {"name": os.path.basename(root) or root, "uri": root_uri}
            ],
            "initializationOptions": self.options.initialization_options(),
            "capabilities": {
                "workspace": {
                    "configuration": True,
                    "didChangeConfiguration": {"dynamicRegistration": False},
                    "executeCommand": {"dynamicRegistration": False},
                },
                "textDocument": {
                    "synchronization": {"didSave": False},
                    "publishDiagnostics": {"versionSupport": True},
                },
            },
        }

    # -- Reading --

    async def _read_messages(self, queue: asyncio.Queue) -> None:
        """Read messages from the server until the stream closes."""
        if not self._stream_reader:
            return

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                self._stream_reader.listen,
                partial(self._consume_message_from_reader_thread, queue),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("Error reading server messages", {"error": str(e)})
        queue.put_nowait(_CLOSED)

    def _consume_message_from_reader_thread(self, queue: asyncio.Queue, message: Dict[str, Any]) -> None:
        """Bridge reader-thread messages into the asyncio event loop."""
        if not self._loop or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(queue.put_nowait, message, context=self._loop_context)

    async def _drain_stderr(self, stream: Any) -> None:
        loop = asyncio.get_running_loop()
        while True:
            line = await loop.run_in_executor(None, stream.readline)
            if not line:
                return
            self.output.append_line(line.decode("utf-8", errors="replace"))

    async def _dispatch(self, generation: int, queue: asyncio.Queue) -> None:
        while True:
            item = await queue.get()
            if item is _CLOSED:
                await self._on_closed(generation)
                return
            if item is _RELEASE:
                await self._release_held()
                continue
            try:
                await self._handle_message(item)
            except RequestError as e:
                log.warn("could not answer server message", {"error": str(e)})
            except Exception as e:
                self._log.error("Error handling server message", {"error": e})
                await self._report_error(e, item)

    async def _release_held(self) -> None:
        self._holding = False
        held, self._held = self._held, []
        for message in held:
            await self._handle_notification(message["method"], message.get("params"))

    async def _on_closed(self, generation: int) -> None:
        if self._stopping or generation != self.generation:
            return

        self._fail_pending(f"{self.name} server connection closed")
        if self._state is SessionState.STARTING:
            # A failed handshake tears the session down itself.
            await self._handshake_done.wait()
            if self._state is not SessionState.RUNNING or self._stopping:
                return

        # Everything received before the close is handled before it is classified.
        await self._release_held()

        exit_code = self._server.process.poll() if self._server else None
        self._log.error(f"Connection to {self.name} server got closed.", {"exit_code": exit_code})
        await self._teardown()
        await self._set_state(SessionState.STOPPED)

        action = self.error_handler.closed()
        if action is CloseAction.RESTART:
            self._log.info(f"Restarting {self.name} server.")
            self._spawn(self._restart())
        else:
            self._log.error(f"{self.name} server will not be restarted.")

    async def _report_error(self, error: BaseException, message: Optional[Dict[str, Any]]) -> None:
        action = self.error_handler.error(error, message)
        if action is ErrorAction.SHUTDOWN and not self._stopping:
            self._log.error(f"Shutting down {self.name} server after repeated errors.")
            self._spawn(self.stop())

    # -- Message handling --

    async def _handle_message(self, message: Dict[str, Any]) -> None:
        """Handle an incoming message from the server.

        Args:
            message: Parsed JSON-RPC message
        """
        if "method" not in message:
            self._handle_response(message)
            return

        method = message["method"]
        params = message.get("params")

        if "id" in message:
            await self._handle_server_request(message["id"], method, params)
        elif self._holding:
            self._held.append(message)
        else:
            await self._handle_notification(method, params)

    def _handle_response(self, message: Dict[str, Any]) -> None:
        entry = self._pending.get(message.get("id"))
        if entry is None:
            log.debug("dropping response for unknown request", {"id": message.get("id")})
            return

        method, future = entry
        if future.done():
            return

        error = message.get("error")
        if error is not None:
            if not isinstance(error, dict):
                error = {"message": str(error)}
            future.set_exception(ServerError(
                method,
                error.get("code", protocol.INTERNAL_ERROR),
                error.get("message", "Unknown error"),
                error.get("data"),
            ))
        else:
            future.set_result(message.get("result"))

    async def _handle_server_request(self, request_id: Any, method: str, params: Any) -> None:
        if method == protocol.WORKSPACE_CONFIGURATION:
            items = (params or {}).get("items", [])
            await self._send_response(request_id, [
                self._configuration_for(item.get("section")) for item in items
            ])
        elif method in _NO_RESULT_REQUESTS:
            await self._send_response(request_id, None)
        else:
            await self._send_message({
                "jsonrpc": "2.0",
                "id": request_id,
                "error": {"code": protocol.METHOD_NOT_FOUND, "message": f"Unhandled method {method}"},
            })

    def _configuration_for(self, section: Optional[str]) -> Any:
        settings = self.options.settings()
        own = self.options.configuration_section
        if not section or section == own:
            return settings
        if section.startswith(own + "."):
            value: Any = settings
            for key in section[len(own) + 1:].split("."):
                value = value.get(key) if isinstance(value, dict) else None
            return value
        return None

    async def _handle_notification(self, method: str, params: Any) -> None:
        try:
            if method == protocol.PUBLISH_DIAGNOSTICS:
                self._store_diagnostics(params or {})
            elif method == protocol.LOG_MESSAGE:
                self._log_server_message(params or {})

            for handler in list(self._handlers.get(method, [])):
                result = handler(params)
                if hasattr(result, "__await__"):
                    await result
        except Exception as e:
            self._log.error(f"Notification handler for {method} failed.", {"error": e})
            await self._report_error(e, {"method": method, "params": params})

    def _store_diagnostics(self, params: Dict[str, Any]) -> None:
        uri = params.get("uri", "")
        diagnostics = [
            protocol.Diagnostic.model_validate(d)
            for d in params.get("diagnostics", [])
        ]
        log.debug("textDocument/publishDiagnostics", {"uri": uri, "count": len(diagnostics)})
        self._diagnostics[uri] = diagnostics

    def _log_server_message(self, params: Dict[str, Any]) -> None:
        message = params.get("message", "")
        kind = params.get("type", 4)
        if kind == 1:
            self._log.error(message)
        elif kind == 2:
            self._log.warn(message)
        elif kind == 3:
            self._log.info(message)
        else:
            self._log.debug(message)

    def diagnostics(self, uri: str) -> List[protocol.Diagnostic]:
        """Latest diagnostic snapshot published for ``uri``."""
        return list(self._diagnostics.get(uri, []))

    # -- Writing --

    async def send_request(self, method: str, params: Any = None) -> Any:
        """Send a request and wait for its response.

        Raises:
            RequestError: the request could not be delivered or the
                connection closed before the response arrived.
            ServerError: the server answered with an error.
        """
        if self._stream_writer is None or self._loop is None:
            raise RequestError(method, f"{self.name} server is not running")

        self._request_id += 1
        request_id = self._request_id
        message: Dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            message["params"] = params

        future: asyncio.Future = self._loop.create_future()
        self._pending[request_id] = (method, future)
        try:
            await self._send_message(message)
            result = await future
        finally:
            self._pending.pop(request_id, None)

        self.error_handler.record_success()
        return result

    async def send_notification(self, method: str, params: Any = None) -> None:
        message: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        await self._send_message(message)

    async def _send_response(self, request_id: Any, result: Any) -> None:
        await self._send_message({"jsonrpc": "2.0", "id": request_id, "result": result})

    async def _send_message(self, message: Dict[str, Any]) -> None:
        writer = self._stream_writer
        method = message.get("method", "response")
        if writer is None:
            raise RequestError(method, f"{self.name} server is not running")

        try:
            await asyncio.get_running_loop().run_in_executor(None, writer.write, message)
        except (OSError, ValueError) as e:
            await self._report_error(e, message)
            raise RequestError(method, str(e)) from e

    async def notify_configuration_changed(self) -> None:
        """Push the settings section to the server."""
        if not self.is_running:
            return
        await self.send_notification(protocol.DID_CHANGE_CONFIGURATION, {
            "settings": {self.options.configuration_section: self.options.settings()},
        })

    # -- Document synchronization --

    def matches(self, uri: str) -> bool:
        """Whether ``uri`` is inside the document selector of this session."""
        parsed = urlparse(uri)
        path = unquote(parsed.path)
        return any(
            parsed.scheme == selector.scheme and fnmatch(path, selector.pattern)
            for selector in self.options.document_selector
        )

    async def did_open(self, uri: str, language_id: str, version: int, text: str) -> bool:
        if not self.is_running or uri in self._open_documents or not self.matches(uri):
            return False
        await self.send_notification(protocol.DID_OPEN, {
            "textDocument": {
                "uri": uri,
                "languageId": language_id,
                "version": version,
                "text": text,
            },
        })
        self._open_documents[uri] = version
        return True

    async def did_change(self, uri: str, version: int, text: str) -> bool:
        if not self.is_running or uri not in self._open_documents:
            return False
        self._open_documents[uri] = version
        await self.send_notification(protocol.DID_CHANGE, {
            "textDocument": {"uri": uri, "version": version},
            "contentChanges": [{"text": text}],
        })
        return True

    async def did_close(self, uri: str) -> bool:
        if uri not in self._open_documents:
            return False
        del self._open_documents[uri]
        if self.is_running:
            await self.send_notification(protocol.DID_CLOSE, {"textDocument": {"uri": uri}})
        return True
