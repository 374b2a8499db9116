"""Coordinator: keeps an editor host in sync with the DeepScan server.

Activation builds one :class:`~deepscan_client.lsp.client.Session` and hooks
the status state machine, the decoration synchronizer and the commands onto
it. Configuration changes flow through :meth:`Coordinator.change_configuration`.

The document selector of the session is computed from the eligible suffixes
once, when the coordinator is created. Later suffix changes update the
indicator immediately but reach the session only after the host reloads;
the user is prompted for that.
"""

from __future__ import annotations

import asyncio
from typing import Callable, List, Optional, Set

from .. import __version__
from ..core.bus import Bus, EventPayload
from ..core.config import ConfigError, ConfigManager, SECTION, Settings
from ..lsp.client import Session, SessionOptions, SessionState, StateChangeEvent
from ..lsp.error_policy import SessionErrorPolicy
from ..lsp.errors import RequestError, ServerConnectionError
from ..lsp.protocol import (
    EXIT_CALLED,
    STATUS_NOTIFICATION,
    ExitCalledParams,
    InitializationOptions,
    StatusParams,
)
from ..lsp.server import ServerOptions
from ..util.log import Log
from .actions import DisableRulesCodeActionProvider, ShowRuleCodeActionProvider
from .commands import CommandIds, CommandSurface
from .decorations import DecorationSynchronizer
from .host import Disposable, EditorHost, TextDocument
from .resources import ResourceError, RuleCatalog, load_rule_catalog, load_stylesheet, resources_dir
from .status import StatusStateMachine, StatusUpdated
from .suffixes import DEFAULT_FILE_SUFFIXES, EligibleSuffixes

log = Log.create({"service": "coordinator"})

NAME = "DeepScan"
USER_AGENT = f"deepscan-client/{__version__}"

RELOAD_NOW = "Reload Now"
CONFIRM = "Confirm"
NEVER_SHOW_AGAIN = "Don't show again"

SUFFIX_RESTART_PROMPT = "Restart before the new 'deepscan.fileSuffixes' setting will take affect."
CONSENT_PROMPT = "Allow the DeepScan extension to transfer your code to the DeepScan server for inspection."
SHUT_DOWN_MESSAGE = "DeepScan server shut down. See 'DeepScan' output channel for details."
START_FAILED_MESSAGE = "DeepScan server failed to start. See 'DeepScan' output channel for details."


class FatalReporter:
    """Shows at most one fatal error per session generation."""

    def __init__(self, host: EditorHost, generation: Callable[[], int]):
        self._host = host
        self._generation = generation
        self._reported: Set[int] = set()

    def report(self, message: str) -> bool:
        generation = self._generation()
        if generation in self._reported:
            log.debug("fatal error already reported", {"generation": generation, "message": message})
            return False
        self._reported.add(generation)
        self._host.show_error_message(message)
        return True


class Coordinator:
    """Owns the session and everything that renders its findings."""

    def __init__(
        self,
        host: EditorHost,
        settings: Settings,
        *,
        extension_path: Optional[str] = None,
        session: Optional[Session] = None,
        bus: Optional[Bus] = None,
    ):
        self.host = host
        self.settings = settings
        self.extension_path = extension_path
        self.bus = bus or Bus()
        self.suffixes = EligibleSuffixes(settings.file_suffixes)

        self.session = session or self._create_session()
        self.session.options.start_failed_handler = self._on_start_failed
        self.session.output.on_reveal(host.reveal_output)

        self.reporter = FatalReporter(host, lambda: self.session.generation)
        self.policy = SessionErrorPolicy(self.session.create_default_error_handler(self.reporter.report))
        self.session.error_handler = self.policy

        self.status = StatusStateMachine(host, self.suffixes, command=CommandIds.SHOW_OUTPUT, bus=self.bus)
        self.decorations = DecorationSynchronizer(host, self.session.diagnostics)
        self.commands = CommandSurface(host, self.session)

        self.catalog = RuleCatalog()
        self.style = ""
        self.show_rule_provider = ShowRuleCodeActionProvider(self.catalog)
        self.disable_rules_provider = DisableRulesCodeActionProvider()

        self._disposables: List[Disposable] = []
        self._unsubscribe: List[Callable[[], None]] = [
            self.session.on_state_change(self.status.on_state_change),
            self.session.on_state_change(self._on_state_change),
            self.session.on_notification(STATUS_NOTIFICATION, self._on_status, StatusParams),
            self.session.on_notification(EXIT_CALLED, self._on_exit_called, ExitCalledParams),
        ]

    def _create_session(self) -> Session:
        options = SessionOptions(
            document_selector=self.suffixes.document_selector(),
            initialization_options=self._initialization_options,
            configuration_section=SECTION,
            settings=lambda: self.settings.section(),
            root=self.host.workspace_root(),
            debug=self.settings.debug,
        )
        return Session(NAME, ServerOptions.from_settings(self.settings), options, bus=self.bus)

    def _initialization_options(self) -> dict:
        return InitializationOptions(
            server=self.settings.server,
            default_file_suffixes=list(DEFAULT_FILE_SUFFIXES),
            file_suffixes=list(self.settings.file_suffixes),
            user_agent=USER_AGENT,
        ).model_dump(by_alias=True)

    # -- Lifecycle --

    async def activate(self) -> None:
        self.status.refresh()
        self._load_resources()
        self._register_commands()
        await self._apply_enablement()
        await self.check_setting()

    async def deactivate(self) -> None:
        for disposable in reversed(self._disposables):
            disposable.dispose()
        self._disposables.clear()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        self.status.clear_banner()
        await self.session.stop()

    async def _apply_enablement(self) -> None:
        if self.settings.enable:
            if self.session.state is SessionState.STOPPED:
                self.policy.reset()
                try:
                    await self.session.start()
                except ServerConnectionError as e:
                    log.error("server did not start", {"error": str(e)})
                    return
                document = self.host.active_document()
                if document is not None:
                    await self.document_opened(document)
        elif self.session.state is not SessionState.STOPPED:
            await self.session.stop()

    def _load_resources(self) -> None:
        directory = resources_dir(self.extension_path)
        try:
            self.catalog = load_rule_catalog(directory)
        except ResourceError as e:
            self.host.show_warning_message(f"Can't read or parse rule definitions: {e}")
        try:
            self.style = load_stylesheet(directory)
        except ResourceError as e:
            self.host.show_warning_message(f"Can't read a style: {e}")

        self.show_rule_provider = ShowRuleCodeActionProvider(self.catalog, self.style)

    def _register_commands(self) -> None:
        selector = self.session.options.document_selector
        self._disposables.extend([
            self.host.register_command(CommandIds.INSPECT, self.commands.inspect),
            self.host.register_command(CommandIds.SHOW_OUTPUT, self.commands.show_output),
            self.host.register_command(CommandIds.SHOW_RULE, self.show_rule),
            self.host.register_code_action_provider(selector, self.show_rule_provider),
            self.host.register_code_action_provider(selector, self.disable_rules_provider),
        ])

    # -- Server notifications --

    def _on_state_change(self, event: StateChangeEvent) -> None:
        # Findings of a stopped server are stale.
        if event.new_state is SessionState.STOPPED:
            self.decorations.clear()

    async def _on_status(self, params: StatusParams) -> None:
        await self.status.apply(params)
        self.decorations.on_status(params)

    def _on_exit_called(self, params: ExitCalledParams) -> None:
        self.policy.mark_server_exited()
        self.session.error(
            f"Server process exited with code {params.exit_code}. "
            "This usually indicates a misconfigured setup.",
            params.message,
        )
        self.reporter.report(SHUT_DOWN_MESSAGE)

    def _on_start_failed(self, error: ServerConnectionError) -> None:
        self.session.error("Server initialization failed.", str(error))
        self.session.output.show(preserve_focus=True)
        self.reporter.report(START_FAILED_MESSAGE)

    # -- Host events --

    def active_document_changed(self, document: Optional[TextDocument]) -> None:
        self.status.refresh(document)

    async def document_opened(self, document: TextDocument) -> None:
        try:
            await self.session.did_open(document.uri, document.language_id, document.version, document.text)
        except RequestError as e:
            log.warn("could not synchronize opened document", {"uri": document.uri, "error": str(e)})

    async def document_changed(self, document: TextDocument) -> None:
        try:
            await self.session.did_change(document.uri, document.version, document.text)
        except RequestError as e:
            log.warn("could not synchronize changed document", {"uri": document.uri, "error": str(e)})

    async def document_closed(self, uri: str) -> None:
        self.decorations.forget(uri)
        try:
            await self.session.did_close(uri)
        except RequestError as e:
            log.warn("could not synchronize closed document", {"uri": uri, "error": str(e)})

    def show_rule(self, key: str) -> None:
        page = self.show_rule_provider.render(key)
        if page is None:
            log.warn("unknown rule", {"key": key})
            return
        self.host.show_preview(f"DeepScan rule: {key}", page)

    # -- Configuration --

    async def change_configuration(self, settings: Optional[Settings] = None) -> None:
        """Apply new settings.

        Without ``settings`` the current ones are reloaded from disk. A
        settings file that fails to load leaves the current settings in
        effect.
        """
        if settings is None:
            ConfigManager.reset()
            try:
                settings = await ConfigManager.get()
            except ConfigError as e:
                log.warn("keeping current settings", {"error": str(e)})
                self.host.show_warning_message(str(e))
                return

        self.status.clear_banner()
        previous, self.settings = self.settings, settings

        suffixes_changed = self.suffixes.update(settings.file_suffixes)
        self.status.refresh()

        try:
            await self.session.notify_configuration_changed()
        except RequestError as e:
            log.warn("could not push settings", {"error": str(e)})

        if previous.enable != settings.enable:
            await self._apply_enablement()

        if suffixes_changed:
            choice = await self.host.show_message_request("info", SUFFIX_RESTART_PROMPT, RELOAD_NOW)
            if choice == RELOAD_NOW:
                self.host.reload_window()

    async def check_setting(self) -> None:
        """Ask for consent before any code is sent to the server."""
        if self.settings.ignore_confirm_warning or self.settings.enable:
            return

        choice = await self.host.show_message_request("warning", CONSENT_PROMPT, CONFIRM, NEVER_SHOW_AGAIN)
        if choice == CONFIRM:
            updates = {"enable": True}
        elif choice == NEVER_SHOW_AGAIN:
            updates = {"ignoreConfirmWarning": True}
        else:
            return

        try:
            settings = await ConfigManager.update(updates)
        except ConfigError as e:
            self.host.show_warning_message(str(e))
            return
        await self.change_configuration(settings)


async def activate(
    host: EditorHost,
    settings: Optional[Settings] = None,
    *,
    extension_path: Optional[str] = None,
    bus: Optional[Bus] = None,
) -> Optional[Coordinator]:
    """Create and activate a coordinator; None without a workspace."""
    root = host.workspace_root()
    if not root:
        return None

    if settings is None:
        settings = await ConfigManager.load(root)

    coordinator = Coordinator(host, settings, extension_path=extension_path, bus=bus)
    await coordinator.activate()
    log.info("activated", {"version": __version__, "root": root})
    return coordinator


class StatusWaiter:
    """Captures the first status notification about one URI.

    Create it before the document is opened so an early answer is not missed.
    """

    def __init__(self, bus: Bus, uri: str):
        self.uri = uri
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._unsubscribe = bus.subscribe(StatusUpdated, self._on_update)

    def _on_update(self, payload: EventPayload) -> None:
        props = payload.properties
        if props.get("uri") == self.uri and not self._future.done():
            self._future.set_result(StatusParams(state=props["status"], uri=self.uri, error=props.get("error")))

    async def wait(self, timeout: float) -> Optional[StatusParams]:
        try:
            return await asyncio.wait_for(asyncio.shield(self._future), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            self.close()

    def close(self) -> None:
        self._unsubscribe()
