"""CLI entry point for the DeepScan client.

``deepscan-client inspect FILE`` runs one inspection through the same
coordinator an editor would use, with a console host standing in for the
editor. ``deepscan-client config`` prints the effective settings section.
"""

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .. import __version__

app = typer.Typer(
    name="deepscan-client",
    help="DeepScan client - inspect JavaScript and TypeScript files with a DeepScan server",
    no_args_is_help=True,
    add_completion=False,
)

console = Console()
err_console = Console(stderr=True)

EXIT_CLEAN = 0
EXIT_ISSUES = 1
EXIT_FAILED = 2

LANGUAGE_IDS = {
    ".js": "javascript",
    ".jsx": "javascriptreact",
    ".ts": "typescript",
    ".tsx": "typescriptreact",
    ".vue": "vue",
}

STATUS_COLORS = {
    "lightgreen": "green",
    "yellow": "yellow",
    "darkred": "red",
}

SEVERITY_LABELS = {
    "deepscan-high": ("High", "red"),
    "deepscan-medium": ("Medium", "yellow"),
    "deepscan-low": ("Low", "cyan"),
}


@dataclass
class InspectResult:
    exit_code: int
    status: Optional[object] = None
    decorations: Optional[object] = None


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        console.print(f"deepscan-client {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
):
    """DeepScan client."""


def exit_code_for(status) -> int:
    """0 for ok/none, 1 for warn, 2 for fail or no answer."""
    from ..lsp.protocol import Status

    if status is None or status.state is Status.FAIL:
        return EXIT_FAILED
    if status.state is Status.WARN:
        return EXIT_ISSUES
    return EXIT_CLEAN


def _resolve_target(file: str, root: Path) -> Path:
    target = Path(file)
    if not target.is_absolute():
        target = root / target
    return target.resolve()


async def inspect_file(
    file: str,
    *,
    directory: Optional[str] = None,
    timeout: float = 30.0,
    debug: bool = False,
    log_level: Optional[str] = None,
    log_file: bool = True,
    output: Optional[Console] = None,
) -> InspectResult:
    """Inspect one file and wait for the server's verdict on it."""
    from ..core.bus import Bus
    from ..core.config import ConfigManager
    from ..coordinator import CommandIds, EligibleSuffixes, StatusWaiter, TextDocument, activate
    from ..lsp.client import path_to_uri
    from ..util.log import Log
    from .host import ConsoleHost
    from .logging import bootstrap_logging

    out = output or err_console
    root = Path(directory or Path.cwd()).resolve()
    target = _resolve_target(file, root)

    settings = await ConfigManager.load(str(root))
    bootstrap_logging(settings, level=log_level, file=log_file)
    if debug and Log.file():
        out.print(f"[dim]Log file: {escape(Log.file())}[/dim]")
    # Running the command is the user's consent.
    settings = settings.model_copy(update={"enable": True, "debug": debug or settings.debug})

    try:
        text = target.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        out.print(f"[red]Error:[/red] cannot read {escape(str(target))}: {escape(str(e))}")
        return InspectResult(EXIT_FAILED)

    suffixes = EligibleSuffixes(settings.file_suffixes)
    if not suffixes.contains(str(target)):
        out.print(
            f"[red]Error:[/red] {escape(target.name)} is not a supported file. "
            f"Supported suffixes: {', '.join(suffixes.supported)}"
        )
        return InspectResult(EXIT_FAILED)

    document = TextDocument(
        uri=path_to_uri(str(target)),
        file_name=str(target),
        version=1,
        language_id=LANGUAGE_IDS.get(target.suffix, "plaintext"),
        text=text,
    )

    host = ConsoleHost(str(root), out)
    host.open(document)

    bus = Bus()
    waiter = StatusWaiter(bus, document.uri)
    coordinator = None
    try:
        coordinator = await activate(host, settings, bus=bus)
        if coordinator is None or not coordinator.session.is_running:
            return InspectResult(EXIT_FAILED)
        await host.execute_command(CommandIds.INSPECT)
        status = await waiter.wait(timeout)
        if status is None:
            out.print(f"[red]Error:[/red] no inspection result within {timeout:g}s")
        return InspectResult(
            exit_code_for(status),
            status,
            coordinator.decorations.get(document.uri),
        )
    finally:
        waiter.close()
        if coordinator is not None:
            await coordinator.deactivate()


def print_result(target: str, result: InspectResult) -> None:
    from ..coordinator.status import APPEARANCE

    status = result.status
    if status is None:
        return

    color, tooltip = APPEARANCE[status.state]
    label = escape(tooltip or status.state.value)
    style = STATUS_COLORS.get(color or "")
    if style:
        label = f"[{style}]{label}[/{style}]"
    console.print(f"[bold]{escape(target)}[/bold]: {label}")
    if status.error:
        console.print(f"  [red]{escape(status.error)}[/red]")

    decorations = result.decorations
    if decorations is None or not len(decorations):
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Line", justify="right")
    table.add_column("Severity")
    table.add_column("Message")
    for decoration in decorations.decorations:
        name, style = SEVERITY_LABELS.get(decoration.style, (decoration.style, "white"))
        table.add_row(
            str(decoration.range[0] + 1),
            f"[{style}]{name}[/{style}]",
            escape(decoration.hover_message),
        )
    console.print(table)


@app.command()
def inspect(
    file: str = typer.Argument(..., help="File to inspect"),
    directory: Optional[str] = typer.Option(
        None,
        "--directory",
        "-d",
        help="Workspace directory (defaults to the current directory)",
    ),
    timeout: float = typer.Option(
        30.0,
        "--timeout",
        "-t",
        help="Seconds to wait for the inspection result",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Launch the server in debug mode",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Log level (debug, info, warn, error)",
    ),
    log_file: bool = typer.Option(
        True,
        "--log-file/--no-log-file",
        help="Write a log file",
    ),
):
    """Inspect a file with the DeepScan server."""
    from ..core.config import ConfigError
    from ..util.error import format_error, format_unknown_error

    try:
        result = asyncio.run(inspect_file(
            file,
            directory=directory,
            timeout=timeout,
            debug=debug,
            log_level=log_level,
            log_file=log_file,
        ))
    except ConfigError as e:
        err_console.print(f"[red]Error:[/red] {escape(format_error(e) or format_unknown_error(e))}")
        raise typer.Exit(EXIT_FAILED)

    print_result(file, result)
    raise typer.Exit(result.exit_code)


@app.command()
def config(
    directory: Optional[str] = typer.Option(
        None,
        "--directory",
        "-d",
        help="Workspace directory (defaults to the current directory)",
    ),
    sources: bool = typer.Option(
        False,
        "--sources",
        help="Also list the settings files that were merged",
    ),
):
    """Show the effective settings."""
    from ..core.config import ConfigError, ConfigManager
    from ..util.error import format_error, format_unknown_error

    root = str(Path(directory or Path.cwd()).resolve())

    async def load():
        settings = await ConfigManager.load(root)
        return settings, ConfigManager.sources()

    try:
        settings, files = asyncio.run(load())
    except ConfigError as e:
        err_console.print(f"[red]Error:[/red] {escape(format_error(e) or format_unknown_error(e))}")
        raise typer.Exit(EXIT_FAILED)

    console.print_json(json.dumps(settings.section()))
    if sources:
        if not files:
            console.print("[dim]No settings files found; using defaults[/dim]")
        for path in files:
            console.print(path, highlight=False)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
