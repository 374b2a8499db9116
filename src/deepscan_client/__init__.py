"""DeepScan client - connects editors to a DeepScan inspection server.

The client spawns the DeepScan server, keeps its documents and settings in
sync over the Language Server Protocol and renders the server's inspection
status and findings through an editor host.
"""

__version__ = "0.1.0"

# Lazy imports to avoid circular dependencies
def __getattr__(name: str):
    """Lazy import module components."""
    if name in ("GlobalPath", "Bus", "BusEvent"):
        from . import core
        return getattr(core, name)
    if name in ("ConfigManager", "Settings"):
        from .core import config
        return getattr(config, name)
    if name in ("Log", "OutputChannel"):
        from . import util
        return getattr(util, name)
    if name in ("Session", "SessionOptions", "ServerOptions", "Status", "StatusParams"):
        from . import lsp
        return getattr(lsp, name)
    if name in ("Coordinator", "EditorHost", "activate"):
        from . import coordinator
        return getattr(coordinator, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    # Version
    "__version__",
    # Core
    "GlobalPath",
    "Bus",
    "BusEvent",
    "ConfigManager",
    "Settings",
    "Log",
    "OutputChannel",
    # Transport
    "Session",
    "SessionOptions",
    "ServerOptions",
    "Status",
    "StatusParams",
    # Coordinator
    "Coordinator",
    "EditorHost",
    "activate",
]
