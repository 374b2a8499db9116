"""Core infrastructure modules."""

from .global_paths import GlobalPath
from .bus import Bus, BusEvent

__all__ = ["GlobalPath", "Bus", "BusEvent"]

# Settings are exported from .config; importing them here would create an
# import cycle through util.log.
