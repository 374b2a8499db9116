"""Utility modules."""

from .log import Log, OutputChannel

__all__ = ["Log", "OutputChannel"]
