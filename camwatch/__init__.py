"""Camwatch - a conversational agent for network camera fleets."""

__version__ = "0.1.0"

from camwatch.config import Config

__all__ = ["Config", "__version__"]
