"""Loopwright - an autonomous coding-agent runtime."""

__version__ = "0.1.0"

from loopwright.config import Config

__all__ = ["Config", "__version__"]
