"""Hookcast - scheduled Discord webhook messages."""

__version__ = "0.1.0"
