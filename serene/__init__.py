"""Serene session/profile core."""

__version__ = "0.3.0"
