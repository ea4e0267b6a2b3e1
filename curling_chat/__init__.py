"""Curling analytics chat: tool-calling model loop + client-side visualization sync."""

__version__ = "0.1.0"
