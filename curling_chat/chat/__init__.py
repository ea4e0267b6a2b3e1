"""Tool-calling chat over the curling dataset.

This package holds the server side of a chat turn:
- tool catalog and curling tools
- history cleanup and pending tool call resolution
- the streaming multi-step model loop
"""
