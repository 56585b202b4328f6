"""Marionette: browser-control tools over MCP."""

__version__ = "0.1.0"
