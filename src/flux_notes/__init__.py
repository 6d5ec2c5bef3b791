"""
Flux Notes - a local-first store for notes, todos, links and focus sessions.
This package implements the persistence core (SQLite with FTS5 search) and
exposes it through a Model Context Protocol (MCP) server.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("flux-notes")
except PackageNotFoundError:
    __version__ = "0.3.0"
