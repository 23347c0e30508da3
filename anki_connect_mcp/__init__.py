"""
AnkiConnect Model Context Protocol Server

This package provides a Model Context Protocol (MCP) server that exposes
Anki decks, note models and card reviews to MCP clients through the
AnkiConnect add-on's local HTTP API.
"""

from .anki_connect import AnkiConnectClient, AnkiConnectError
from .server import AnkiMCPServer

__version__ = "0.1.0"
__all__ = ["AnkiConnectClient", "AnkiConnectError", "AnkiMCPServer"]
