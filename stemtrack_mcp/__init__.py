"""Stem-tracking MCP Server."""

from .node import StemTrackNode, get_node
from .server import server

__all__ = ["StemTrackNode", "get_node", "server"]
