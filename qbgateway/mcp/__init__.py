"""MCP server, protocol dispatch and transports"""
from .server import QuickBaseMCPServer
from .tools import TOOLS

__all__ = ["QuickBaseMCPServer", "TOOLS"]
