"""
MCP gateway for QuickBase

Provides:
- stdio and HTTP transports
- Tool catalogue and dispatch
"""
