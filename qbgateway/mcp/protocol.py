"""
MCP JSON-RPC 2.0 dispatch shared by the stdio and HTTP transports
"""
import json
import logging
from typing import Any, Dict, Optional

from qbcore import __version__

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"

SERVER_INFO = {
    "name": "quickbase-mcp",
    "version": __version__,
    "description": "QuickBase CRUD, relationships, reports and codepage lifecycle tools",
}

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


def error_response(msg_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": msg_id, "error": {"code": code, "message": message}}


def tool_content(result: Any) -> Dict[str, Any]:
    return {"content": [{"type": "text", "text": json.dumps(result, indent=2, default=str)}]}


def tool_error(error: Exception) -> Dict[str, Any]:
    return {"content": [{"type": "text", "text": f"Error: {error}"}], "isError": True}


async def dispatch(server, message: Any) -> Optional[Dict[str, Any]]:
    """Handle one JSON-RPC message; returns None for notifications."""
    if not isinstance(message, dict) or not isinstance(message.get("method"), str):
        return error_response(None, INVALID_REQUEST, "Invalid Request")

    method = message["method"]
    msg_id = message.get("id")
    is_notification = "id" not in message
    params = message.get("params")
    if params is None:
        params = {}
    if not isinstance(params, dict):
        if is_notification:
            return None
        return error_response(msg_id, INVALID_REQUEST, "Invalid Request: params must be an object")

    if method == "initialize":
        result = {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": SERVER_INFO,
        }
    elif method == "tools/list":
        result = {"tools": server.get_tools()}
    elif method == "tools/call":
        name = params.get("name", "")
        if not isinstance(name, str):
            return error_response(msg_id, INVALID_PARAMS, "Invalid params: name must be a string")
        try:
            result = tool_content(await server.handle_tool(name, params.get("arguments") or {}))
        except Exception as e:
            logger.error(f"Tool error in {name}: {e}")
            result = tool_error(e)
    elif method == "ping":
        result = {}
    elif is_notification:
        return None
    else:
        return error_response(msg_id, METHOD_NOT_FOUND, f"Method not found: {method}")

    if is_notification:
        return None
    return {"jsonrpc": "2.0", "id": msg_id, "result": result}
