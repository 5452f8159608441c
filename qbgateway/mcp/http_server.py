#!/usr/bin/env python3
"""
QuickBase MCP HTTP Server - SSE / streamable HTTP transport

Features:
- MCP streamable HTTP at /mcp (JSON or SSE response)
- MCP SSE at /mcp/sse with messages posted to /mcp/message
- Health and tool listing at /health and /api/tools

Usage:
    python -m qbgateway.mcp.http_server

    Or with environment variables:
    HOST=0.0.0.0 PORT=8090 SERVER_URL=https://mcp.example.com python -m qbgateway.mcp.http_server
"""

import asyncio
import json
import logging
import os
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from qbgateway.mcp.protocol import INTERNAL_ERROR, PARSE_ERROR, SERVER_INFO, dispatch, error_response
from qbgateway.mcp.server import QuickBaseMCPServer

logger = logging.getLogger(__name__)

# =============================================================================
# CONFIGURATION
# =============================================================================

SERVER_URL = os.environ.get("SERVER_URL", "http://localhost:8090")
KEEPALIVE_SECONDS = 30


# =============================================================================
# MCP SSE ENDPOINTS
# =============================================================================

async def mcp_sse_endpoint(request):
    """SSE endpoint for MCP protocol."""
    session_id = str(uuid.uuid4())
    logger.info(f"MCP SSE: New connection, session={session_id}")

    async def event_generator():
        # Tell the client where to post messages
        endpoint_url = f"{SERVER_URL}/mcp/message?session_id={session_id}"
        yield f"event: endpoint\ndata: {endpoint_url}\n\n"

        try:
            while True:
                await asyncio.sleep(KEEPALIVE_SECONDS)
                yield ": keepalive\n\n"
        except asyncio.CancelledError:
            logger.info(f"MCP SSE: Connection closed, session={session_id}")
            raise

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"
        }
    )


async def _read_message(request):
    try:
        return await request.json()
    except (ValueError, UnicodeDecodeError):
        return None


async def _dispatch(request, data):
    try:
        return await dispatch(request.app.state.mcp, data)
    except Exception as e:
        logger.error(f"MCP request failed: {e}")
        msg_id = data.get("id") if isinstance(data, dict) else None
        return error_response(msg_id, INTERNAL_ERROR, f"Internal error: {e}")


async def mcp_message_endpoint(request):
    """Handle MCP JSON-RPC messages."""
    data = await _read_message(request)
    if data is None:
        return JSONResponse(error_response(None, PARSE_ERROR, "Parse error"), status_code=400)

    session_id = request.query_params.get("session_id", "default")
    logger.info(f"MCP Message: method={data.get('method') if isinstance(data, dict) else None}, session={session_id}")

    response = await _dispatch(request, data)
    if response is None:
        return Response(status_code=202)
    return JSONResponse(response)


async def mcp_streamable_http(request):
    """Streamable HTTP endpoint for MCP."""
    if request.method == "GET":
        return await mcp_sse_endpoint(request)

    data = await _read_message(request)
    if data is None:
        return JSONResponse(error_response(None, PARSE_ERROR, "Parse error"), status_code=400)

    response = await _dispatch(request, data)
    if response is None:
        return Response(status_code=202)

    # SSE response if requested
    if "text/event-stream" in request.headers.get("accept", ""):
        async def sse_response():
            yield f"event: message\ndata: {json.dumps(response)}\n\n"
        return StreamingResponse(sse_response(), media_type="text/event-stream")

    return JSONResponse(response)


# =============================================================================
# API ENDPOINTS
# =============================================================================

async def health_check(request):
    """Health check endpoint."""
    tools = request.app.state.mcp.get_tools()
    return JSONResponse({
        "status": "ok",
        "service": SERVER_INFO["name"],
        "version": SERVER_INFO["version"],
        "tools_count": len(tools),
        "timestamp": datetime.now(timezone.utc).isoformat()
    })


async def api_tools(request):
    """List available tools."""
    tools = request.app.state.mcp.get_tools()
    return JSONResponse({
        "tools": tools,
        "count": len(tools)
    })


def create_app(server: Optional[QuickBaseMCPServer] = None) -> Starlette:
    routes = [
        # Health & Info
        Route('/health', health_check),
        Route('/api/tools', api_tools),

        # MCP endpoints
        Route('/mcp/sse', mcp_sse_endpoint),
        Route('/mcp/message', mcp_message_endpoint, methods=['POST']),
        Route('/mcp', mcp_streamable_http, methods=['GET', 'POST']),
    ]

    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=['*'],
            allow_methods=['*'],
            allow_headers=['*']
        )
    ]

    mcp_server = server or QuickBaseMCPServer()

    @asynccontextmanager
    async def lifespan(app):
        yield
        await mcp_server.close()

    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.mcp = mcp_server
    return app


# =============================================================================
# MAIN
# =============================================================================

def main():
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s'
    )

    host = os.environ.get("HOST", "127.0.0.1")
    port = int(os.environ.get("PORT", 8090))

    app = create_app()

    logger.info("=" * 60)
    logger.info(f"QuickBase MCP HTTP Server v{SERVER_INFO['version']}")
    logger.info("=" * 60)
    logger.info(f"Tools: {len(app.state.mcp.get_tools())}")
    logger.info(f"MCP: http://{host}:{port}/mcp")
    logger.info(f"MCP SSE: http://{host}:{port}/mcp/sse")
    logger.info(f"Health: http://{host}:{port}/health")
    logger.info("=" * 60)

    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
