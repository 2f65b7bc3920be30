# services/ide-bridge-service/app/api/routers/mcp_routes.py
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict

import orjson
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse, ORJSONResponse
from sse_starlette.sse import EventSourceResponse

from app.api.deps import require_auth
from app.auth.gate import AuthContext
from app.mcp_host.dispatcher import McpDispatcher
from app.mcp_host.errors import INTERNAL_ERROR, METHOD_NOT_FOUND, PARSE_ERROR, InvalidRequest
from app.models.jsonrpc import JsonRpcNotification, JsonRpcRequest, failure, parse_message

logger = logging.getLogger("app.api.mcp")

KEEPALIVE_SECONDS = 15
NOTIFICATION_PREFIX = "notifications/"


def rpc_response(body: Dict[str, Any], status_code: int = 200) -> Response:
    """
    Render a JSON-RPC response object. Tool results are opaque, so anything
    orjson refuses (integers past 64 bits, very deep nesting) is rendered with
    the stdlib encoder instead; if that fails too the caller gets -32603.
    """
    try:
        return ORJSONResponse(body, status_code=status_code)
    except orjson.JSONEncodeError as e:
        logger.debug("orjson could not encode response id=%r (%s); using json", body.get("id"), e)
    try:
        return JSONResponse(body, status_code=status_code)
    except (TypeError, ValueError, RecursionError):
        logger.exception("Response id=%r could not be serialized", body.get("id"))
    return ORJSONResponse(
        failure(body.get("id"), INTERNAL_ERROR, "Internal error: response could not be serialized"),
        status_code=status_code,
    )


async def endpoint_events(
    post_path: str,
    is_disconnected: Callable[[], Awaitable[bool]],
    *,
    poll_seconds: float = 1.0,
) -> AsyncIterator[Dict[str, Any]]:
    """
    Announce where JSON-RPC bodies are POSTed, then hold the stream open
    (sse-starlette sends the keepalive comments) until the client leaves.
    """
    yield {"event": "endpoint", "data": post_path}
    while not await is_disconnected():
        await asyncio.sleep(poll_seconds)


def build_router(mcp_path: str = "/sse") -> APIRouter:
    router = APIRouter(tags=["mcp"])

    @router.get(mcp_path, summary="MCP event stream")
    async def open_stream(request: Request, auth: AuthContext = Depends(require_auth)) -> EventSourceResponse:
        logger.info("Agent host opened event stream (sub=%s)", auth.subject)
        return EventSourceResponse(
            endpoint_events(mcp_path, request.is_disconnected),
            ping=KEEPALIVE_SECONDS,
        )

    @router.post(mcp_path, summary="MCP JSON-RPC endpoint")
    async def post_message(request: Request, auth: AuthContext = Depends(require_auth)) -> Response:
        raw = await request.body()
        try:
            obj = json.loads(raw)
        except (ValueError, RecursionError):
            logger.info("Rejected non-JSON body (%d bytes)", len(raw))
            return ORJSONResponse(failure(None, PARSE_ERROR, "Parse error"), status_code=400)

        try:
            message = parse_message(obj)
        except InvalidRequest as e:
            rid = obj.get("id") if isinstance(obj, dict) else None
            if not isinstance(rid, (int, str)) or isinstance(rid, bool):
                rid = None
            return rpc_response(failure(rid, e.code, e.message), status_code=400)

        if isinstance(message, JsonRpcNotification):
            if message.method.startswith(NOTIFICATION_PREFIX):
                logger.debug("Notification %s acknowledged", message.method)
                return Response(status_code=204)
            # only notifications/* may omit the id
            return rpc_response(failure(None, METHOD_NOT_FOUND, f"Method not found: {message.method}"))

        if not isinstance(message, JsonRpcRequest):
            # the bridge never issues requests to the agent host
            logger.debug("Ignoring unsolicited JSON-RPC response from agent host")
            return Response(status_code=202)

        dispatcher: McpDispatcher = request.app.state.dispatcher
        return rpc_response(await dispatcher.handle(message))

    return router
