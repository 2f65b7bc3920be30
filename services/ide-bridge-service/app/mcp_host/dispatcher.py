# services/ide-bridge-service/app/mcp_host/dispatcher.py
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from app.mcp_host.errors import (
    INTERNAL_ERROR,
    SERVER_ERROR,
    BridgeError,
    InvalidRequest,
    MethodNotFound,
    UpstreamNotReady,
    UpstreamRpcError,
)
from app.mcp_host.session import BridgeSession
from app.mcp_host.types import ToolCatalog
from app.models.jsonrpc import JsonRpcError, JsonRpcRequest, failure, success

logger = logging.getLogger("app.mcp.dispatcher")

Handler = Callable[[JsonRpcRequest], Awaitable[Any]]


class McpDispatcher:
    """
    Answers one inbound JSON-RPC request on behalf of the local process.

    `initialize`, `ping` and the empty resource/prompt listings are answered
    here; `tools/list` is served from the warmed catalog and tool calls are
    forwarded through the session's correlation engine.
    Always returns a complete JSON-RPC response object.
    """

    def __init__(
        self,
        session: BridgeSession,
        *,
        server_name: str = "ide-bridge-service",
        server_version: str = "1.0.1",
        protocol_version: str = "2025-03-26",
        tool_call_method: str = "call_tool",
        arguments_key: str = "input",
    ) -> None:
        self.session = session
        self.server_name = server_name
        self.server_version = server_version
        self.protocol_version = protocol_version
        self.tool_call_method = tool_call_method
        self.arguments_key = arguments_key

        self._handlers: Dict[str, Handler] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._tools_list,
            "tools/call": self._tools_call,
            "call_tool": self._tools_call,
            "resources/list": self._resources_list,
            "prompts/list": self._prompts_list,
        }

    @classmethod
    def from_settings(cls, session: BridgeSession, settings: Any) -> "McpDispatcher":
        return cls(
            session,
            server_name=settings.service_name,
            server_version=settings.service_version,
            protocol_version=settings.protocol_version,
            tool_call_method=settings.upstream_tool_call_method,
            arguments_key=settings.upstream_arguments_key,
        )

    async def handle(self, request: JsonRpcRequest) -> Dict[str, Any]:
        handler = self._handlers.get(request.method)
        try:
            if handler is None:
                raise MethodNotFound(f"Method not found: {request.method}")
            result = await handler(request)
        except UpstreamRpcError as e:
            # relayed as the local process sent it
            return failure(
                request.id,
                int(e.error.get("code", SERVER_ERROR)),
                str(e.error.get("message") or e.message),
                e.error.get("data"),
            )
        except BridgeError as e:
            logger.info("%s (id=%s) failed: %s", request.method, request.id, e.message)
            return failure(request.id, e.code, e.message, e.data)
        except Exception:
            logger.exception("Unhandled error while handling %s (id=%s)", request.method, request.id)
            return failure(request.id, INTERNAL_ERROR, "Internal error")
        return success(request.id, result)

    # ─────────────────────────────────────────────────────────────
    # Local answers
    # ─────────────────────────────────────────────────────────────

    async def _initialize(self, request: JsonRpcRequest) -> Dict[str, Any]:
        return {
            "protocolVersion": self.protocol_version,
            "capabilities": {"tools": {}, "resources": {}, "prompts": {}},
            "serverInfo": {"name": self.server_name, "version": self.server_version},
        }

    async def _ping(self, request: JsonRpcRequest) -> Dict[str, Any]:
        return {}

    async def _resources_list(self, request: JsonRpcRequest) -> Dict[str, Any]:
        return {"resources": []}

    async def _prompts_list(self, request: JsonRpcRequest) -> Dict[str, Any]:
        return {"prompts": []}

    # ─────────────────────────────────────────────────────────────
    # Forwarded to the local process
    # ─────────────────────────────────────────────────────────────

    async def _catalog(self, *, initialized: bool = False) -> ToolCatalog:
        warmup = self.session.warmup
        try:
            if initialized:
                return await warmup.ensure_initialized()
            return await warmup.ensure_catalog()
        except BridgeError as e:
            raise UpstreamNotReady(f"Tools catalog not ready: {e.message}") from e

    async def _tools_list(self, request: JsonRpcRequest) -> Dict[str, Any]:
        return {"tools": await self._catalog()}

    async def _tools_call(self, request: JsonRpcRequest) -> Any:
        params = request.params if isinstance(request.params, dict) else {}
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise InvalidRequest("Invalid Request: tools/call requires a tool name")
        arguments = _tool_arguments(params)

        await self._catalog(initialized=True)
        logger.info("Forwarding tool call %s to local MCP process", name)
        response = await self.session.engine.call(
            self.tool_call_method,
            {"name": name, self.arguments_key: arguments},
        )
        if isinstance(response, JsonRpcError):
            raise UpstreamRpcError(self.tool_call_method, response.error.to_wire())
        return response.result


def _tool_arguments(params: Dict[str, Any]) -> Dict[str, Any]:
    args: Optional[Any] = params.get("arguments")
    if args is None:
        args = params.get("input")
    return args if isinstance(args, dict) else {}
