# services/ide-bridge-service/app/mcp_host/warmup.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from app.mcp_host.correlation import CorrelationEngine
from app.mcp_host.errors import UpstreamRpcError
from app.mcp_host.types import ToolCatalog
from app.models.jsonrpc import JsonRpcError, JsonRpcResponse

logger = logging.getLogger("app.mcp.warmup")


class CatalogWarmup:
    """
    Run-once handshake with the local process: initialize, then tools/list.

    Concurrent callers share one in-flight task. The tool list is cached for the
    life of the process and never invalidated; a failed attempt clears the
    in-flight marker so the next caller starts over. After an upstream reconnect
    `mark_stale()` makes the next `ensure_initialized()` repeat `initialize`;
    `ensure_catalog()` keeps serving the cached list regardless.
    """

    def __init__(
        self,
        engine: CorrelationEngine,
        *,
        protocol_version: str = "1.0",
        client_name: str = "ide-bridge-service",
        client_version: str = "1.0.0",
    ) -> None:
        self.engine = engine
        self.protocol_version = protocol_version
        self.client_name = client_name
        self.client_version = client_version

        self._catalog: Optional[ToolCatalog] = None
        self._initialized = False
        self._inflight: Optional["asyncio.Task[ToolCatalog]"] = None

    @property
    def catalog(self) -> Optional[ToolCatalog]:
        return self._catalog

    @property
    def is_ready(self) -> bool:
        return self._catalog is not None and self._initialized

    def mark_stale(self) -> None:
        self._initialized = False

    async def ensure_catalog(self) -> ToolCatalog:
        if self._catalog is not None:
            return self._catalog
        return await self._handshake()

    async def ensure_initialized(self) -> ToolCatalog:
        """
        Like ensure_catalog, but also requires a live `initialize` on the current
        upstream session. Tool calls go through here.
        """
        if self._catalog is not None and self._initialized:
            return self._catalog
        return await self._handshake()

    async def _handshake(self) -> ToolCatalog:
        if self._inflight is None:
            self._inflight = asyncio.create_task(self._run_handshake())
            self._inflight.add_done_callback(self._clear_inflight)
        # shield: one impatient caller must not cancel the shared handshake
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, task: "asyncio.Task[ToolCatalog]") -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Tools catalog warmup failed: %s", task.exception())

    async def _run_handshake(self) -> ToolCatalog:
        logger.info("Warming up tools catalog from local MCP process...")

        init = await self.engine.call("initialize", self._initialize_params())
        _raise_on_error("initialize", init)
        self._initialized = True

        if self._catalog is not None:
            logger.info("Re-initialized upstream session; keeping %d cached tools", len(self._catalog))
            return self._catalog

        listed = await self.engine.call("tools/list", {})
        result = _raise_on_error("tools/list", listed)
        tools = result.get("tools") if isinstance(result, dict) else None
        self._catalog = list(tools) if isinstance(tools, list) else []
        logger.info("Cached %d tools", len(self._catalog))
        return self._catalog

    def _initialize_params(self) -> Dict[str, Any]:
        return {
            "protocolVersion": self.protocol_version,
            "capabilities": {"sse": True, "jsonrpc": True},
            "clientInfo": {"name": self.client_name, "version": self.client_version},
        }


def _raise_on_error(method: str, response: JsonRpcResponse) -> Any:
    if isinstance(response, JsonRpcError):
        raise UpstreamRpcError(method, response.error.to_wire())
    return response.result
