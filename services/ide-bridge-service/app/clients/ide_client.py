# services/ide-bridge-service/app/clients/ide_client.py
from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from app.mcp_host.errors import UpstreamTransportError

logger = logging.getLogger("app.clients.ide")


def _preview(text: str, limit: int = 500) -> str:
    return text if len(text) <= limit else text[:limit] + "...<truncated>"


class IdeUpstreamClient:
    """
    Thin async transport for the local (IDE) MCP server:
      - GET <sse_path> as a long-lived text/event-stream
      - POST JSON-RPC bodies to whatever path the stream announced
    """

    def __init__(
        self,
        *,
        host: str,
        port: int,
        sse_path: str = "/sse",
        post_timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = f"http://{host}:{port}"
        self.sse_path = sse_path
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(post_timeout_seconds),
            headers={"User-Agent": "ide-bridge-service"},
            transport=transport,
        )

    @property
    def stream_url(self) -> str:
        return f"{self.base_url}{self.sse_path}"

    @asynccontextmanager
    async def open_stream(self) -> AsyncIterator[httpx.Response]:
        """
        Open the upstream event stream. The read timeout is disabled: the
        stream is expected to stay idle for long stretches.
        """
        async with self._client.stream(
            "GET",
            self.sse_path,
            headers={"Accept": "text/event-stream"},
            timeout=httpx.Timeout(10.0, read=None),
        ) as resp:
            logger.info(
                "Upstream SSE connected: status=%s content-type=%s",
                resp.status_code,
                resp.headers.get("content-type"),
            )
            if resp.status_code >= 400:
                await resp.aread()
                raise UpstreamTransportError(
                    f"Upstream SSE HTTP {resp.status_code}: {_preview(resp.text, 200)}"
                )
            yield resp

    async def post_message(self, path_with_query: str, body: Dict[str, Any]) -> httpx.Response:
        """
        POST one JSON-RPC body. The reply normally arrives on the stream; the
        HTTP response (often 202 "Accepted") is only logged here.
        """
        try:
            resp = await self._client.post(
                path_with_query,
                content=json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8"),
                headers={"Content-Type": "application/json", "Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise UpstreamTransportError(f"POST {path_with_query} failed: {e!s} ({type(e).__name__})") from e

        logger.info(
            "Upstream POST %s id=%s HTTP %s %s",
            body.get("method"),
            body.get("id"),
            resp.status_code,
            json.dumps(_preview(resp.text)) if resp.text else "",
        )
        if resp.status_code >= 400:
            raise UpstreamTransportError(
                f"Upstream rejected {body.get('method')} with HTTP {resp.status_code}: {_preview(resp.text, 200)}"
            )
        return resp

    async def aclose(self) -> None:
        await self._client.aclose()
