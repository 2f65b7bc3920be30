# services/ide-bridge-service/app/mcp_host/discovery.py
from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional
from urllib.parse import urlsplit

from app.mcp_host.errors import EndpointNotDiscovered

logger = logging.getLogger("app.mcp.discovery")

DISCOVERY_EVENT = "endpoint"

# Keys the local process may use when it announces the endpoint as a JSON object
_ENDPOINT_ALIAS_KEYS = ("uri", "url", "endpoint", "path")


def normalize_endpoint(value: Optional[str]) -> Optional[str]:
    """
    Reduce an announced endpoint to the path (+ query) we POST to.

      "http://h/p?q=1" -> "/p?q=1"
      "rel/path"       -> "/rel/path"
      "/abs"           -> "/abs"
      "" / "   "       -> None
    """
    s = (value or "").strip()
    if not s:
        return None

    if s.lower().startswith(("http://", "https://")):
        try:
            parts = urlsplit(s)
        except ValueError:
            return None
        if not parts.netloc:
            return None
        path = parts.path or "/"
        return f"{path}?{parts.query}" if parts.query else path

    if s.startswith("/"):
        return s
    return "/" + s


def parse_endpoint_data(data_text: Optional[str]) -> Optional[str]:
    """
    The endpoint event payload is either a JSON object carrying one of the alias
    keys, or the endpoint string itself.
    """
    raw = (data_text or "").strip()
    if not raw:
        return None

    if raw.startswith("{"):
        try:
            obj = json.loads(raw)
        except ValueError:
            obj = None
        if isinstance(obj, dict):
            for key in _ENDPOINT_ALIAS_KEYS:
                candidate = obj.get(key)
                if isinstance(candidate, str):
                    return normalize_endpoint(candidate)
            return None

    return normalize_endpoint(raw)


class EndpointSlot:
    """
    Holds the discovered POST path for the local process.

    Waiters are released by a one-shot event the moment the path is set; the
    slot is cleared when the upstream stream goes away and re-armed on the
    next discovery.
    """

    def __init__(self) -> None:
        self._path: Optional[str] = None
        self._ready = asyncio.Event()

    @property
    def path(self) -> Optional[str]:
        return self._path

    @property
    def is_set(self) -> bool:
        return self._path is not None

    def set(self, path: str) -> None:
        if self._path != path:
            logger.info("Discovered upstream POST endpoint: %s", path)
        self._path = path
        self._ready.set()

    def clear(self) -> None:
        self._path = None
        self._ready.clear()

    def offer(self, data_text: str) -> Optional[str]:
        """
        Apply an endpoint event payload. Returns the new path, or None when the
        payload could not be parsed (slot left as it was).
        """
        candidate = parse_endpoint_data(data_text)
        if candidate is None:
            logger.warning("Endpoint event but could not parse data: %r", (data_text or "")[:200])
            return None
        self.set(candidate)
        return candidate

    async def wait(self, timeout: float) -> str:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0.0, timeout)
        while self._path is None:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise EndpointNotDiscovered("Local MCP process did not publish its endpoint via SSE")
            try:
                await asyncio.wait_for(self._ready.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                raise EndpointNotDiscovered(
                    "Local MCP process did not publish its endpoint via SSE"
                ) from None
        return self._path
