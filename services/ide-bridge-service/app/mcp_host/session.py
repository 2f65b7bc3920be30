# services/ide-bridge-service/app/mcp_host/session.py
from __future__ import annotations

import asyncio
import json
import logging
from contextlib import suppress
from typing import Any, Dict, Optional, Union

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, wait_exponential_jitter

from app.clients.ide_client import IdeUpstreamClient
from app.mcp_host.correlation import CorrelationEngine
from app.mcp_host.discovery import DISCOVERY_EVENT, EndpointSlot
from app.mcp_host.errors import UpstreamTransportError
from app.mcp_host.frames import FrameParser
from app.mcp_host.types import Frame
from app.mcp_host.warmup import CatalogWarmup
from app.models.jsonrpc import is_response_shaped

logger = logging.getLogger("app.mcp.session")

MESSAGE_EVENT = "message"
_PREVIEW_LIMIT = 500


class UpstreamStreamClosed(UpstreamTransportError):
    pass


def _preview(text: str) -> str:
    return text if len(text) <= _PREVIEW_LIMIT else text[:_PREVIEW_LIMIT] + "...<truncated>"


def _log_reconnect(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    if isinstance(exc, (UpstreamTransportError, httpx.HTTPError)):
        logger.warning("Upstream SSE lost (%s); reconnecting (attempt %d)", exc, retry_state.attempt_number)
    else:
        logger.error(
            "Upstream SSE reader failed unexpectedly; reconnecting (attempt %d)",
            retry_state.attempt_number,
            exc_info=exc,
        )


class BridgeSession:
    """
    One bridge to one local MCP process.

    Owns everything that used to be process-wide state (discovered endpoint,
    pending calls, tool catalog) together with the upstream transport and the
    task that keeps reading its event stream.
    """

    def __init__(
        self,
        *,
        upstream: IdeUpstreamClient,
        discovery_timeout: float = 3.0,
        response_timeout: float = 30.0,
        max_in_flight: int = 1,
        upstream_protocol_version: str = "1.0",
        client_name: str = "ide-bridge-service",
        client_version: str = "1.0.0",
        debug_sse: bool = False,
    ) -> None:
        self.upstream = upstream
        self.debug_sse = debug_sse

        self.endpoint = EndpointSlot()
        self.engine = CorrelationEngine(
            endpoint=self.endpoint,
            sender=self._send,
            response_timeout=response_timeout,
            discovery_timeout=discovery_timeout,
            max_in_flight=max_in_flight,
        )
        self.warmup = CatalogWarmup(
            self.engine,
            protocol_version=upstream_protocol_version,
            client_name=client_name,
            client_version=client_version,
        )

        self._parser = FrameParser()
        self._reader: Optional["asyncio.Task[None]"] = None
        self._boot_warmup: Optional["asyncio.Task[Any]"] = None
        self._connected = False

    @classmethod
    def from_settings(cls, settings: Any, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> "BridgeSession":
        upstream = IdeUpstreamClient(
            host=settings.ide_host,
            port=settings.ide_port,
            sse_path=settings.ide_sse_path,
            post_timeout_seconds=settings.wait_ide_response_ms / 1000.0,
            transport=transport,
        )
        return cls(
            upstream=upstream,
            discovery_timeout=settings.wait_endpoint_ms / 1000.0,
            response_timeout=settings.wait_ide_response_ms / 1000.0,
            max_in_flight=settings.max_in_flight_calls,
            upstream_protocol_version=settings.upstream_protocol_version,
            client_name=settings.service_name,
            client_version=settings.service_version,
            debug_sse=settings.debug_sse,
        )

    # ------------------------------------------------------------------ #
    # Inbound stream
    # ------------------------------------------------------------------ #

    def feed(self, chunk: Union[bytes, str]) -> None:
        for frame in self._parser.feed(chunk):
            try:
                self.handle_frame(frame)
            except Exception:
                # a bad frame never ends the stream
                logger.warning("[SSE] dropping frame (event=%s) that failed to process", frame.event, exc_info=True)

    def handle_frame(self, frame: Frame) -> None:
        data_text = frame.text
        if self.debug_sse:
            logger.debug("[SSE] event=%s data=%s", frame.event, _preview(data_text))

        if frame.event == DISCOVERY_EVENT:
            self.endpoint.offer(data_text)
            return

        if frame.event != MESSAGE_EVENT:
            return

        trimmed = data_text.strip()
        if not trimmed:
            return
        try:
            payload = json.loads(trimmed)
        except (ValueError, RecursionError):
            logger.debug("[SSE] dropping undecodable message frame (%d chars)", len(trimmed))
            return
        self.engine.dispatch(payload)

    # ------------------------------------------------------------------ #
    # Outbound
    # ------------------------------------------------------------------ #

    async def _send(self, path: str, body: Dict[str, Any]) -> httpx.Response:
        resp = await self.upstream.post_message(path, body)
        # Some servers answer inline instead of on the stream.
        if "json" in (resp.headers.get("content-type") or "") and resp.content:
            try:
                inline = resp.json()
            except (ValueError, RecursionError):
                inline = None
            if is_response_shaped(inline) or (isinstance(inline, list) and any(map(is_response_shaped, inline))):
                self.engine.dispatch(inline)
        return resp

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    @property
    def connected(self) -> bool:
        return self._connected

    async def start(self, *, warm: bool = True) -> None:
        if self._reader is None or self._reader.done():
            self._reader = asyncio.create_task(self._read_forever(), name="ide-sse-reader")
        if warm and (self._boot_warmup is None or self._boot_warmup.done()):
            self._boot_warmup = asyncio.create_task(self._warm_on_boot(), name="ide-catalog-warmup")

    async def _warm_on_boot(self) -> None:
        try:
            await self.warmup.ensure_catalog()
            logger.info("Bridge ready")
        except Exception as e:
            # a later tools/list retries the handshake
            logger.error("Failed to warm up tools cache: %s", e)

    async def _read_forever(self) -> None:
        """
        Keep the upstream stream open for the life of the session. Any failure,
        expected (transport) or not, ends in a reconnect; only cancellation stops it.
        """
        async for attempt in AsyncRetrying(
            wait=wait_exponential_jitter(multiplier=0.5, max=10.0),
            retry=retry_if_exception_type(Exception),
            before_sleep=_log_reconnect,
            reraise=True,
        ):
            with attempt:
                try:
                    await self._consume_stream_once()
                finally:
                    self._on_disconnect()

    async def _consume_stream_once(self) -> None:
        logger.info("Opening upstream SSE session %s", self.upstream.stream_url)
        self._parser = FrameParser()
        async with self.upstream.open_stream() as resp:
            self._connected = True
            async for chunk in resp.aiter_bytes():
                self.feed(chunk)
        # an event left unterminated at EOF is discarded with the parser
        raise UpstreamStreamClosed("Upstream SSE ended")

    def _on_disconnect(self) -> None:
        was_connected = self._connected
        self._connected = False
        self.endpoint.clear()
        self.warmup.mark_stale()
        self.engine.fail_all(UpstreamTransportError("Upstream SSE stream closed before the reply arrived"))
        if was_connected:
            logger.error("Upstream SSE ended")

    async def close(self) -> None:
        for task in (self._boot_warmup, self._reader):
            if task is not None and not task.done():
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
        self._reader = None
        self._boot_warmup = None
        self.engine.fail_all(UpstreamTransportError("Bridge is shutting down"))
        await self.upstream.aclose()
        logger.info("Bridge session closed")

    def status(self) -> Dict[str, Any]:
        catalog = self.warmup.catalog
        return {
            "upstream_connected": self._connected,
            "endpoint_discovered": self.endpoint.is_set,
            "tools_cached": len(catalog) if catalog is not None else None,
            "in_flight": self.engine.in_flight,
        }
