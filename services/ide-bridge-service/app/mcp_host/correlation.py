# services/ide-bridge-service/app/mcp_host/correlation.py
from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Union

from app.mcp_host.discovery import EndpointSlot
from app.mcp_host.errors import ConcurrentCallRejected, UpstreamTimeout
from app.mcp_host.types import PendingCall
from app.models.jsonrpc import JsonRpcRequest, JsonRpcResponse, parse_response

logger = logging.getLogger("app.mcp.correlation")

# (path_with_query, json_body) -> transport response (ignored here beyond logging)
Sender = Callable[[str, Dict[str, Any]], Awaitable[Any]]

FIRST_CALL_ID = 1000  # start above ids agent hosts commonly use


class CorrelationEngine:
    """
    Sends JSON-RPC calls to the local process and matches the replies that
    arrive later on its event stream.

    - at most `max_in_flight` calls are outstanding (1 = strict single-flight);
      a call beyond that is rejected before anything is sent
    - a reply carrying an id only resolves the call with that id; a reply with
      no id resolves the sole outstanding call
    - every call has a deadline; expiry frees the slot and late replies are dropped
    """

    def __init__(
        self,
        *,
        endpoint: EndpointSlot,
        sender: Sender,
        response_timeout: float,
        discovery_timeout: float,
        max_in_flight: int = 1,
    ) -> None:
        self.endpoint = endpoint
        self._send = sender
        self.response_timeout = response_timeout
        self.discovery_timeout = discovery_timeout
        self.max_in_flight = max(1, int(max_in_flight))

        self._ids = itertools.count(FIRST_CALL_ID + 1)
        self._pending: Dict[int, PendingCall] = {}

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    async def call(self, method: str, params: Optional[Union[Dict[str, Any], list]] = None) -> JsonRpcResponse:
        path = await self.endpoint.wait(self.discovery_timeout)

        # No await between the capacity check and registration.
        if len(self._pending) >= self.max_in_flight:
            busy = ", ".join(f"{p.method}(id={p.call_id})" for p in self._pending.values())
            raise ConcurrentCallRejected(
                f"Another upstream call is still in flight ({busy}); retry when it completes"
            )

        loop = asyncio.get_running_loop()
        call_id = next(self._ids)
        pending = PendingCall(call_id=call_id, method=method, future=loop.create_future())
        pending.timer = loop.call_later(self.response_timeout, self._expire, call_id)
        self._pending[call_id] = pending

        request = JsonRpcRequest(id=call_id, method=method, params=params)
        try:
            try:
                await self._send(path, request.to_wire())
            except Exception:
                if not pending.future.done():
                    raise
                # the reply beat the transport failure; hand it out below
                logger.debug("Transport error after %s (id=%s) was already answered", method, call_id)
            return await pending.future
        finally:
            self._discard(call_id)

    def dispatch(self, payload: Any) -> int:
        """
        Feed one decoded stream payload (object or array of objects).
        Returns how many pending calls were resolved.
        """
        items: Iterable[Any] = payload if isinstance(payload, list) else [payload]
        resolved = 0
        for obj in items:
            response = parse_response(obj)
            if response is None:
                continue
            pending = self._match(obj, response)
            if pending is None:
                logger.debug("Dropping reply with no matching pending call: id=%r", obj.get("id"))
                continue
            self._discard(pending.call_id)
            if not pending.future.done():
                pending.future.set_result(response)
                resolved += 1
        return resolved

    def fail_all(self, exc: BaseException) -> None:
        for call_id in list(self._pending):
            pending = self._pending.get(call_id)
            self._discard(call_id)
            if pending is not None and not pending.future.done():
                pending.future.set_exception(exc)

    # ------------------------------------------------------------------ #

    def _match(self, obj: Dict[str, Any], response: JsonRpcResponse) -> Optional[PendingCall]:
        if response.id is None:
            if len(self._pending) == 1:
                return next(iter(self._pending.values()))
            return None
        key = _normalize_id(response.id)
        if key is None:
            return None
        return self._pending.get(key)

    def _expire(self, call_id: int) -> None:
        pending = self._pending.pop(call_id, None)
        if pending is None or pending.future.done():
            return
        timeout_ms = int(self.response_timeout * 1000)
        logger.warning("Upstream did not answer %s (id=%s) within %sms", pending.method, call_id, timeout_ms)
        pending.future.set_exception(
            UpstreamTimeout(
                f"Local MCP process did not answer {pending.method} (id={call_id}) within {timeout_ms}ms"
            )
        )

    def _discard(self, call_id: int) -> None:
        pending = self._pending.pop(call_id, None)
        if pending is not None and pending.timer is not None:
            pending.timer.cancel()


def _normalize_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None
