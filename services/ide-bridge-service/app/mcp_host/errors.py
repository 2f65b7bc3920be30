# services/ide-bridge-service/app/mcp_host/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional

# JSON-RPC 2.0 reserved codes + the implementation-defined server error we use
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603
SERVER_ERROR = -32000


class BridgeError(RuntimeError):
    """
    Base class for failures that surface to the agent host as a JSON-RPC error.
    """

    code: int = SERVER_ERROR

    def __init__(self, message: str, *, data: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data

    def to_error(self) -> Dict[str, Any]:
        err: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            err["data"] = self.data
        return err


class ParseError(BridgeError):
    code = PARSE_ERROR


class InvalidRequest(BridgeError):
    code = INVALID_REQUEST


class MethodNotFound(BridgeError):
    code = METHOD_NOT_FOUND


class UpstreamNotReady(BridgeError):
    """The local process has not published its endpoint or catalog yet."""


class EndpointNotDiscovered(UpstreamNotReady):
    pass


class UpstreamTimeout(BridgeError):
    pass


class UpstreamTransportError(BridgeError):
    pass


class ConcurrentCallRejected(BridgeError):
    pass


class UpstreamRpcError(BridgeError):
    """
    The local process answered with a JSON-RPC error object.
    Keeps the upstream error so the router can relay it unchanged.
    """

    def __init__(self, method: str, error: Dict[str, Any]) -> None:
        message = str((error or {}).get("message") or "unknown")
        super().__init__(f"Upstream {method} error: {message}", data=error)
        self.method = method
        self.error = error or {}
