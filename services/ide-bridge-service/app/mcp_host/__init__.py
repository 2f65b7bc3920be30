# services/ide-bridge-service/app/mcp_host/__init__.py
from __future__ import annotations

# only the error taxonomy is re-exported here; app.models imports it, so the
# session/engine modules must not be pulled in at package import time
from .errors import (
    BridgeError,
    ConcurrentCallRejected,
    EndpointNotDiscovered,
    UpstreamNotReady,
    UpstreamRpcError,
    UpstreamTimeout,
    UpstreamTransportError,
)

__all__ = [
    "BridgeError",
    "ConcurrentCallRejected",
    "EndpointNotDiscovered",
    "UpstreamNotReady",
    "UpstreamRpcError",
    "UpstreamTimeout",
    "UpstreamTransportError",
]
