"""
Pytest fixtures for the IDE bridge tests.
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pytest

# service root on the path for `app` imports
service_root = Path(__file__).parent.parent
sys.path.insert(0, str(service_root))

os.environ.setdefault("AUTH_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from cryptography.hazmat.primitives.asymmetric import rsa  # noqa: E402
from cryptography.hazmat.primitives.serialization import (  # noqa: E402
    Encoding,
    NoEncryption,
    PrivateFormat,
)
from jose import jwk, jwt  # noqa: E402

from app.auth.gate import AuthGate  # noqa: E402
from app.auth.jwks import JwksCache  # noqa: E402
from app.clients.ide_client import IdeUpstreamClient  # noqa: E402
from app.config import Settings  # noqa: E402
from app.mcp_host.session import BridgeSession  # noqa: E402

ISSUER = "https://auth.example.com/"
RESOURCE_URL = "https://bridge.example.com/sse"
JWKS_URL = "https://auth.example.com/.well-known/jwks.json"
KEY_ID = "test-key"

Responder = Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]


# ─────────────────────────────────────────────────────────────
# Scripted local MCP process
# ─────────────────────────────────────────────────────────────

class FakeIde:
    """
    Stands in for the local MCP process: records every POST and, for methods
    it has a responder for, pushes the reply onto the bridge's event stream
    right after the POST returns.
    """

    def __init__(self) -> None:
        self.session: Optional[BridgeSession] = None
        self.posts: List[Tuple[str, Dict[str, Any]]] = []
        self.responders: Dict[str, Responder] = {}
        self.status_code = 202

    def methods(self) -> List[str]:
        return [body.get("method") for _, body in self.posts]

    def answer(self, method: str, result: Any) -> None:
        self.responders[method] = lambda body: {"jsonrpc": "2.0", "id": body["id"], "result": result}

    def fail(self, method: str, code: int, message: str) -> None:
        self.responders[method] = lambda body: {
            "jsonrpc": "2.0",
            "id": body["id"],
            "error": {"code": code, "message": message},
        }

    def announce(self, data: str = "/message?sessionId=42") -> None:
        assert self.session is not None
        self.session.feed(f"event: endpoint\ndata: {data}\n\n".encode("utf-8"))

    def push(self, payload: Dict[str, Any]) -> None:
        assert self.session is not None
        self.session.feed(f"data: {json.dumps(payload)}\n\n".encode("utf-8"))

    async def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.posts.append((request.url.raw_path.decode("ascii"), body))
        responder = self.responders.get(body.get("method"))
        if responder is not None:
            reply = responder(body)
            if reply is not None:
                asyncio.get_running_loop().call_soon(self.push, reply)
        return httpx.Response(self.status_code, text="Accepted")


@pytest.fixture
def fake_ide() -> FakeIde:
    return FakeIde()


@pytest.fixture
def make_session(fake_ide: FakeIde) -> Callable[..., BridgeSession]:
    def _make(**overrides: Any) -> BridgeSession:
        options: Dict[str, Any] = {"discovery_timeout": 0.2, "response_timeout": 0.5}
        options.update(overrides)
        upstream = IdeUpstreamClient(
            host="127.0.0.1",
            port=64343,
            transport=httpx.MockTransport(fake_ide.handle),
        )
        session = BridgeSession(upstream=upstream, **options)
        fake_ide.session = session
        return session

    return _make


@pytest.fixture
def bridge(make_session: Callable[..., BridgeSession]) -> BridgeSession:
    return make_session()


# ─────────────────────────────────────────────────────────────
# Settings
# ─────────────────────────────────────────────────────────────

@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    def _make(**overrides: Any) -> Settings:
        values: Dict[str, Any] = {
            "auth_enabled": False,
            "wait_endpoint_ms": 200,
            "wait_ide_response_ms": 500,
        }
        values.update(overrides)
        return Settings(**values)

    return _make


# ─────────────────────────────────────────────────────────────
# Tokens / JWKS
# ─────────────────────────────────────────────────────────────

@pytest.fixture(scope="session")
def signing_key() -> Tuple[str, Dict[str, Any]]:
    """RSA private key (PEM) and its public JWK."""
    private = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = private.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()).decode("ascii")
    public_jwk = jwk.construct(pem, algorithm="RS256").public_key().to_dict()
    public_jwk["kid"] = KEY_ID
    public_jwk["use"] = "sig"
    return pem, public_jwk


@pytest.fixture(scope="session")
def other_signing_key() -> str:
    private = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return private.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()).decode("ascii")


@pytest.fixture
def make_token(signing_key: Tuple[str, Dict[str, Any]]) -> Callable[..., str]:
    def _make(*, pem: Optional[str] = None, expires_in: int = 300, **claims: Any) -> str:
        now = int(time.time())
        payload: Dict[str, Any] = {
            "iss": ISSUER,
            "aud": RESOURCE_URL,
            "sub": "user-1",
            "iat": now,
            "exp": now + expires_in,
        }
        payload.update(claims)
        return jwt.encode(payload, pem or signing_key[0], algorithm="RS256", headers={"kid": KEY_ID})

    return _make


class JwksServer:
    def __init__(self, keys: List[Dict[str, Any]]) -> None:
        self.keys = keys
        self.hits = 0

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.hits += 1
        return httpx.Response(200, json={"keys": self.keys})


@pytest.fixture
def jwks_server(signing_key: Tuple[str, Dict[str, Any]]) -> JwksServer:
    return JwksServer([signing_key[1]])


@pytest.fixture
def make_gate(jwks_server: JwksServer) -> Callable[..., AuthGate]:
    def _make(**overrides: Any) -> AuthGate:
        options: Dict[str, Any] = {
            "enabled": True,
            "issuer": ISSUER,
            "resource_url": RESOURCE_URL,
            "jwks": JwksCache(JWKS_URL, transport=httpx.MockTransport(jwks_server.handle)),
            "required_scopes": ["mcp:tools"],
        }
        options.update(overrides)
        return AuthGate(**options)

    return _make
