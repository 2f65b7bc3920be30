# services/ide-bridge-service/app/api/deps.py
from __future__ import annotations

from fastapi import Request

from app.auth.gate import AuthContext, AuthGate
from app.mcp_host.session import BridgeSession


def get_session(request: Request) -> BridgeSession:
    return request.app.state.bridge


def get_auth_gate(request: Request) -> AuthGate:
    return request.app.state.auth_gate


async def require_auth(request: Request) -> AuthContext:
    """
    Route dependency: raises AuthChallenge (rendered as a 401 by the app's
    exception handler) unless the request carries an acceptable bearer token.
    """
    gate = get_auth_gate(request)
    ctx = await gate.authenticate(request.headers.get("authorization"))
    request.state.auth = ctx
    return ctx
