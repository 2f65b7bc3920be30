# services/ide-bridge-service/app/api/routers/health_routes.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, Response

from app.api.deps import get_auth_gate, get_session
from app.auth.gate import PROTECTED_RESOURCE_METADATA_PATH, AuthGate
from app.mcp_host.session import BridgeSession

logger = logging.getLogger("app.api.health")

router = APIRouter(tags=["meta"])


def _health_body(request: Request, session: BridgeSession) -> Dict[str, Any]:
    settings = request.app.state.settings
    return {
        "status": "ok",
        "service": settings.service_name,
        "version": settings.service_version,
        "mcp": settings.mcp_path,
        "upstream": session.status(),
        "at": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/", summary="Root metadata")
def root(request: Request, session: BridgeSession = Depends(get_session)) -> Dict[str, Any]:
    return _health_body(request, session)


@router.get("/health", summary="Liveness check")
def health(request: Request, session: BridgeSession = Depends(get_session)) -> Dict[str, Any]:
    """
    Liveness: the process is up. Upstream state is reported, not required.
    """
    return _health_body(request, session)


@router.get("/favicon.ico", include_in_schema=False)
def favicon() -> Response:
    return Response(status_code=204)


@router.get(PROTECTED_RESOURCE_METADATA_PATH, summary="OAuth protected resource metadata")
def protected_resource_metadata(gate: AuthGate = Depends(get_auth_gate)) -> Dict[str, Any]:
    return gate.protected_resource_metadata()
