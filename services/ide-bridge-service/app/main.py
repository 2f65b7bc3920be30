# services/ide-bridge-service/app/main.py
from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse

from app.api.routers import health_routes, mcp_routes
from app.auth.gate import AuthChallenge, AuthGate
from app.config import ConfigurationError, Settings, settings
from app.infra.logging import setup_logging
from app.mcp_host.dispatcher import McpDispatcher
from app.mcp_host.session import BridgeSession

logger = logging.getLogger("app.main")


def create_app(
    app_settings: Optional[Settings] = None,
    *,
    session: Optional[BridgeSession] = None,
    auth_gate: Optional[AuthGate] = None,
    start_upstream: bool = True,
) -> FastAPI:
    cfg = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """
        App lifespan:
          - configure logging, refuse to start with incomplete auth config
          - open the upstream session (stream reader + background warmup)
          - graceful shutdown: session, JWKS client
        """
        setup_logging(cfg.service_name, level_name=cfg.log_level, debug_sse=cfg.debug_sse)
        cfg.validate_auth()
        logger.info("%s starting up (mcp=%s, auth=%s)", cfg.service_name, cfg.mcp_path, cfg.auth_enabled)

        bridge = session or BridgeSession.from_settings(cfg)
        gate = auth_gate or AuthGate.from_settings(cfg)
        app.state.settings = cfg
        app.state.bridge = bridge
        app.state.auth_gate = gate
        app.state.dispatcher = McpDispatcher.from_settings(bridge, cfg)

        if start_upstream:
            await bridge.start()
            logger.info("Upstream session started (%s)", bridge.upstream.stream_url)

        try:
            yield
        finally:
            try:
                await bridge.close()
            except Exception:
                logger.warning("Error closing bridge session", exc_info=True)

            if gate.jwks is not None:
                try:
                    await gate.jwks.aclose()
                except Exception:
                    logger.warning("Error closing JWKS client", exc_info=True)

            logger.info("%s shutdown complete", cfg.service_name)

    app = FastAPI(
        title="IDE MCP Bridge",
        description="Streamable-HTTP MCP front for a local MCP-over-SSE tool server",
        version=cfg.service_version,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    @app.exception_handler(AuthChallenge)
    async def _auth_challenge(request: Request, exc: AuthChallenge) -> ORJSONResponse:
        return ORJSONResponse(exc.body(), status_code=exc.status_code, headers=exc.headers())

    app.include_router(health_routes.router)
    app.include_router(mcp_routes.build_router(cfg.mcp_path))
    return app


app = create_app()


def run() -> None:
    setup_logging(settings.service_name, level_name=settings.log_level, debug_sse=settings.debug_sse)
    try:
        settings.validate_auth()
    except ConfigurationError as e:
        logger.critical("%s", e)
        sys.exit(1)

    import uvicorn

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        ssl_certfile=settings.tls_cert_file or None,
        ssl_keyfile=settings.tls_key_file or None,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
