# services/ide-bridge-service/app/config.py
from __future__ import annotations
import os
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


def _as_bool(v: str | None, default: bool = False) -> bool:
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "on"}


class ConfigurationError(RuntimeError):
    pass


class Settings(BaseSettings):
    # Identity
    service_name: str = os.getenv("SERVICE_NAME", "ide-bridge-service")
    service_version: str = os.getenv("SERVICE_VERSION", "1.0.1")

    # Inbound (agent host side)
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8081"))
    mcp_path: str = os.getenv("MCP_PATH", "/sse")
    protocol_version: str = os.getenv("MCP_PROTOCOL_VERSION", "2025-03-26")

    # TLS material is handed to uvicorn as-is; empty = plain HTTP
    tls_cert_file: str = os.getenv("TLS_CERT_FILE", "")
    tls_key_file: str = os.getenv("TLS_KEY_FILE", "")

    # Local MCP process (IDE)
    ide_host: str = os.getenv("IDE_HOST", "127.0.0.1")
    ide_port: int = int(os.getenv("IDE_PORT", "64343"))
    ide_sse_path: str = os.getenv("IDE_SSE_PATH", "/sse")
    upstream_protocol_version: str = os.getenv("UPSTREAM_PROTOCOL_VERSION", "1.0")
    upstream_tool_call_method: str = os.getenv("UPSTREAM_TOOL_CALL_METHOD", "call_tool")
    upstream_arguments_key: str = os.getenv("UPSTREAM_ARGUMENTS_KEY", "input")

    # Timeouts / concurrency
    wait_endpoint_ms: int = int(os.getenv("WAIT_ENDPOINT_MS", "3000"))
    wait_ide_response_ms: int = int(os.getenv("WAIT_IDE_RESPONSE_MS", "30000"))
    max_in_flight_calls: int = int(os.getenv("MAX_IN_FLIGHT_CALLS", "1"))

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    debug_sse: bool = _as_bool(os.getenv("DEBUG_SSE"), default=False)

    # Auth gate (OAuth 2.0 protected resource)
    auth_enabled: bool = _as_bool(os.getenv("AUTH_ENABLED"), default=True)
    auth_issuer: str = os.getenv("AUTH_ISSUER", "")
    auth_resource_url: str = os.getenv("AUTH_RESOURCE_URL", "")
    auth_audience: str = os.getenv("AUTH_AUDIENCE", "")  # defaults to the resource URL
    auth_jwks_url: str = os.getenv("AUTH_JWKS_URL", "")
    auth_required_scopes: str = os.getenv("AUTH_REQUIRED_SCOPES", "")  # space/comma separated
    auth_authorization_servers: str = os.getenv("AUTH_AUTHORIZATION_SERVERS", "")  # defaults to issuer
    auth_algorithms: str = os.getenv("AUTH_ALGORITHMS", "RS256")
    auth_jwks_cache_ttl_seconds: float = float(os.getenv("AUTH_JWKS_CACHE_TTL_SECONDS", "300"))

    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    def missing_auth_settings(self) -> List[str]:
        if not self.auth_enabled:
            return []
        required = {
            "AUTH_ISSUER": self.auth_issuer,
            "AUTH_RESOURCE_URL": self.auth_resource_url,
            "AUTH_JWKS_URL": self.auth_jwks_url,
        }
        return [name for name, value in required.items() if not (value or "").strip()]

    def validate_auth(self) -> None:
        """
        Auth enabled without its mandatory settings is a startup error, not a
        per-request one.
        """
        missing = self.missing_auth_settings()
        if missing:
            raise ConfigurationError(
                "AUTH_ENABLED is true but required settings are missing: " + ", ".join(missing)
            )


settings = Settings()
