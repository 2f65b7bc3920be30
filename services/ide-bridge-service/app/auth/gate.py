# services/ide-bridge-service/app/auth/gate.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional
from urllib.parse import urlsplit

import httpx
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JOSEError

from app.auth.jwks import JwksCache, JwksFetchError

logger = logging.getLogger("app.auth")

PROTECTED_RESOURCE_METADATA_PATH = "/.well-known/oauth-protected-resource"

NO_TOKEN = "no_token"
INVALID_TOKEN = "invalid_token"
INSUFFICIENT_SCOPE = "insufficient_scope"


@dataclass(frozen=True)
class AuthContext:
    subject: Optional[str] = None
    email: Optional[str] = None
    scopes: FrozenSet[str] = frozenset()
    claims: Dict[str, Any] = field(default_factory=dict)


class AuthChallenge(Exception):
    """
    A 401 telling the client where to obtain a usable credential.
    Never rendered as a JSON-RPC error.
    """

    status_code = 401

    def __init__(
        self,
        error: str,
        description: str,
        *,
        resource_metadata_url: str,
        scope: Optional[str] = None,
    ) -> None:
        super().__init__(f"{error}: {description}")
        self.error = error
        self.description = description
        self.resource_metadata_url = resource_metadata_url
        self.scope = scope

    def www_authenticate(self) -> str:
        parts = [
            f'resource_metadata="{_quote(self.resource_metadata_url)}"',
            f'error="{self.error}"',
            f'error_description="{_quote(self.description)}"',
        ]
        if self.scope:
            parts.append(f'scope="{_quote(self.scope)}"')
        return "Bearer " + ", ".join(parts)

    def headers(self) -> Dict[str, str]:
        return {"WWW-Authenticate": self.www_authenticate()}

    def body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error, "error_description": self.description}
        if self.scope:
            body["scope"] = self.scope
        return body


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def split_scopes(value: Any) -> List[str]:
    """
    "a b,c" -> ["a", "b", "c"]; lists are taken element-wise.
    """
    if value is None:
        return []
    if isinstance(value, str):
        return [s for s in value.replace(",", " ").split() if s]
    if isinstance(value, (list, tuple, set, frozenset)):
        return [s for s in value if isinstance(s, str) and s]
    return []


def scopes_from_claims(claims: Dict[str, Any]) -> FrozenSet[str]:
    granted = set(split_scopes(claims.get("scope")))
    granted.update(split_scopes(claims.get("scp")))
    return frozenset(granted)


def metadata_url_for(resource_url: str) -> str:
    """
    Protected-resource metadata lives at the origin of the configured resource
    URL, never at whatever Host header the client sent.
    """
    parts = urlsplit(resource_url)
    return f"{parts.scheme}://{parts.netloc}{PROTECTED_RESOURCE_METADATA_PATH}"


class AuthGate:
    def __init__(
        self,
        *,
        enabled: bool,
        issuer: str = "",
        resource_url: str = "",
        audience: str = "",
        jwks: Optional[JwksCache] = None,
        required_scopes: Iterable[str] = (),
        authorization_servers: Iterable[str] = (),
        algorithms: Iterable[str] = ("RS256",),
    ) -> None:
        self.enabled = enabled
        self.issuer = issuer
        self.resource_url = resource_url
        self.audience = audience or resource_url
        self.jwks = jwks
        self.required_scopes: FrozenSet[str] = frozenset(required_scopes)
        self.authorization_servers = list(authorization_servers) or ([issuer] if issuer else [])
        self.algorithms = list(algorithms) or ["RS256"]

    @classmethod
    def from_settings(cls, settings: Any, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> "AuthGate":
        jwks = None
        if settings.auth_enabled and settings.auth_jwks_url:
            jwks = JwksCache(
                settings.auth_jwks_url,
                ttl_seconds=settings.auth_jwks_cache_ttl_seconds,
                transport=transport,
            )
        return cls(
            enabled=settings.auth_enabled,
            issuer=settings.auth_issuer,
            resource_url=settings.auth_resource_url,
            audience=settings.auth_audience,
            jwks=jwks,
            required_scopes=split_scopes(settings.auth_required_scopes),
            authorization_servers=split_scopes(settings.auth_authorization_servers),
            algorithms=split_scopes(settings.auth_algorithms),
        )

    @property
    def resource_metadata_url(self) -> str:
        return metadata_url_for(self.resource_url)

    def protected_resource_metadata(self) -> Dict[str, Any]:
        return {
            "resource": self.resource_url,
            "authorization_servers": self.authorization_servers,
            "scopes_supported": sorted(self.required_scopes),
            "bearer_methods_supported": ["header"],
        }

    def _challenge(self, error: str, description: str, *, scope: Optional[str] = None) -> AuthChallenge:
        return AuthChallenge(
            error,
            description,
            resource_metadata_url=self.resource_metadata_url,
            scope=scope,
        )

    async def authenticate(self, authorization: Optional[str]) -> AuthContext:
        """
        Disabled -> empty context. Otherwise bearer token -> verified claims ->
        scope check; every failure raises AuthChallenge.
        """
        if not self.enabled:
            return AuthContext()

        token = _bearer_token(authorization)
        if token is None:
            raise self._challenge(NO_TOKEN, "Missing bearer token")

        claims = await self._verify(token)
        granted = scopes_from_claims(claims)

        if self.required_scopes and not self.required_scopes <= granted:
            missing = " ".join(sorted(self.required_scopes - granted))
            logger.info("Token for sub=%s lacks scope(s): %s", claims.get("sub"), missing)
            raise self._challenge(
                INSUFFICIENT_SCOPE,
                f"Token is missing required scope(s): {missing}",
                scope=" ".join(sorted(self.required_scopes)),
            )

        email = claims.get("email")
        return AuthContext(
            subject=claims.get("sub"),
            email=email if isinstance(email, str) else None,
            scopes=granted,
            claims=claims,
        )

    async def _verify(self, token: str) -> Dict[str, Any]:
        if self.jwks is None:
            raise self._challenge(INVALID_TOKEN, "Token verification is not configured")

        try:
            header = jwt.get_unverified_header(token)
        except JOSEError:
            raise self._challenge(INVALID_TOKEN, "Malformed token") from None

        try:
            key = await self.jwks.key_for(header.get("kid"))
        except JwksFetchError as e:
            logger.error("JWKS unavailable: %s", e)
            raise self._challenge(INVALID_TOKEN, "Unable to verify token signature") from e
        if key is None:
            raise self._challenge(INVALID_TOKEN, "Unknown signing key")

        try:
            return jwt.decode(
                token,
                key,
                algorithms=self.algorithms,
                audience=self.audience or None,
                issuer=self.issuer or None,
                options={
                    "verify_aud": bool(self.audience),
                    "require_aud": bool(self.audience),
                    "require_iss": bool(self.issuer),
                    "require_exp": True,
                    "verify_at_hash": False,
                },
            )
        except ExpiredSignatureError:
            raise self._challenge(INVALID_TOKEN, "Token has expired") from None
        except JOSEError as e:
            logger.info("Rejected bearer token: %s", e)
            raise self._challenge(INVALID_TOKEN, "Token validation failed") from None


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, value = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    value = value.strip()
    return value or None
