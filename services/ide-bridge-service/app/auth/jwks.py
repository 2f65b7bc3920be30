# services/ide-bridge-service/app/auth/jwks.py
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger("app.auth.jwks")


class JwksFetchError(RuntimeError):
    pass


class JwksCache:
    """
    Remote JSON Web Key Set with a TTL.

    Fetches are serialized behind a lock so a burst of requests with a cold
    cache triggers one download. An unknown `kid` forces one refresh (key
    rotation), rate-limited by `min_refresh_interval`.
    """

    def __init__(
        self,
        jwks_url: str,
        *,
        ttl_seconds: float = 300.0,
        min_refresh_interval: float = 10.0,
        timeout_seconds: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.jwks_url = jwks_url
        self.ttl_seconds = ttl_seconds
        self.min_refresh_interval = min_refresh_interval
        self._client = httpx.AsyncClient(
            timeout=timeout_seconds,
            headers={"Accept": "application/json"},
            transport=transport,
        )
        self._keys: List[Dict[str, Any]] = []
        self._fetched_at: Optional[float] = None
        self._lock = asyncio.Lock()

    def _fresh(self) -> bool:
        return self._fetched_at is not None and (time.monotonic() - self._fetched_at) < self.ttl_seconds

    async def _fetch(self) -> None:
        try:
            resp = await self._client.get(self.jwks_url)
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise JwksFetchError(f"Unable to fetch JWKS from {self.jwks_url}: {e}") from e

        keys = payload.get("keys") if isinstance(payload, dict) else None
        if not isinstance(keys, list):
            raise JwksFetchError(f"JWKS at {self.jwks_url} has no 'keys' array")
        self._keys = [k for k in keys if isinstance(k, dict)]
        self._fetched_at = time.monotonic()
        logger.info("JWKS refreshed: %d key(s) from %s", len(self._keys), self.jwks_url)

    async def get_keys(self, *, force: bool = False) -> List[Dict[str, Any]]:
        async with self._lock:
            if force:
                recently = self._fetched_at is not None and (
                    time.monotonic() - self._fetched_at
                ) < self.min_refresh_interval
                if not recently:
                    await self._fetch()
            elif not self._fresh():
                await self._fetch()
            return list(self._keys)

    async def key_for(self, kid: Optional[str]) -> Optional[Dict[str, Any]]:
        keys = await self.get_keys()
        match = _select(keys, kid)
        if match is None and kid is not None:
            keys = await self.get_keys(force=True)
            match = _select(keys, kid)
        return match

    async def aclose(self) -> None:
        await self._client.aclose()


def _select(keys: List[Dict[str, Any]], kid: Optional[str]) -> Optional[Dict[str, Any]]:
    if kid is None:
        # tokens without a kid are only accepted against a single-key set
        return keys[0] if len(keys) == 1 else None
    for key in keys:
        if key.get("kid") == kid:
            return key
    return None
