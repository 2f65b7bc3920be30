# services/ide-bridge-service/app/infra/logging.py
from __future__ import annotations
import logging
import os
from typing import Optional

_LEVELS: dict[str, int] = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def resolve_level(level_name: Optional[str] = None, *, debug_sse: bool = False) -> int:
    name = (level_name or os.getenv("LOG_LEVEL", "INFO")).upper()
    level = _LEVELS.get(name, logging.INFO)
    # frame dumps are logged at DEBUG; asking for them implies that level
    if debug_sse:
        level = min(level, logging.DEBUG)
    return level


def setup_logging(
    service_name: str = "ide-bridge-service",
    *,
    level_name: Optional[str] = None,
    debug_sse: bool = False,
) -> None:
    """
    Minimal, consistent structured-ish logging across services.
    """
    level = resolve_level(level_name, debug_sse=debug_sse)
    logging.basicConfig(
        level=level,
        format=(
            "%(asctime)s | %(levelname)s | %(name)s | "
            f"svc={service_name} | %(message)s"
        ),
    )
    logging.getLogger("app").setLevel(level)
    # quiet noisy deps
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(level)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
