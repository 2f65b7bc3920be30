# services/ide-bridge-service/app/mcp_host/types.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

ToolDescriptor = Dict[str, Any]  # opaque; passed through unmodified
ToolCatalog = List[ToolDescriptor]


@dataclass
class Frame:
    event: str = "message"
    data: List[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(self.data)


@dataclass
class PendingCall:
    call_id: int
    method: str
    future: "asyncio.Future[Any]"
    timer: Optional[asyncio.TimerHandle] = None
