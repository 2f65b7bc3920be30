from __future__ import annotations

import asyncio

import pytest

from app.mcp_host.errors import EndpointNotDiscovered, UpstreamRpcError

TOOLS = [
    {"name": "get_file_text_by_path", "inputSchema": {"type": "object"}},
    {"name": "execute_terminal_command", "inputSchema": {"type": "object"}},
]


class TestCatalogWarmup:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_handshake(self, bridge, fake_ide) -> None:
        fake_ide.announce()
        fake_ide.answer("initialize", {"serverInfo": {"name": "ide"}})
        fake_ide.answer("tools/list", {"tools": TOOLS})

        results = await asyncio.gather(*(bridge.warmup.ensure_catalog() for _ in range(5)))

        assert fake_ide.methods() == ["initialize", "tools/list"]
        assert all(r == TOOLS for r in results)
        assert bridge.warmup.is_ready

        # cached: no further upstream traffic
        assert await bridge.warmup.ensure_catalog() == TOOLS
        assert len(fake_ide.posts) == 2

    @pytest.mark.asyncio
    async def test_initialize_params(self, bridge, fake_ide) -> None:
        fake_ide.announce()
        fake_ide.answer("initialize", {})
        fake_ide.answer("tools/list", {"tools": []})

        await bridge.warmup.ensure_catalog()

        path, body = fake_ide.posts[0]
        assert path == "/message?sessionId=42"
        assert body["params"]["protocolVersion"] == "1.0"
        assert body["params"]["capabilities"] == {"sse": True, "jsonrpc": True}
        assert body["params"]["clientInfo"]["name"] == "ide-bridge-service"

    @pytest.mark.asyncio
    async def test_failure_clears_marker_and_next_call_retries(self, bridge, fake_ide) -> None:
        # no endpoint yet: the first attempt fails on discovery
        with pytest.raises(EndpointNotDiscovered):
            await bridge.warmup.ensure_catalog()
        assert fake_ide.posts == []

        fake_ide.announce()
        fake_ide.answer("initialize", {})
        fake_ide.answer("tools/list", {"tools": TOOLS})
        assert await bridge.warmup.ensure_catalog() == TOOLS

    @pytest.mark.asyncio
    async def test_error_reply_is_a_failure(self, bridge, fake_ide) -> None:
        fake_ide.announce()
        fake_ide.answer("initialize", {})
        fake_ide.fail("tools/list", -32603, "index not ready")

        with pytest.raises(UpstreamRpcError) as exc:
            await bridge.warmup.ensure_catalog()
        assert exc.value.error["message"] == "index not ready"
        assert bridge.warmup.catalog is None

        fake_ide.answer("tools/list", {"tools": TOOLS})
        assert await bridge.warmup.ensure_catalog() == TOOLS

    @pytest.mark.asyncio
    async def test_stale_session_reinitializes_but_keeps_catalog(self, bridge, fake_ide) -> None:
        fake_ide.announce()
        fake_ide.answer("initialize", {})
        fake_ide.answer("tools/list", {"tools": TOOLS})
        await bridge.warmup.ensure_catalog()

        bridge.warmup.mark_stale()
        assert await bridge.warmup.ensure_catalog() == TOOLS
        assert fake_ide.methods() == ["initialize", "tools/list"]

        assert await bridge.warmup.ensure_initialized() == TOOLS
        assert fake_ide.methods() == ["initialize", "tools/list", "initialize"]

    @pytest.mark.asyncio
    async def test_catalog_survives_upstream_disconnect(self, bridge, fake_ide) -> None:
        fake_ide.announce()
        fake_ide.answer("initialize", {})
        fake_ide.answer("tools/list", {"tools": TOOLS})
        await bridge.warmup.ensure_catalog()

        bridge._on_disconnect()
        assert not bridge.endpoint.is_set
        assert await bridge.warmup.ensure_catalog() == TOOLS
        assert len(fake_ide.posts) == 2

        # a tool call needs a live session again
        with pytest.raises(EndpointNotDiscovered):
            await bridge.warmup.ensure_initialized()
