from __future__ import annotations

from typing import AsyncIterator, List, Tuple

import pytest

from app.mcp_host.frames import FrameParser, iter_frames
from app.mcp_host.types import Frame

STREAM = (
    "event: endpoint\r\n"
    "data: /message?sessionId=42\r\n"
    "\r\n"
    ": keepalive\n"
    "\n"
    "data: {\"jsonrpc\":\"2.0\",\n"
    "data:  \"id\":1001}\n"
    "id: 7\n"
    "retry: 100\n"
    "\n"
    "event:   message  \n"
    "data: héllo ✓\n"
    "\n"
).encode("utf-8")


def _pairs(frames: List[Frame]) -> List[Tuple[str, List[str]]]:
    return [(f.event, f.data) for f in frames]


def _parse_chunks(chunks: List[bytes]) -> List[Tuple[str, List[str]]]:
    parser = FrameParser()
    frames: List[Frame] = []
    for chunk in chunks:
        frames.extend(parser.feed(chunk))
    return _pairs(frames)


EXPECTED = [
    ("endpoint", ["/message?sessionId=42"]),
    ("message", ['{"jsonrpc":"2.0",', ' "id":1001}']),
    ("message", ["héllo ✓"]),
]


class TestFrameParser:
    def test_whole_stream(self) -> None:
        assert _parse_chunks([STREAM]) == EXPECTED

    def test_every_split_offset(self) -> None:
        for offset in range(len(STREAM) + 1):
            assert _parse_chunks([STREAM[:offset], STREAM[offset:]]) == EXPECTED, offset

    def test_byte_by_byte(self) -> None:
        # splits multi-byte UTF-8 sequences too
        assert _parse_chunks([STREAM[i:i + 1] for i in range(len(STREAM))]) == EXPECTED

    def test_only_one_space_after_data_marker_is_removed(self) -> None:
        parser = FrameParser()
        frames = parser.feed(b"data:   x\ndata:y\n\n")
        assert frames[0].data == ["  x", "y"]

    def test_default_event_name(self) -> None:
        frames = FrameParser().feed("data: ping\n\n")
        assert frames == [Frame(event="message", data=["ping"])]

    def test_blank_lines_without_fields_emit_nothing(self) -> None:
        assert FrameParser().feed(b"\n\n: comment\n\n") == []

    def test_event_without_data_still_emits(self) -> None:
        frames = FrameParser().feed(b"event: endpoint\n\n")
        assert _pairs(frames) == [("endpoint", [])]
        assert frames[0].text == ""

    def test_multi_line_text_is_joined_with_newlines(self) -> None:
        frames = FrameParser().feed(b"data: a\ndata: b\n\n")
        assert frames[0].text == "a\nb"

    def test_unterminated_frame_is_not_emitted(self) -> None:
        parser = FrameParser()
        assert parser.feed(b"event: endpoint\ndata: /m\n") == []
        assert parser.feed(b"\n") == [Frame(event="endpoint", data=["/m"])]

    def test_state_resets_between_frames(self) -> None:
        frames = FrameParser().feed(b"event: endpoint\ndata: /a\n\ndata: {}\n\n")
        assert _pairs(frames) == [("endpoint", ["/a"]), ("message", ["{}"])]


class TestIterFrames:
    @pytest.mark.asyncio
    async def test_async_iteration(self) -> None:
        async def chunks() -> AsyncIterator[bytes]:
            for i in range(0, len(STREAM), 5):
                yield STREAM[i:i + 5]

        frames = [f async for f in iter_frames(chunks())]
        assert _pairs(frames) == EXPECTED

    @pytest.mark.asyncio
    async def test_trailing_event_without_blank_line_is_dropped(self) -> None:
        async def chunks() -> AsyncIterator[bytes]:
            yield b"data: {\"id\":1001,\"result\":{}}\n\n"
            yield b"data: {\"id\":1002,\"res"

        frames = [f async for f in iter_frames(chunks())]
        assert _pairs(frames) == [("message", ['{"id":1001,"result":{}}'])]
