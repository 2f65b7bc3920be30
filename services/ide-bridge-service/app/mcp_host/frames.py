# services/ide-bridge-service/app/mcp_host/frames.py
from __future__ import annotations

import codecs
from typing import AsyncIterator, List, Optional, Union

from app.mcp_host.types import Frame

_EVENT_PREFIX = "event:"
_DATA_PREFIX = "data:"
_COMMENT_PREFIX = ":"


class FrameParser:
    """
    Incremental text/event-stream parser.

    Feed it chunks exactly as they come off the socket; it keeps partial lines
    (and partial UTF-8 sequences) buffered until a full line is available, so the
    frames produced never depend on where the chunk boundaries fall. Only a
    blank line completes a frame; there is no end-of-stream flush.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._event: Optional[str] = None
        self._data: List[str] = []

    def feed(self, chunk: Union[bytes, str]) -> List[Frame]:
        if isinstance(chunk, bytes):
            text = self._decoder.decode(chunk)
        else:
            text = chunk
        if not text:
            return []

        self._buffer += text
        frames: List[Frame] = []
        while True:
            idx = self._buffer.find("\n")
            if idx < 0:
                break
            line = self._buffer[:idx]
            self._buffer = self._buffer[idx + 1:]
            if line.endswith("\r"):
                line = line[:-1]
            frame = self._consume_line(line)
            if frame is not None:
                frames.append(frame)
        return frames

    def _consume_line(self, line: str) -> Optional[Frame]:
        if not line:
            return self._emit()
        if line.startswith(_EVENT_PREFIX):
            self._event = line[len(_EVENT_PREFIX):].strip()
            return None
        if line.startswith(_DATA_PREFIX):
            value = line[len(_DATA_PREFIX):]
            if value.startswith(" "):
                value = value[1:]
            self._data.append(value)
            return None
        if line.startswith(_COMMENT_PREFIX):
            return None
        # fields we don't use (id:, retry:) are ignored
        return None

    def _emit(self) -> Optional[Frame]:
        if self._event is None and not self._data:
            return None
        frame = Frame(event=self._event or "message", data=self._data)
        self._event = None
        self._data = []
        return frame


async def iter_frames(chunks: AsyncIterator[bytes]) -> AsyncIterator[Frame]:
    """
    Lazily turn an async byte iterator into frames, in arrival order. An event
    still unterminated when the bytes run out is dropped, as SSE requires.
    """
    parser = FrameParser()
    async for chunk in chunks:
        for frame in parser.feed(chunk):
            yield frame
