"""Server-sent event stream for teaching turns.

The turn runs as a background task and writes events here; the HTTP
response drains them. Once the client goes away the stream is closed and
every further write is a silent no-op returning False, so the turn can keep
going (validation, persistence) without a connection to write to.

Event order for a turn: text, audio x N, then exactly one of done or error.
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_END = object()


def format_sse(event: str, data: Dict[str, Any]) -> str:
    """Frame one event as `event: <kind>\\ndata: <json>\\n\\n`."""
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


class EventStream:
    """Queue-backed event writer for one turn."""

    def __init__(self, session_id: str = ""):
        self.session_id = session_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._finished = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def finished(self) -> bool:
        """True once a terminal event (done or error) has been written."""
        return self._finished

    def close(self) -> None:
        """Stop accepting events; called when the client disconnects."""
        if not self._closed:
            self._closed = True
            logger.info(f"[events] Stream closed for session {self.session_id}")

    def _write(self, event: str, data: Dict[str, Any], terminal: bool = False) -> bool:
        if self._closed or self._finished:
            return False
        self._queue.put_nowait(format_sse(event, data))
        if terminal:
            self._finished = True
            self._queue.put_nowait(_END)
        return True

    async def send_text(
        self,
        display_text: str,
        audio_text: str,
        svg: Optional[str],
        agent_name: str,
        handoff_message: Optional[str] = None,
    ) -> bool:
        return self._write("text", {
            "displayText": display_text,
            "audioText": audio_text,
            "svg": svg,
            "agentName": agent_name,
            "handoffMessage": handoff_message,
        })

    async def send_audio(self, index: int, audio: Optional[str], text: str) -> bool:
        return self._write("audio", {
            "index": index,
            "audio": audio,
            "text": text,
        })

    async def send_done(self, lesson_complete: bool, agent_name: str, reason: str) -> bool:
        return self._write("done", {
            "lessonComplete": lesson_complete,
            "routing": {
                "agentName": agent_name,
                "reason": reason,
            },
        }, terminal=True)

    async def send_error(self, message: str) -> bool:
        return self._write("error", {"message": message}, terminal=True)

    async def events(self) -> AsyncIterator[str]:
        """Framed events until the terminal event has been delivered."""
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            yield item
