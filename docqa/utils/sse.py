"""
Server-Sent Events framing.

Each record is one `data: <json object>` line followed by a blank line.
SSEDecoder is the consuming side: it accepts transport chunks of any size,
reassembles records split across chunk boundaries, and skips records whose
payload is not a JSON object.
"""
from __future__ import annotations

import codecs
from typing import Any

import orjson
from loguru import logger

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_sse(payload: dict[str, Any]) -> bytes:
    return b"data: " + orjson.dumps(payload) + b"\n\n"


class SSEDecoder:
    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.skipped = 0

    def feed(self, chunk: bytes | str) -> list[dict[str, Any]]:
        """Add a transport chunk; return every record completed by it."""
        text = self._utf8.decode(chunk) if isinstance(chunk, bytes) else chunk
        self._buffer += text.replace("\r\n", "\n")

        records: list[dict[str, Any]] = []
        while "\n\n" in self._buffer:
            raw, self._buffer = self._buffer.split("\n\n", 1)
            record = self._parse(raw)
            if record is not None:
                records.append(record)
        return records

    def _parse(self, raw: str) -> dict[str, Any] | None:
        data_lines = [
            line[5:].lstrip(" ") for line in raw.split("\n") if line.startswith("data:")
        ]
        if not data_lines:
            # comments, bare `event:` lines, keep-alives
            return None
        try:
            payload = orjson.loads("\n".join(data_lines))
        except orjson.JSONDecodeError:
            self.skipped += 1
            logger.warning(f"[SSE] Skipping malformed record: {raw[:80]!r}")
            return None
        if not isinstance(payload, dict):
            self.skipped += 1
            logger.warning(f"[SSE] Skipping non-object record: {raw[:80]!r}")
            return None
        return payload
