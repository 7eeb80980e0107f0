"""
HTTP client for a running docqa server's streaming endpoint.

Records are decoded with SSEDecoder, so a record split across network reads
is reassembled and a malformed one is skipped.  Iteration stops at the first
terminal record (`sources`, `summary` or `error`), which closes the
connection.
"""
from __future__ import annotations

from typing import Iterator, Optional

import httpx
from loguru import logger

from docqa.errors import InputError, UpstreamError
from docqa.serving.events import TERMINAL_TYPES
from docqa.utils.sse import SSEDecoder


def stream_query(
    base_url: str,
    query: str,
    top_k: int = 5,
    timeout: Optional[float] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> Iterator[dict]:
    decoder = SSEDecoder()
    url = base_url.rstrip("/") + "/api/query/stream"

    with httpx.Client(timeout=timeout, transport=transport) as client:
        with client.stream("POST", url, json={"query": query, "topK": top_k}) as resp:
            if resp.status_code != 200:
                detail = resp.read().decode("utf-8", errors="replace")
                if resp.status_code == 400:
                    raise InputError(detail)
                raise UpstreamError(f"{url} returned {resp.status_code}: {detail}", service="docqa-api")

            for chunk in resp.iter_bytes():
                for record in decoder.feed(chunk):
                    yield record
                    if record.get("type") in TERMINAL_TYPES:
                        return

    logger.warning(f"[Client] Stream from {url} ended without a terminal event")
