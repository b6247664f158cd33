"""Server-Sent Events framing for JSON-RPC responses.

Remote tool servers speaking the streamable HTTP transport may answer a
POST with ``Content-Type: text/event-stream`` instead of a JSON body. The
response then carries one or more ``data:`` lines, each holding a JSON-RPC
message; only the message whose ``id`` matches the request is the answer.

- ``SseLineBuffer``: accumulates raw bytes and yields complete lines.
- ``iter_sse_data``: yields the payload of each ``data:`` line.
- ``read_jsonrpc_frame``: returns the first frame matching a request id.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from pydantic import ValidationError

from ..errors import ProtocolError, TransportError
from ..models import JSONRPCResponse

logger = logging.getLogger(__name__)


class SseLineBuffer:
    """Accumulate byte chunks and split them into decoded lines.

    Chunks may cut a line (or a multi-byte character) anywhere; only
    complete lines are emitted. ``CRLF`` and bare ``LF`` terminators are
    both accepted.
    """

    def __init__(self) -> None:
        self._buf = b""

    def feed(self, chunk: bytes) -> List[str]:
        self._buf += chunk
        *complete, self._buf = self._buf.split(b"\n")
        return [line.rstrip(b"\r").decode("utf-8", errors="replace") for line in complete]

    def flush(self) -> List[str]:
        """Return the trailing unterminated line, if any."""
        rest, self._buf = self._buf, b""
        if not rest:
            return []
        return [rest.rstrip(b"\r").decode("utf-8", errors="replace")]


async def iter_sse_data(chunks: AsyncIterator[bytes]) -> AsyncIterator[str]:
    """Yield the payload of every ``data:`` line in a byte stream.

    Comment lines (``:``), ``event:``/``id:``/``retry:`` fields and blank
    event boundaries are ignored.
    """
    buf = SseLineBuffer()
    async for chunk in chunks:
        for line in buf.feed(chunk):
            if line.startswith("data:"):
                yield line[5:].lstrip(" ")
    for line in buf.flush():
        if line.startswith("data:"):
            yield line[5:].lstrip(" ")


def decode_response(raw: Any) -> JSONRPCResponse:
    """Validate a JSON-RPC envelope and raise its ``error`` member.

    Shared by the plain-JSON and event-stream paths so both produce the
    same response for the same payload.

    Raises:
        ProtocolError: The envelope is malformed or carries an ``error``.
    """
    try:
        frame = JSONRPCResponse.model_validate(raw)
    except ValidationError as e:
        raise ProtocolError(f"Malformed JSON-RPC response: {e.errors()[0]['msg']}") from e
    if frame.error is not None:
        raise ProtocolError(frame.error.message, rpc_code=frame.error.code, data=frame.error.data)
    return frame


async def read_jsonrpc_frame(chunks: AsyncIterator[bytes], request_id: int | str) -> JSONRPCResponse:
    """Read an event stream until the response for ``request_id`` arrives.

    Args:
        chunks: Raw response body chunks.
        request_id: The id sent on the JSON-RPC request.

    Returns:
        The matching response frame.

    Raises:
        ProtocolError: The matching frame (or an id-less error frame)
            carries a JSON-RPC ``error``.
        TransportError: The stream closed before a matching frame arrived.
    """
    skipped = 0
    async for data in iter_sse_data(chunks):
        try:
            raw: Dict[str, Any] = json.loads(data)
        except ValueError:
            skipped += 1
            logger.debug("SSE frame skipped: not JSON (%d bytes)", len(data))
            continue
        if not isinstance(raw, dict):
            skipped += 1
            continue

        frame_id: Optional[Any] = raw.get("id")
        if frame_id is None and raw.get("error") is not None:
            decode_response(raw)
        if frame_id != request_id:
            skipped += 1
            logger.debug("SSE frame skipped: id=%r method=%r", frame_id, raw.get("method"))
            continue
        return decode_response(raw)

    raise TransportError(f"Event stream ended before a response for request id {request_id!r} (skipped {skipped} frames)")
