from __future__ import annotations

import json
from typing import AsyncIterator, List

import pytest

from weft_ai.mcp_client.errors import ProtocolError, TransportError
from weft_ai.mcp_client.transport.sse import SseLineBuffer, decode_response, iter_sse_data, read_jsonrpc_frame


async def _chunks(*parts: bytes) -> AsyncIterator[bytes]:
    for p in parts:
        yield p


async def _collect(it: AsyncIterator[str]) -> List[str]:
    return [x async for x in it]


def test_line_buffer_joins_lines_split_across_chunks() -> None:
    buf = SseLineBuffer()

    assert buf.feed(b"data: {\"a\"") == []
    assert buf.feed(b": 1}\r\n\r\nda") == ['data: {"a": 1}', ""]
    assert buf.feed(b"ta: x") == []
    assert buf.flush() == ["data: x"]
    assert buf.flush() == []


def test_line_buffer_keeps_multibyte_characters_intact() -> None:
    buf = SseLineBuffer()
    encoded = "data: café\n".encode("utf-8")

    first = buf.feed(encoded[:10])
    rest = buf.feed(encoded[10:])

    assert first == []
    assert rest == ["data: café"]


@pytest.mark.asyncio
async def test_iter_sse_data_ignores_comments_and_other_fields() -> None:
    stream = _chunks(b": keepalive\n", b"event: message\nid: 7\nretry: 100\n", b"data: one\n\n", b"data:two")

    assert await _collect(iter_sse_data(stream)) == ["one", "two"]


@pytest.mark.asyncio
async def test_read_frame_skips_notifications_and_foreign_ids() -> None:
    frames = [
        {"jsonrpc": "2.0", "method": "notifications/message", "params": {"level": "info"}},
        {"jsonrpc": "2.0", "id": 41, "result": {"other": True}},
        {"jsonrpc": "2.0", "id": 42, "result": {"ok": True}},
    ]
    body = "".join(f"data: {json.dumps(f)}\n\n" for f in frames).encode()

    frame = await read_jsonrpc_frame(_chunks(body[:30], body[30:]), 42)

    assert frame.id == 42
    assert frame.result == {"ok": True}


@pytest.mark.asyncio
async def test_read_frame_skips_non_json_data() -> None:
    body = b'data: not json\n\ndata: {"jsonrpc": "2.0", "id": "a", "result": 1}\n\n'

    frame = await read_jsonrpc_frame(_chunks(body), "a")

    assert frame.result == 1


@pytest.mark.asyncio
async def test_read_frame_raises_error_member() -> None:
    body = b'data: {"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "Method not found"}}\n\n'

    with pytest.raises(ProtocolError) as exc:
        await read_jsonrpc_frame(_chunks(body), 1)

    assert exc.value.rpc_code == -32601


@pytest.mark.asyncio
async def test_read_frame_raises_idless_error() -> None:
    body = b'data: {"jsonrpc": "2.0", "error": {"code": -32700, "message": "Parse error"}}\n\n'

    with pytest.raises(ProtocolError):
        await read_jsonrpc_frame(_chunks(body), 1)


@pytest.mark.asyncio
async def test_read_frame_truncated_stream_raises_transport_error() -> None:
    with pytest.raises(TransportError):
        await read_jsonrpc_frame(_chunks(b'data: {"jsonrpc": "2.0", "id": 1, "res'), 1)


def test_decode_response_rejects_malformed_envelope() -> None:
    with pytest.raises(ProtocolError):
        decode_response({"jsonrpc": "2.0", "id": 1, "error": {"message": "missing code"}})
