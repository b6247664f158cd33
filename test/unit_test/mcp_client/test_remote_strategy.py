from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from weft_ai.mcp_client.errors import ProtocolError, TransportError
from weft_ai.mcp_client.schemas.core import ToolServerConfig, TransportKind
from weft_ai.mcp_client.strategy.remote import SESSION_HEADER, RemoteMcpStrategy

ENDPOINT = "http://mock/mcp"

_TOOLS = [
    {"name": "search", "description": "Search", "inputSchema": {"type": "object", "properties": {"q": {"type": "string"}}}},
    {"name": "fetch", "inputSchema": {"type": "object"}},
]


def _sse(*frames: Dict[str, Any]) -> bytes:
    lines = []
    for f in frames:
        lines.append("event: message")
        lines.append(f"data: {json.dumps(f)}")
        lines.append("")
    return ("\n".join(lines) + "\n").encode()


class _FakeServer:
    """JSON-RPC tool server behind an ``httpx.MockTransport``."""

    def __init__(self, *, session: Optional[str] = "sess-1", sse: bool = False) -> None:
        self.session = session
        self.sse = sse
        self.requests: List[httpx.Request] = []
        self.override: Optional[Callable[[Dict[str, Any]], Optional[httpx.Response]]] = None

    @property
    def methods(self) -> List[str]:
        return [json.loads(r.content)["method"] for r in self.requests]

    def _result(self, body: Dict[str, Any]) -> Any:
        method = body["method"]
        if method == "initialize":
            return {"protocolVersion": "2024-11-05", "serverInfo": {"name": "fake", "version": "1"}, "capabilities": {}}
        if method == "tools/list":
            return {"tools": _TOOLS}
        if method == "tools/call":
            args = body["params"]["arguments"]
            return {"content": [{"type": "text", "text": f"found {args.get('q')}"}], "isError": False}
        raise AssertionError(f"unexpected method {method}")

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = json.loads(request.content)
        if self.override is not None:
            resp = self.override(body)
            if resp is not None:
                return resp
        headers = {SESSION_HEADER: self.session} if self.session and body["method"] == "initialize" else {}
        if "id" not in body:
            return httpx.Response(202, headers=headers)
        envelope = {"jsonrpc": "2.0", "id": body["id"], "result": self._result(body)}
        if self.sse:
            return httpx.Response(
                200,
                headers={**headers, "content-type": "text/event-stream"},
                content=_sse({"jsonrpc": "2.0", "method": "notifications/progress", "params": {}}, envelope),
            )
        return httpx.Response(200, headers=headers, json=envelope)


def _strategy(fake: _FakeServer) -> RemoteMcpStrategy:
    return RemoteMcpStrategy(client=httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)))


def _server(**kwargs: Any) -> ToolServerConfig:
    kwargs.setdefault("id", "srv-1")
    kwargs.setdefault("endpoint", ENDPOINT)
    return ToolServerConfig(project_id="proj-1", name="Remote", **kwargs)


@pytest.mark.asyncio
async def test_handshake_precedes_first_request_and_runs_once() -> None:
    fake = _FakeServer()
    strategy = _strategy(fake)
    server = _server()

    tools = await strategy.list_tools(server)
    await strategy.call_tool(server, "search", {"q": "x"})

    assert [t.name for t in tools] == ["search", "fetch"]
    assert tools[0].input_schema["properties"]["q"] == {"type": "string"}
    assert fake.methods == ["initialize", "notifications/initialized", "tools/list", "tools/call"]
    init = json.loads(fake.requests[0].content)
    assert init["params"]["protocolVersion"] == "2024-11-05"
    assert init["params"]["capabilities"] == {}
    assert init["params"]["clientInfo"]["name"] == "weft-ai"


@pytest.mark.asyncio
async def test_session_header_is_echoed_after_initialize() -> None:
    fake = _FakeServer(session="abc")
    strategy = _strategy(fake)

    await strategy.list_tools(_server(), auth_token="tok")

    assert SESSION_HEADER not in fake.requests[0].headers
    assert [r.headers.get(SESSION_HEADER) for r in fake.requests[1:]] == ["abc", "abc"]
    assert all(r.headers["Authorization"] == "Bearer tok" for r in fake.requests)
    assert all(r.headers["MCP-Protocol-Version"] == "2025-03-26" for r in fake.requests)
    assert strategy.session_id("srv-1") == "abc"


@pytest.mark.asyncio
async def test_stateless_server_gets_no_session_header() -> None:
    fake = _FakeServer(session=None)
    strategy = _strategy(fake)

    await strategy.list_tools(_server())

    assert all(SESSION_HEADER not in r.headers for r in fake.requests)


@pytest.mark.asyncio
async def test_plain_http_transport_accepts_json_only() -> None:
    fake = _FakeServer()
    strategy = _strategy(fake)

    await strategy.list_tools(_server(transport=TransportKind.http))

    assert fake.requests[0].headers["Accept"] == "application/json"


@pytest.mark.asyncio
async def test_event_stream_and_json_bodies_decode_identically() -> None:
    json_fake, sse_fake = _FakeServer(), _FakeServer(sse=True)

    from_json = await _strategy(json_fake).call_tool(_server(), "search", {"q": "cats"})
    from_sse = await _strategy(sse_fake).call_tool(_server(), "search", {"q": "cats"})

    assert from_json == from_sse
    assert from_sse.text() == "found cats"
    assert not from_sse.is_error


@pytest.mark.asyncio
async def test_not_found_with_session_resets_and_rehandshakes() -> None:
    fake = _FakeServer(session="s1")
    strategy = _strategy(fake)
    server = _server()
    await strategy.list_tools(server)

    fake.override = lambda body: httpx.Response(404, text="session expired") if body["method"] == "tools/call" else None
    with pytest.raises(TransportError) as exc:
        await strategy.call_tool(server, "search", {"q": "x"})
    assert exc.value.status_code == 404
    assert strategy.session_id(server.id) is None

    fake.override = None
    fake.session = "s2"
    await strategy.call_tool(server, "search", {"q": "x"})

    assert fake.methods[-3:] == ["initialize", "notifications/initialized", "tools/call"]
    assert fake.requests[-1].headers[SESSION_HEADER] == "s2"


@pytest.mark.asyncio
async def test_server_error_status_raises_transport_error() -> None:
    fake = _FakeServer()
    fake.override = lambda body: httpx.Response(500, text="boom")

    with pytest.raises(TransportError) as exc:
        await _strategy(fake).list_tools(_server())

    assert exc.value.status_code == 500


@pytest.mark.asyncio
async def test_network_failure_raises_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    strategy = RemoteMcpStrategy(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    with pytest.raises(TransportError):
        await strategy.list_tools(_server())


@pytest.mark.asyncio
async def test_jsonrpc_error_raises_protocol_error() -> None:
    fake = _FakeServer()
    strategy = _strategy(fake)
    await strategy.list_tools(_server())
    fake.override = lambda body: httpx.Response(
        200, json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32602, "message": "Unknown tool: nope"}}
    )

    with pytest.raises(ProtocolError) as exc:
        await strategy.call_tool(_server(), "nope", {})

    assert exc.value.rpc_code == -32602
    assert exc.value.message == "Unknown tool: nope"


@pytest.mark.asyncio
async def test_invalid_json_body_raises_protocol_error() -> None:
    fake = _FakeServer()
    fake.override = lambda body: httpx.Response(200, text="<html>nope</html>") if "id" in body else None

    with pytest.raises(ProtocolError):
        await _strategy(fake).list_tools(_server())


@pytest.mark.asyncio
async def test_event_stream_without_matching_frame_raises_transport_error() -> None:
    fake = _FakeServer()
    fake.override = lambda body: (
        httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=_sse({"jsonrpc": "2.0", "id": 999, "result": {}}),
        )
        if body["method"] == "initialize"
        else None
    )

    with pytest.raises(TransportError):
        await _strategy(fake).list_tools(_server())


@pytest.mark.asyncio
async def test_missing_endpoint_raises_transport_error() -> None:
    strategy = _strategy(_FakeServer())

    with pytest.raises(TransportError):
        await strategy.list_tools(_server(endpoint=None))


@pytest.mark.asyncio
async def test_list_tools_follows_next_cursor() -> None:
    fake = _FakeServer()

    def paged(body: Dict[str, Any]) -> Optional[httpx.Response]:
        if body["method"] != "tools/list":
            return None
        cursor = (body.get("params") or {}).get("cursor")
        if cursor is None:
            result = {"tools": [_TOOLS[0]], "nextCursor": "page-2"}
        else:
            assert cursor == "page-2"
            result = {"tools": [_TOOLS[1]]}
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    fake.override = paged
    tools = await _strategy(fake).list_tools(_server())

    assert [t.name for t in tools] == ["search", "fetch"]
    assert fake.methods.count("tools/list") == 2


@pytest.mark.asyncio
async def test_initialized_notification_failure_is_ignored() -> None:
    fake = _FakeServer()
    fake.override = lambda body: httpx.Response(500) if body["method"] == "notifications/initialized" else None

    tools = await _strategy(fake).list_tools(_server())

    assert len(tools) == 2
