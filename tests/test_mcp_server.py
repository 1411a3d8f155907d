import json

import pytest
from fastmcp import Client

from udd.app import mcp


@pytest.mark.asyncio
async def test_mcp_server_tools():
    """
    Verifies that the MCP server exposes the expected tools.
    """
    async with Client(mcp) as client:
        tools = {tool.name for tool in await client.list_tools()}

    assert {"get_help", "open_session", "send_payload", "encode_payload",
            "decode_payload", "list_traffic_history"} <= tools


@pytest.mark.asyncio
async def test_mcp_server_resources():
    """
    Verifies that the MCP server exposes the session resource.
    """
    async with Client(mcp) as client:
        resources = {str(res.uri) for res in await client.list_resources()}

    assert "udp://session/active" in resources


def _text(result) -> str:
    return result.content[0].text


@pytest.mark.asyncio
async def test_mcp_encode_and_decode_tools():
    async with Client(mcp) as client:
        assert _text(await client.call_tool("encode_payload", {"raw_input": "ping", "mode": "mqtt"})) == "07 04 00 01"
        assert _text(await client.call_tool("encode_payload", {"raw_input": "a\\n", "mode": "text"})) == "61 0a"
        failed = _text(await client.call_tool("encode_payload", {"raw_input": "xyz", "mode": "hex"}))
        assert failed.startswith("Encode failed:")

        assert _text(await client.call_tool("decode_payload", {"data_hex": "07040001"})) == "#1 PINGREQ"
        assert _text(await client.call_tool("decode_payload", {"data_hex": "6869"})) == 'hex=6869 text="hi"'
        assert _text(await client.call_tool("decode_payload", {"data_hex": "zz"})).startswith("Invalid hex:")


@pytest.mark.asyncio
async def test_mcp_send_without_session():
    async with Client(mcp) as client:
        result = _text(await client.call_tool("send_payload", {"raw_input": "ping"}))
        resource = await client.read_resource("udp://session/active")

    assert result.startswith("Send failed: No open session")
    assert json.loads(resource[0].text) == {"status": "closed"}


@pytest.mark.asyncio
async def test_mcp_session_tools(echo_server, wait_for_rx):
    async with Client(mcp) as client:
        opened = _text(await client.call_tool("open_session", {"target_host": "127.0.0.1",
                                                               "target_port": echo_server}))
        assert opened.endswith(f"-> 127.0.0.1:{echo_server}")

        sent = _text(await client.call_tool("send_payload", {"raw_input": "ping", "mode": "uqtt"}))
        assert sent == "Sent 4 bytes: #1 PINGREQ"
        failed = _text(await client.call_tool("send_payload", {"raw_input": "nope", "mode": "hex"}))
        assert failed.startswith("Send failed:")
        await wait_for_rx(1)

        info = json.loads((await client.read_resource("udp://session/active"))[0].text)
        history = json.loads(_text(await client.call_tool("list_traffic_history", {"limit": 5})))

    assert info["status"] == "open"
    assert info["target"] == f"127.0.0.1:{echo_server}"
    assert [h["direction"] for h in history] == ["TX", "RX"]
    assert history[1]["semantic"] == "#1 PINGREQ"


@pytest.mark.asyncio
async def test_mcp_open_session_failure():
    async with Client(mcp) as client:
        result = _text(await client.call_tool("open_session", {"target_host": "127.0.0.1",
                                                               "target_port": 9, "mode": "binary"}))
    assert result.startswith("Failed to open session:")
