"""Tests for the MCP tool surface."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

from mcp_rishvan.server import create_server


def test_registers_ask_tool():
    server = create_server(MagicMock())

    tools = asyncio.run(server.list_tools())

    [tool] = [t for t in tools if t.name == "ask_rishvan"]
    assert "human" in tool.description
    assert set(tool.inputSchema["required"]) == {"question", "app_name"}


def test_tool_delegates_to_service():
    service = MagicMock()
    service.ask = AsyncMock(return_value="yes")
    server = create_server(service)

    asyncio.run(server.call_tool("ask_rishvan", {"question": "ship it?", "app_name": "app1"}))

    service.ask.assert_awaited_once_with("app1", "ship it?")
