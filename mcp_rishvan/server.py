"""MCP server exposing the ask_rishvan tool to agents."""

from typing import Annotated

from mcp.server.fastmcp import FastMCP
from pydantic import Field

from rishvan.ask import AskService


def create_server(service: AskService) -> FastMCP:
    """Build the MCP server around an ask service."""
    mcp = FastMCP("rishvan-mcp")

    @mcp.tool()
    async def ask_rishvan(
        question: Annotated[
            str,
            Field(description="The question, recommendation request, or 'what to do next' prompt for the human"),
        ],
        app_name: Annotated[
            str,
            Field(description="The name of the application or project context"),
        ],
    ) -> str:
        """Ask a human for input, recommendation, or guidance. Opens a web UI for the human to respond."""
        return await service.ask(app_name, question)

    return mcp
