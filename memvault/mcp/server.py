"""
memvault MCP Server - similarity, chunking and backup checks for MCP clients.

Exposes the pure memvault operations as MCP tools so an assistant can score
candidate facts against existing memories, size documents for extraction and
check backup packages before importing them.

Usage:
    memvault mcp  # Start MCP server (stdio transport)
"""

import asyncio
import logging
from typing import Any, Dict, List

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import (
    TextContent,
    Tool,
)

from memvault.mcp.handlers import HANDLERS, VALIDATORS
from memvault.mcp.tool_definitions import TOOLS

logger = logging.getLogger(__name__)

# Initialize MCP server
mcp = Server("memvault")


def validate_tool_input(name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Validate and sanitize MCP tool inputs."""
    try:
        if not isinstance(name, str):
            raise ValueError(f"tool name must be a string, got {type(name).__name__}")
        if not name:
            raise ValueError("tool name must not be empty")
        if not isinstance(arguments, dict):
            raise ValueError(f"arguments must be an object, got {type(arguments).__name__}")

        validator = VALIDATORS.get(name)
        if validator is None:
            raise ValueError(f"Unknown tool: {name}")
        return validator(arguments)

    except (ValueError, TypeError) as e:
        logger.warning(f"Input validation failed for tool {name}: {e}")
        raise ValueError(str(e)) from e


def handle_tool_error(e: Exception, tool_name: str, arguments: Dict[str, Any]) -> List[TextContent]:
    """Handle tool errors securely."""
    if isinstance(e, ValueError):
        logger.warning(f"Invalid input for tool {tool_name}: {e}")
        return [TextContent(type="text", text=f"Invalid input: {str(e)}")]

    # Unknown error - log full details but return generic message
    argument_keys = list(arguments.keys()) if isinstance(arguments, dict) else []
    logger.error(
        f"Internal error in tool {tool_name}",
        extra={
            "tool_name": tool_name,
            "arguments_keys": argument_keys,
            "error_type": type(e).__name__,
            "error_message": str(e),
        },
        exc_info=True,
    )
    return [TextContent(type="text", text="Internal server error")]


# =============================================================================
# MCP PROTOCOL HANDLERS
# =============================================================================


@mcp.list_tools()
async def list_tools() -> list[Tool]:
    """List available memvault tools."""
    return list(TOOLS)


@mcp.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Handle tool calls with validation and error handling."""
    try:
        sanitized_args = validate_tool_input(name, arguments)
        handler = HANDLERS.get(name)
        if handler is None:
            logger.error(f"Unexpected tool name after validation: {name}")
            return [TextContent(type="text", text=f"Tool '{name}' is not available")]
        result = handler(sanitized_args)
        return [TextContent(type="text", text=result)]

    except Exception as e:
        return handle_tool_error(e, name, arguments)


async def run_server():
    """Run the MCP server."""
    async with stdio_server() as (read_stream, write_stream):
        await mcp.run(
            read_stream,
            write_stream,
            mcp.create_initialization_options(),
        )


def main():
    """Entry point for MCP server."""
    asyncio.run(run_server())


if __name__ == "__main__":
    main()
