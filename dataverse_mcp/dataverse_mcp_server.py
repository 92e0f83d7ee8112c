#!/usr/bin/env python3
import logging
from typing import Any, Dict, List

import mcp.server.stdio
import mcp.types as types
from mcp.server.lowlevel import NotificationOptions, Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.models import InitializationOptions

from dataverse_mcp import __version__
from dataverse_mcp.config import load_config
from dataverse_mcp.dataverse_service import DataverseService
from dataverse_mcp.resources import EXAMPLE_RESOURCES, RESOURCE_TEMPLATES, read_resource
from dataverse_mcp.tools import call_tool, tool_definitions

logger = logging.getLogger(__name__)

SERVER_NAME = "dataverse-mcp"

# Global service instance
dataverse_service = None


# Function to initialize DataverseService on demand
async def get_dataverse_service():
    global dataverse_service
    if dataverse_service is None:
        # Raises ConfigurationError naming any missing variables
        config = load_config()
        dataverse_service = DataverseService(config)
        logger.info("Dataverse service initialized for %s", config.dataverse_url)
    return dataverse_service


# Create server instance
server = Server(SERVER_NAME)


# List available tools
@server.list_tools()
async def handle_list_tools() -> List[types.Tool]:
    return tool_definitions()


# Dispatch a tool call; exceptions become isError results
@server.call_tool()
async def handle_call_tool(name: str, arguments: Dict[str, Any] | None) -> List[types.TextContent]:
    text = await call_tool(name, arguments, get_dataverse_service)
    return [types.TextContent(type="text", text=text)]


@server.list_resources()
async def handle_list_resources() -> List[types.Resource]:
    return EXAMPLE_RESOURCES


@server.list_resource_templates()
async def handle_list_resource_templates() -> List[types.ResourceTemplate]:
    return RESOURCE_TEMPLATES


@server.read_resource()
async def handle_read_resource(uri) -> List[ReadResourceContents]:
    service = await get_dataverse_service()
    context = service.get_solution_context()
    text, mime_type = read_resource(
        uri,
        service.config.dataverse_url,
        solution_unique_name=context.solutionUniqueName if context is not None else None,
    )
    return [ReadResourceContents(content=text, mime_type=mime_type)]


async def main():
    logger.info("Initializing Dataverse MCP Server...")

    async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            InitializationOptions(
                server_name=SERVER_NAME,
                server_version=__version__,
                capabilities=server.get_capabilities(
                    notification_options=NotificationOptions(),
                    experimental_capabilities={},
                ),
            ),
        )
