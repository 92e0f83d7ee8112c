"""Registry binding each MCP tool name to its parameter model and handler.

Tool modules register handlers with the :func:`tool` decorator at import
time. The server lists tools from the registry and dispatches calls through
:func:`call_tool`, which validates arguments before the handler runs.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Type

import mcp.types as types
from pydantic import ValidationError

from dataverse_mcp.errors import ToolError, ToolValidationError
from dataverse_mcp.models import ToolParams

logger = logging.getLogger(__name__)


class NoParams(ToolParams):
    pass


@dataclass(frozen=True)
class RegisteredTool:
    name: str
    description: str
    params: Type[ToolParams]
    handler: Callable[..., Awaitable[str]]
    error_phrase: str
    needs_service: bool = True


TOOLS: Dict[str, RegisteredTool] = {}


def tool(name, description, params=NoParams, error="executing tool", needs_service=True):
    """Register ``handler(service, params) -> str`` as the MCP tool ``name``.

    ``error`` completes the failure message "Error <error>: <reason>".
    """
    def decorator(handler):
        if name in TOOLS:
            raise ValueError(f"Tool '{name}' registered twice")
        TOOLS[name] = RegisteredTool(name, description, params, handler, error, needs_service)
        return handler
    return decorator


def tool_definitions() -> List[types.Tool]:
    return [
        types.Tool(
            name=registered.name,
            description=registered.description,
            inputSchema=registered.params.model_json_schema(by_alias=True),
        )
        for registered in TOOLS.values()
    ]


async def call_tool(name: str, arguments: Dict[str, Any] | None, get_service) -> str:
    """Validate ``arguments`` and run the named tool.

    ``get_service`` is an async callable returning the shared
    DataverseService; it is only awaited for tools that talk to Dataverse.
    """
    registered = TOOLS.get(name)
    if registered is None:
        raise ValueError(f"Unknown tool: {name}")

    try:
        params = registered.params.model_validate(arguments or {})
    except ValidationError as e:
        raise ToolValidationError(f"Invalid arguments for {name}: {e}") from e

    try:
        if registered.needs_service:
            service = await get_service()
            return await registered.handler(service, params)
        return await registered.handler(None, params)
    except Exception as e:
        logger.error("Tool %s failed: %s", name, e)
        raise ToolError(f"Error {registered.error_phrase}: {e}") from e


def to_json(value):
    return json.dumps(value, indent=2, default=str)
