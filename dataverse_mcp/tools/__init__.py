"""Tool handlers, grouped by area.

Importing this package registers every tool with :mod:`.registry`.
"""
from dataverse_mcp.tools import (  # noqa: F401
    autonumber,
    business_units,
    columns,
    optionsets,
    powerpages_config,
    relationships,
    roles,
    schema,
    solutions,
    tables,
    teams,
    webapi,
)
from dataverse_mcp.tools.registry import TOOLS, call_tool, tool_definitions  # noqa: F401
