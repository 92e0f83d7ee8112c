"""MCP server exposing the Microsoft Dataverse Web API as tools and resources."""

__version__ = "1.0.0"
