#!/usr/bin/env python3
import asyncio
import logging
import sys

from dataverse_mcp.config import configure_logging
from dataverse_mcp.dataverse_mcp_server import main

logger = logging.getLogger(__name__)


def main_entry():
    """
    Entry point for the Dataverse MCP server.
    This function is called when the package is run as a script.
    """
    configure_logging()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
        sys.exit(0)
    except Exception as e:
        logger.error("Fatal error: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main_entry()
