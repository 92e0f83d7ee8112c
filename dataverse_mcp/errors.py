"""Exceptions raised by the Dataverse MCP server."""


class DataverseError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(DataverseError):
    """Required configuration is missing or invalid."""


class AuthenticationError(DataverseError):
    """The token endpoint refused or failed to issue an access token."""


class DataverseApiError(DataverseError):
    """A Web API call returned a Dataverse-shaped error body."""

    def __init__(self, message, code=None, status_code=None):
        self.code = code
        self.status_code = status_code
        super().__init__(f"Dataverse API Error: {message} (Code: {code})")


class ToolValidationError(DataverseError):
    """Tool arguments were rejected before any network call."""


class SolutionNotFoundError(DataverseError):
    """No solution matches the requested unique name."""


class NoSolutionContextError(DataverseError):
    """The operation needs an active solution context and none is set."""


class ToolError(DataverseError):
    """A tool handler failed; the message names what the tool was doing."""
