"""Configuration and logging setup for the Dataverse MCP server."""
import logging
import os
import sys

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator

from dataverse_mcp.errors import ConfigurationError

# Environment variable name for each DataverseConfig field
ENV_VARS = {
    "dataverse_url": "DATAVERSE_URL",
    "client_id": "DATAVERSE_CLIENT_ID",
    "client_secret": "DATAVERSE_CLIENT_SECRET",
    "tenant_id": "DATAVERSE_TENANT_ID",
}

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class DataverseConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    dataverse_url: str
    client_id: str
    client_secret: str
    tenant_id: str

    @field_validator("dataverse_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


def load_config(env_file=None) -> DataverseConfig:
    """Build the config from the environment.

    Values already present in the process environment (including those the
    MCP host passes in) win over the ``.env`` file.
    """
    load_dotenv(env_file or find_dotenv(usecwd=True), override=False)

    values = {field: os.environ.get(name, "").strip() for field, name in ENV_VARS.items()}
    missing = [ENV_VARS[field] for field, value in values.items() if not value]
    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    return DataverseConfig(**values)


def debug_enabled() -> bool:
    return os.environ.get("DEBUG", "").lower() == "true"


def configure_logging(debug=None):
    """Send log records to stderr; stdout carries the MCP stream."""
    if debug is None:
        debug = debug_enabled()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if debug else logging.INFO)

    # msal and urllib3 are chatty at DEBUG
    for name in ("msal", "urllib3"):
        logging.getLogger(name).setLevel(logging.INFO if debug else logging.WARNING)
