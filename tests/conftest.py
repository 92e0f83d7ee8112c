"""Shared test fixtures for dataverse_mcp tests."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from dataverse_mcp.config import DataverseConfig
from dataverse_mcp.dataverse_service import DataverseService, SolutionContext

ORG_URL = "https://contoso.crm.dynamics.com"
BASE_URL = f"{ORG_URL}/api/data/v9.2/"


def run(coro):
    """Drive a coroutine to completion from a synchronous test."""
    return asyncio.run(coro)


def make_response(status_code=200, body=None):
    """A requests.Response stand-in carrying a JSON body."""
    response = MagicMock()
    response.status_code = status_code
    response.content = json.dumps(body).encode() if body is not None else b""
    response.json.return_value = body
    if status_code >= 400:
        import requests
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} Error")
    else:
        response.raise_for_status.return_value = None
    return response


def make_context(prefix="test", unique_name="testsolution"):
    return SolutionContext(
        solutionUniqueName=unique_name,
        solutionDisplayName="Test Solution",
        publisherUniqueName="testpublisher",
        publisherDisplayName="Test Publisher",
        customizationPrefix=prefix,
        lastUpdated="2024-01-01T00:00:00+00:00",
    )


@pytest.fixture
def config():
    return DataverseConfig(
        dataverse_url=ORG_URL,
        client_id="client-id",
        client_secret="client-secret",
        tenant_id="tenant-id",
    )


@pytest.fixture
def msal_app():
    """Patch msal so no token endpoint is ever contacted."""
    with patch("dataverse_mcp.dataverse_service.msal.ConfidentialClientApplication") as factory:
        app = factory.return_value
        app.acquire_token_for_client.return_value = {
            "access_token": "token-123",
            "token_type": "Bearer",
            "expires_in": 3600,
        }
        yield app


@pytest.fixture
def session():
    session = MagicMock()
    session.request.return_value = make_response(204)
    return session


@pytest.fixture
def service(config, msal_app, session, tmp_path):
    """A real DataverseService over a mocked HTTP session."""
    return DataverseService(config, context_dir=str(tmp_path), session=session)


@pytest.fixture
def mock_service(config):
    """A DataverseService double for tool handler tests.

    Every HTTP method is an AsyncMock; the active solution context uses the
    customization prefix ``test``.
    """
    svc = MagicMock(spec=DataverseService)
    svc.config = config
    svc.base_url = BASE_URL
    for name in (
        "get", "post", "patch", "put", "delete",
        "get_metadata", "post_metadata", "patch_metadata", "put_metadata", "delete_metadata",
        "call_action", "set_solution_context",
    ):
        setattr(svc, name, AsyncMock(return_value={}))
    context = make_context()
    svc.get_solution_context.return_value = context
    svc.get_customization_prefix = AsyncMock(return_value=context.customizationPrefix)
    return svc
