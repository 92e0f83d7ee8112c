import json
import logging
import os
from datetime import datetime, timezone

import msal
import requests
from pydantic import BaseModel, ConfigDict

from dataverse_mcp.errors import (
    AuthenticationError,
    DataverseApiError,
    NoSolutionContextError,
    SolutionNotFoundError,
)

logger = logging.getLogger(__name__)

API_PATH = "api/data/v9.2/"
CONTEXT_FILE = ".dataverse-mcp"
LEGACY_CONTEXT_FILE = ".mcp-dataverse"

# Seconds shaved off a token's lifetime so it is never sent right at expiry
TOKEN_EXPIRY_MARGIN = 60

# Actions the platform only accepts without the Microsoft.Dynamics.CRM prefix
GLOBAL_ACTIONS = frozenset([
    "PublishXml",
    "PublishAllXml",
    "InsertOptionValue",
    "UpdateOptionValue",
    "DeleteOptionValue",
    "OrderOption",
    "ExportSolution",
    "ImportSolution",
])

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
    "OData-MaxVersion": "4.0",
    "OData-Version": "4.0",
}


def odata_literal(value):
    """Quote ``value`` as an OData string literal, doubling embedded quotes."""
    return "'" + str(value).replace("'", "''") + "'"


class AuthToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "Bearer"
    expires_at: float

    def is_expired(self, now=None):
        if now is None:
            now = datetime.now().timestamp()
        return now >= self.expires_at


class SolutionContext(BaseModel):
    solutionUniqueName: str
    solutionDisplayName: str | None = None
    publisherUniqueName: str | None = None
    publisherDisplayName: str | None = None
    customizationPrefix: str | None = None
    lastUpdated: str


class DataverseService:
    def __init__(self, config, context_dir=None, session=None):
        self.config = config
        self.base_url = f"{config.dataverse_url}/{API_PATH}"
        self.session = session or requests.Session()
        self.auth_token = None
        self.solution_context = None
        self.context_path = os.path.join(context_dir or os.getcwd(), CONTEXT_FILE)
        self.legacy_context_path = os.path.join(context_dir or os.getcwd(), LEGACY_CONTEXT_FILE)

        # Built on first use; msal contacts the authority while constructing
        self.msal_client = None

        self._load_solution_context()

    # Token manager

    async def ensure_authenticated(self):
        """Make sure an unexpired bearer token is cached"""
        if self.auth_token is None or self.auth_token.is_expired():
            self.auth_token = self._authenticate()
        return self.auth_token

    def _authenticate(self):
        current_time = datetime.now().timestamp()
        try:
            if self.msal_client is None:
                self.msal_client = msal.ConfidentialClientApplication(
                    client_id=self.config.client_id,
                    client_credential=self.config.client_secret,
                    authority=f"https://login.microsoftonline.com/{self.config.tenant_id}",
                )
            result = self.msal_client.acquire_token_for_client(
                scopes=[f"{self.config.dataverse_url}/.default"]
            )
        except (requests.RequestException, ValueError) as e:
            raise AuthenticationError(f"Authentication failed: {e}") from e

        if not result or "access_token" not in result:
            detail = "no access token returned"
            if result:
                detail = result.get("error_description") or result.get("error") or detail
            raise AuthenticationError(f"Authentication failed: {detail}")

        logger.debug("Acquired access token, expires in %ss", result.get("expires_in"))
        return AuthToken(
            access_token=result["access_token"],
            token_type=result.get("token_type", "Bearer"),
            expires_at=current_time + int(result.get("expires_in", 0)) - TOKEN_EXPIRY_MARGIN,
        )

    # Solution context store

    def _load_solution_context(self):
        path = self.context_path
        if not os.path.exists(path):
            path = self.legacy_context_path
            if not os.path.exists(path):
                return

        try:
            with open(path, "r", encoding="utf-8") as f:
                self.solution_context = SolutionContext.model_validate(json.load(f))
            logger.info("Loaded solution context '%s' from %s",
                        self.solution_context.solutionUniqueName, path)
        except (OSError, ValueError) as e:
            # pydantic's ValidationError is a ValueError too
            logger.warning("Ignoring unreadable solution context file %s: %s", path, e)
            self.solution_context = None

    def _save_solution_context(self):
        try:
            with open(self.context_path, "w", encoding="utf-8") as f:
                json.dump(self.solution_context.model_dump(), f, indent=2)
        except OSError as e:
            logger.warning("Could not persist solution context to %s: %s", self.context_path, e)

    async def set_solution_context(self, solution_unique_name):
        """Make the named solution the active context and persist it"""
        response = await self.get(
            f"solutions?$filter=uniquename eq {odata_literal(solution_unique_name)}"
            "&$expand=publisherid($select=uniquename,friendlyname,customizationprefix)"
        )
        solutions = (response or {}).get("value", [])
        if not solutions:
            raise SolutionNotFoundError(f"Solution '{solution_unique_name}' not found")

        solution = solutions[0]
        publisher = solution.get("publisherid") or {}
        self.solution_context = SolutionContext(
            solutionUniqueName=solution.get("uniquename", solution_unique_name),
            solutionDisplayName=solution.get("friendlyname"),
            publisherUniqueName=publisher.get("uniquename"),
            publisherDisplayName=publisher.get("friendlyname"),
            customizationPrefix=publisher.get("customizationprefix"),
            lastUpdated=datetime.now(timezone.utc).isoformat(),
        )
        self._save_solution_context()
        return self.solution_context

    def get_solution_context(self):
        return self.solution_context

    def clear_solution_context(self):
        self.solution_context = None
        for path in (self.context_path, self.legacy_context_path):
            try:
                if os.path.exists(path):
                    os.remove(path)
            except OSError as e:
                logger.warning("Could not delete solution context file %s: %s", path, e)

    async def get_customization_prefix(self):
        if self.solution_context is None:
            raise NoSolutionContextError(
                "No solution context set. Use set_solution_context to select a solution first."
            )
        if not self.solution_context.customizationPrefix:
            raise NoSolutionContextError(
                f"Solution '{self.solution_context.solutionUniqueName}' has no customization prefix"
            )
        return self.solution_context.customizationPrefix

    # HTTP request layer

    async def make_request(self, method, endpoint, data=None, params=None, headers=None):
        """Make an authenticated request to the Dataverse Web API"""
        token = await self.ensure_authenticated()

        request_headers = dict(DEFAULT_HEADERS)
        request_headers["Authorization"] = f"Bearer {token.access_token}"
        if headers:
            request_headers.update(headers)

        logger.debug("%s %s", method, endpoint)
        response = self.session.request(
            method,
            f"{self.base_url}{endpoint}",
            headers=request_headers,
            params=params,
            data=json.dumps(data) if data is not None else None,
        )

        try:
            response.raise_for_status()
        except requests.HTTPError:
            error = _dataverse_error(response)
            if error is not None:
                raise DataverseApiError(
                    error.get("message"), code=error.get("code"), status_code=response.status_code
                )
            raise

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def get(self, endpoint, params=None):
        return await self.make_request("GET", endpoint, params=params)

    async def post(self, endpoint, data=None):
        return await self.make_request("POST", endpoint, data=data)

    async def patch(self, endpoint, data=None):
        return await self.make_request("PATCH", endpoint, data=data)

    async def put(self, endpoint, data=None):
        return await self.make_request("PUT", endpoint, data=data)

    async def delete(self, endpoint):
        await self.make_request("DELETE", endpoint)

    def _solution_headers(self, headers=None):
        merged = {}
        if self.solution_context is not None:
            merged["MSCRM.SolutionUniqueName"] = self.solution_context.solutionUniqueName
        if headers:
            merged.update(headers)
        return merged

    async def get_metadata(self, endpoint, params=None):
        return await self.make_request("GET", endpoint, params=params, headers=self._solution_headers())

    async def post_metadata(self, endpoint, data=None, headers=None):
        return await self.make_request("POST", endpoint, data=data, headers=self._solution_headers(headers))

    async def patch_metadata(self, endpoint, data=None, headers=None):
        return await self.make_request("PATCH", endpoint, data=data, headers=self._solution_headers(headers))

    async def put_metadata(self, endpoint, data=None, headers=None):
        return await self.make_request("PUT", endpoint, data=data, headers=self._solution_headers(headers))

    async def delete_metadata(self, endpoint):
        await self.make_request("DELETE", endpoint, headers=self._solution_headers())

    # Action invoker

    async def call_action(self, action_name, data=None):
        """POST to a named action, prefixing everything but the global actions"""
        if action_name in GLOBAL_ACTIONS:
            endpoint = action_name
        else:
            endpoint = f"Microsoft.Dynamics.CRM.{action_name}"
        return await self.post(endpoint, data or {})


def _dataverse_error(response):
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"]
    return None
