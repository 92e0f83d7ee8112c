"""Build and render PowerPages portal Web API (``/_api/``) calls.

PowerPages exposes Dataverse tables to portal JavaScript under the site's
``/_api/`` path. The generated snippets assume they run inside the portal,
so state-changing calls carry the anti-forgery ``__RequestVerificationToken``
header rather than a bearer token.
"""
import json
from typing import Any, Dict, List, Literal, Optional
from urllib.parse import urlparse

from pydantic import Field

from dataverse_mcp.errors import ToolValidationError
from dataverse_mcp.models import ToolParams
from dataverse_mcp.webapi_generator import (
    GeneratedCall,
    build_odata_query,
    format_entity_set_name,
    generate_sample_body,
    has_odata_bind_properties,
    navigation_property_examples,
    process_odata_bind_properties,
)

POWERPAGES_OPERATIONS = ("retrieve", "retrieveMultiple", "create", "update", "delete")
DEFAULT_SITE_URL = "https://yoursite.powerappsportals.com"
API_MARKER = "/_api/"
TOKEN_PLACEHOLDER = "{{REQUEST_VERIFICATION_TOKEN}}"
WRITE_OPERATIONS = ("create", "update", "delete")


class PowerPagesCallRequest(ToolParams):
    operation: Literal[POWERPAGES_OPERATIONS] = Field(description="Type of operation to perform")
    logical_entity_name: str = Field(
        description="Logical entity name (e.g., 'cr7ae_creditcardse', 'contact') - "
        "will be automatically suffixed with 's' for PowerPages API URLs"
    )
    entity_id: Optional[str] = Field(None, description="Entity ID for single record operations (GUID)")
    select: Optional[List[str]] = Field(None, description="Fields to select (e.g., ['cr7ae_name', 'cr7ae_type'])")
    filter: Optional[str] = Field(None, description="OData filter expression")
    orderby: Optional[str] = Field(None, description="OData orderby expression")
    top: Optional[int] = Field(None, description="Number of records to return")
    skip: Optional[int] = Field(None, description="Number of records to skip")
    expand: Optional[str] = Field(None, description="Related entities to expand")
    count: Optional[bool] = Field(None, description="Include count of records")
    data: Optional[Dict[str, Any]] = Field(None, description="Data to send in request body for create/update operations")
    base_url: Optional[str] = Field(
        None, description="PowerPages site base URL (e.g., 'https://yoursite.powerappsportals.com')"
    )
    request_verification_token: bool = Field(
        False, description="Include __RequestVerificationToken placeholder for POST operations"
    )
    include_auth_context: bool = Field(False, description="Include authentication context information")
    custom_headers: Optional[Dict[str, str]] = Field(None, description="Custom headers to include in the request")


def process_powerpages_odata_bind_properties(data, entity_info=None):
    """Like :func:`process_odata_bind_properties`, with ``/_api/`` references."""
    return process_odata_bind_properties(data, entity_info, marker=API_MARKER, prefix=API_MARKER)


def auth_context_text():
    return AUTH_CONTEXT


def build_powerpages_call(request, entity_info=None, target_sets=None):
    if entity_info is not None and entity_info.entity_set_name:
        entity_set = entity_info.entity_set_name
    else:
        entity_set = format_entity_set_name(request.logical_entity_name)

    headers = {"Accept": "application/json", "Content-Type": "application/json"}
    if request.custom_headers:
        headers.update(request.custom_headers)
    if request.request_verification_token and request.operation in WRITE_OPERATIONS:
        headers["__RequestVerificationToken"] = TOKEN_PLACEHOLDER

    endpoint = f"{API_MARKER}{entity_set}"
    method = "GET"
    body = None
    operation = request.operation

    if operation != "retrieveMultiple" and operation != "create" and not request.entity_id:
        raise ToolValidationError(f"entityId is required for {operation} operation")

    select = request.select
    if not select and entity_info is not None and entity_info.primary_id_attribute:
        select = [entity_info.primary_id_attribute]
        if entity_info.primary_name_attribute:
            select.append(entity_info.primary_name_attribute)

    if operation == "retrieve":
        endpoint += f"({request.entity_id})" + build_odata_query(select=select, expand=request.expand)
    elif operation == "retrieveMultiple":
        endpoint += build_odata_query(
            select=select,
            filter=request.filter,
            orderby=request.orderby,
            top=request.top,
            skip=request.skip,
            expand=request.expand,
            count=request.count,
        )
    elif operation in ("create", "update"):
        if operation == "update":
            method = "PATCH"
            endpoint += f"({request.entity_id})"
        else:
            method = "POST"
        if request.data is not None:
            body = process_powerpages_odata_bind_properties(request.data, entity_info)
        elif entity_info is not None:
            body = generate_sample_body(entity_info, target_sets, mode=operation, prefix=API_MARKER)
        else:
            body = {}
    else:
        method = "DELETE"
        endpoint += f"({request.entity_id})"

    return GeneratedCall(method=method, endpoint=endpoint, headers=headers, body=body)


def _pascal(operation):
    return operation[:1].upper() + operation[1:]


def fetch_snippet(request, url, call):
    options = {"method": call.method, "headers": call.headers}
    if call.body is not None:
        options["body"] = json.dumps(call.body)
    return FETCH_TEMPLATE.replace("__OPERATION__", request.operation).replace(
        "__URL__", url).replace("__OPTIONS__", json.dumps(options, indent=2))


def generate_react_component(request, url, call):
    """A self-contained React component that performs the call."""
    options = {"method": call.method, "headers": call.headers}
    if call.body is not None:
        options["body"] = json.dumps(call.body)

    name = _pascal(request.operation)
    is_read = request.operation in ("retrieve", "retrieveMultiple")
    effect = REACT_EFFECT.replace("__NAME__", name) if is_read else ""
    button = "" if is_read else REACT_BUTTON.replace("__NAME__", name)

    return (
        REACT_TEMPLATE.replace("__URL__", url)
        .replace("__OPTIONS__", json.dumps(options, indent=6))
        .replace("__EFFECT__", effect)
        .replace("__BUTTON__", button)
        .replace("__TITLE__", f"{name} {request.logical_entity_name or 'Entity'}")
        .replace("__NAME__", name)
    )


def odata_bind_guidance(body, entity_info=None):
    lines = [
        "## @odata.bind Relationship Examples",
        "",
        "The request body includes relationship associations using @odata.bind:",
        "",
        "```javascript",
        *navigation_property_examples(body),
        "```",
        "",
        "### @odata.bind Usage Patterns:",
        "",
        "1. **Associate with existing record:**",
        '   `"navigationProperty@odata.bind": "/_api/entityset(guid)"`',
        "",
        "2. **Disassociate relationship:**",
        '   `"navigationProperty@odata.bind": null`',
        "",
        "3. **PowerPages URL Format:**",
        "   - Use relative paths: `/_api/contacts(guid)`",
        "   - Entity set names are typically plural: `contacts`, `accounts`, etc.",
        "",
        "### Navigation Property Names:",
    ]
    if entity_info is not None and entity_info.lookup_nav_map:
        lines += [
            f"- Lookup attribute `{attr}` → Navigation property `{nav}`"
            for attr, nav in entity_info.lookup_nav_map.items()
        ]
    else:
        lines.append("- Navigation properties are automatically resolved from table schema")
    return "\n".join(lines)


def schema_summary(entity_info):
    lines = [
        "## Schema Information",
        "",
        f"**Entity:** {entity_info.logical_name} ({entity_info.entity_set_name})",
        f"**Primary ID:** {entity_info.primary_id_attribute or 'Not available'}",
        f"**Primary Name:** {entity_info.primary_name_attribute or 'Not available'}",
        "",
        "### Available Fields:",
    ]
    fields = [a for a in entity_info.attributes if a.get("LogicalName")]
    if fields:
        lines += [f"- `{a['LogicalName']}` ({a.get('AttributeType')})" for a in fields[:10]]
        if len(entity_info.attributes) > 10:
            lines.append(f"- ... and {len(entity_info.attributes) - 10} more fields")
    else:
        lines.append("Schema information not available")

    lines += ["", "### Lookup Navigation Properties:"]
    if entity_info.lookup_nav_map:
        lines += [f"- `{attr}` → `{nav}`" for attr, nav in entity_info.lookup_nav_map.items()]
    else:
        lines.append("No lookup relationships found")
    return "\n".join(lines)


def format_powerpages_call(request, call, entity_info=None):
    """Render the call as markdown sections, one fenced block per example."""
    base_url = (request.base_url or DEFAULT_SITE_URL).rstrip("/")
    url = f"{base_url}{call.endpoint}"

    http = [f"{call.method} {url} HTTP/1.1", f"Host: {urlparse(base_url).netloc}"]
    http += [f"{key}: {value}" for key, value in call.headers.items()]
    if call.body is not None:
        http += ["", json.dumps(call.body, indent=2)]

    curl = [f"curl -X {call.method}"] + [f'-H "{key}: {value}"' for key, value in call.headers.items()]
    if call.body is not None:
        curl.append(f"-d '{json.dumps(call.body)}'")
    curl.append(f'"{url}"')

    sections = [
        ("HTTP Request", "http", "\n".join(http)),
        ("cURL Command", "bash", " \\\n  ".join(curl)),
        ("JavaScript (Fetch API)", "javascript", fetch_snippet(request, url, call)),
        ("React Component", "jsx", generate_react_component(request, url, call)),
    ]
    if has_odata_bind_properties(call.body):
        sections.append(("@odata.bind Relationships", "markdown", odata_bind_guidance(call.body, entity_info)))
    if request.include_auth_context:
        sections.append(("Authentication Information", "markdown", auth_context_text()))
    if entity_info is not None and entity_info.logical_name:
        sections.append(("Entity Schema", "markdown", schema_summary(entity_info)))

    return "\n\n".join(f"## {title}\n\n```{lang}\n{content}\n```" for title, lang, content in sections)


FETCH_TEMPLATE = """// PowerPages WebAPI __OPERATION__ operation
fetch('__URL__', __OPTIONS__)
  .then(response => {
    if (!response.ok) {
      throw new Error(`HTTP error! status: ${response.status}`);
    }
    return response.json();
  })
  .then(data => {
    console.log('Success:', data);
  })
  .catch(error => {
    console.error('Error:', error);
  });"""

REACT_EFFECT = """
  useEffect(() => {
    perform__NAME__();
  }, []);"""

REACT_BUTTON = """
      <button onClick={perform__NAME__} disabled={loading}>
        {loading ? 'Processing...' : '__NAME__'}
      </button>"""

REACT_TEMPLATE = """import React, { useState, useEffect } from 'react';

const __NAME__Component = () => {
  const [data, setData] = useState(null);
  const [loading, setLoading] = useState(false);
  const [error, setError] = useState(null);

  const perform__NAME__ = async () => {
    setLoading(true);
    setError(null);

    try {
      const response = await fetch('__URL__', __OPTIONS__);

      if (!response.ok) {
        throw new Error(`HTTP error! status: ${response.status}`);
      }

      const result = await response.json();
      setData(result);
    } catch (err) {
      setError(err.message);
    } finally {
      setLoading(false);
    }
  };
__EFFECT__

  return (
    <div>
      <h3>__TITLE__</h3>__BUTTON__

      {loading && <p>Loading...</p>}
      {error && <p style={{color: 'red'}}>Error: {error}</p>}
      {data && (
        <div>
          <h4>Result:</h4>
          <pre>{JSON.stringify(data, null, 2)}</pre>
        </div>
      )}
    </div>
  );
};

export default __NAME__Component;"""

AUTH_CONTEXT = """## Authentication Context for PowerPages

PowerPages uses different authentication mechanisms:

1. **Anonymous Access**: No authentication required for public data
2. **Authenticated Users**: Session-based authentication via portal login
3. **Request Verification Token**: Anti-CSRF protection for state-changing operations

### Getting Request Verification Token (JavaScript):
```javascript
// Get the token from the page (usually in a hidden input or meta tag)
const token = document.querySelector('input[name="__RequestVerificationToken"]')?.value ||
              document.querySelector('meta[name="__RequestVerificationToken"]')?.content;

// Include in headers for POST/PATCH/DELETE operations
headers['__RequestVerificationToken'] = token;
```

### User Context:
```javascript
// Access current user information (if available)
const userContext = {
  isAuthenticated: window.Shell?.user?.isAuthenticated || false,
  userId: window.Shell?.user?.id,
  userName: window.Shell?.user?.displayName
};
```"""

AUTH_PATTERNS = """# PowerPages Authentication Patterns

## User Context Access

```javascript
// Access current user information
const user = window["Microsoft"]?.Dynamic365?.Portal?.User;
const userName = user?.userName || "";
const firstName = user?.firstName || "";
const lastName = user?.lastName || "";
const emailAddress = user?.emailAddress || "";
const isAuthenticated = userName !== "";
```

## Request Verification Token

```javascript
// Get request verification token for POST operations
const getRequestVerificationToken = () => {
  const tokenInput = document.querySelector('input[name="__RequestVerificationToken"]');
  return tokenInput ? tokenInput.value : null;
};

// Use in fetch requests
const token = getRequestVerificationToken();
if (token) {
  headers['__RequestVerificationToken'] = token;
}
```

## Authentication Check Hook (React)

```javascript
import { useState, useEffect } from 'react';

const usePortalAuth = () => {
  const [user, setUser] = useState(null);
  const [isAuthenticated, setIsAuthenticated] = useState(false);
  const [loading, setLoading] = useState(true);

  useEffect(() => {
    const portalUser = window["Microsoft"]?.Dynamic365?.Portal?.User;
    if (portalUser && portalUser.userName) {
      setUser({
        userName: portalUser.userName,
        firstName: portalUser.firstName,
        lastName: portalUser.lastName,
        emailAddress: portalUser.emailAddress
      });
      setIsAuthenticated(true);
    }
    setLoading(false);
  }, []);

  return { user, isAuthenticated, loading };
};

export default usePortalAuth;
```

## Protected API Call Pattern

```javascript
const makeProtectedApiCall = async (endpoint, options = {}) => {
  const user = window["Microsoft"]?.Dynamic365?.Portal?.User;
  if (!user || !user.userName) {
    throw new Error('User not authenticated');
  }

  const token = getRequestVerificationToken();
  const headers = {
    'Content-Type': 'application/json',
    'Accept': 'application/json',
    ...options.headers
  };

  if (token && ['POST', 'PATCH', 'DELETE'].includes(options.method?.toUpperCase())) {
    headers['__RequestVerificationToken'] = token;
  }

  const response = await fetch(endpoint, { ...options, headers });
  if (!response.ok) {
    if (response.status === 401) {
      throw new Error('Authentication required');
    }
    if (response.status === 403) {
      throw new Error('Access denied');
    }
    throw new Error(`HTTP error! status: ${response.status}`);
  }

  return await response.json();
};
```"""
