"""MCP resources that render example Web API calls.

URIs follow the templates below; trailing segments may be left off::

    webapi://{operation}/{entitySetName}/{entityId}
    webapi-examples://{operation}/{entitySetName}
    powerpages://{operation}/{entityName}/{entityId}
    powerpages-examples://{operation}/{entityName}
    powerpages-auth://patterns

Reading a resource only renders text; nothing is sent to Dataverse.
"""
import logging
from typing import List, Tuple
from urllib.parse import unquote

import mcp.types as types

from dataverse_mcp.powerpages_generator import (
    AUTH_PATTERNS,
    POWERPAGES_OPERATIONS,
    PowerPagesCallRequest,
    build_powerpages_call,
    format_powerpages_call,
)
from dataverse_mcp.webapi_generator import (
    WEBAPI_OPERATIONS,
    WebApiCallRequest,
    build_webapi_call,
    format_entity_set_name,
    format_webapi_call,
)

logger = logging.getLogger(__name__)

SAMPLE_ID = "00000000-0000-0000-0000-000000000001"
RECORD_PLACEHOLDER = "{record-id}"
TEXT = "text/plain"
MARKDOWN = "text/markdown"

RESOURCE_TEMPLATES = [
    types.ResourceTemplate(
        uriTemplate="webapi://{operation}/{entitySetName}/{entityId}",
        name="webapi-call",
        description="Generate HTTP requests, curl commands, and JavaScript examples for Dataverse WebAPI operations",
        mimeType=TEXT,
    ),
    types.ResourceTemplate(
        uriTemplate="webapi-examples://{operation}/{entitySetName}",
        name="webapi-examples",
        description="Common WebAPI operation examples with best practices",
        mimeType=MARKDOWN,
    ),
    types.ResourceTemplate(
        uriTemplate="powerpages://{operation}/{entityName}/{entityId}",
        name="powerpages-call",
        description="Generate PowerPages /_api/ requests, JavaScript and React examples",
        mimeType=TEXT,
    ),
    types.ResourceTemplate(
        uriTemplate="powerpages-examples://{operation}/{entityName}",
        name="powerpages-examples",
        description="Common PowerPages WebAPI examples including authentication context",
        mimeType=MARKDOWN,
    ),
]


def _resource(uri, name, description, mime_type):
    return types.Resource(uri=uri, name=name, description=description, mimeType=mime_type)


EXAMPLE_RESOURCES = [
    _resource(f"webapi://retrieve/accounts/{SAMPLE_ID}", "webapi-retrieve-account", "Retrieve Account", TEXT),
    _resource("webapi://retrieveMultiple/contacts", "webapi-list-contacts", "List Contacts", TEXT),
    _resource("webapi://create/accounts", "webapi-create-account", "Create Account", TEXT),
    _resource(f"webapi://update/accounts/{SAMPLE_ID}", "webapi-update-account", "Update Account", TEXT),
    _resource(f"webapi://delete/accounts/{SAMPLE_ID}", "webapi-delete-account", "Delete Account", TEXT),
    _resource("webapi-examples://retrieve/accounts", "webapi-examples-retrieve", "Account Retrieve Examples", MARKDOWN),
    _resource("webapi-examples://retrieveMultiple/contacts", "webapi-examples-list", "Contact List Examples", MARKDOWN),
    _resource("webapi-examples://create/accounts", "webapi-examples-create", "Account Creation Examples", MARKDOWN),
    _resource("webapi-examples://update/contacts", "webapi-examples-update", "Contact Update Examples", MARKDOWN),
    _resource("webapi-examples://delete/accounts", "webapi-examples-delete", "Account Deletion Examples", MARKDOWN),
    _resource(f"powerpages://retrieve/contacts/{SAMPLE_ID}", "powerpages-retrieve-contact", "Retrieve Contact", TEXT),
    _resource("powerpages://retrieveMultiple/contacts", "powerpages-list-contacts", "List Contacts", TEXT),
    _resource("powerpages://create/contacts", "powerpages-create-contact", "Create Contact", TEXT),
    _resource(f"powerpages://update/contacts/{SAMPLE_ID}", "powerpages-update-contact", "Update Contact", TEXT),
    _resource(f"powerpages://delete/contacts/{SAMPLE_ID}", "powerpages-delete-contact", "Delete Contact", TEXT),
    _resource("powerpages-examples://retrieve/contacts", "powerpages-examples-retrieve",
              "Contact Retrieve Examples", MARKDOWN),
    _resource("powerpages-examples://retrieveMultiple/contacts", "powerpages-examples-list",
              "Contact List Examples", MARKDOWN),
    _resource("powerpages-examples://create/contacts", "powerpages-examples-create",
              "Contact Creation Examples", MARKDOWN),
    _resource("powerpages-examples://update/contacts", "powerpages-examples-update",
              "Contact Update Examples", MARKDOWN),
    _resource("powerpages-examples://delete/contacts", "powerpages-examples-delete",
              "Contact Deletion Examples", MARKDOWN),
    _resource("powerpages-auth://patterns", "powerpages-auth",
              "Common authentication and user context patterns for PowerPages", MARKDOWN),
]

# Example request options per operation for the *-examples:// resources
WEBAPI_EXAMPLES = {
    "retrieve": ("Retrieve Single Record", {
        "entity_id": RECORD_PLACEHOLDER,
        "select": ["name", "emailaddress1"],
        "expand": "primarycontactid($select=fullname,emailaddress1)",
    }),
    "retrieveMultiple": ("Retrieve Multiple Records", {
        "select": ["name", "emailaddress1", "telephone1"],
        "filter": "statecode eq 0",
        "orderby": "name asc",
        "top": 10,
    }),
    "create": ("Create New Record", {
        "data": {"name": "Sample Account", "emailaddress1": "sample@example.com", "telephone1": "555-0123"},
        "prefer": ["return=representation"],
    }),
    "update": ("Update Existing Record", {
        "entity_id": RECORD_PLACEHOLDER,
        "data": {"name": "Updated Account Name", "emailaddress1": "updated@example.com"},
        "if_match": "*",
    }),
    "delete": ("Delete Record", {"entity_id": RECORD_PLACEHOLDER}),
    "associate": ("Associate Records", {
        "entity_id": RECORD_PLACEHOLDER,
        "relationship_name": "contact_customer_accounts",
        "related_entity_set_name": "contacts",
        "related_entity_id": "{related-record-id}",
    }),
    "disassociate": ("Disassociate Records", {
        "entity_id": RECORD_PLACEHOLDER,
        "relationship_name": "contact_customer_accounts",
        "related_entity_id": "{related-record-id}",
    }),
    "callAction": ("Call Bound Action", {
        "entity_id": RECORD_PLACEHOLDER,
        "action_or_function_name": "AddToQueue",
        "parameters": {"Target": {"@odata.type": "Microsoft.Dynamics.CRM.letter", "activityid": "{activity-id}"}},
    }),
    "callFunction": ("Call Unbound Function", {"entity_set_name": None, "action_or_function_name": "WhoAmI"}),
}

POWERPAGES_EXAMPLES = {
    "retrieve": ("Retrieve Single Record from PowerPages", {
        "entity_id": RECORD_PLACEHOLDER,
        "select": ["fullname", "emailaddress1"],
    }),
    "retrieveMultiple": ("Retrieve Multiple Records from PowerPages", {
        "select": ["fullname", "emailaddress1", "telephone1"],
        "filter": "statecode eq 0",
        "orderby": "fullname asc",
        "top": 10,
    }),
    "create": ("Create New Record in PowerPages", {
        "data": {"fullname": "John Doe", "emailaddress1": "john@example.com", "telephone1": "555-0123"},
        "request_verification_token": True,
    }),
    "update": ("Update Record in PowerPages", {
        "entity_id": RECORD_PLACEHOLDER,
        "data": {"fullname": "John Updated", "emailaddress1": "john.updated@example.com"},
        "request_verification_token": True,
    }),
    "delete": ("Delete Record in PowerPages", {
        "entity_id": RECORD_PLACEHOLDER,
        "request_verification_token": True,
    }),
}


def parse_resource_uri(uri) -> Tuple[str, List[str]]:
    """Split ``scheme://a/b/c`` into the lowercased scheme and its path segments."""
    text = str(uri)
    scheme, sep, rest = text.partition("://")
    if not sep:
        raise ValueError(f"Invalid resource URI: {text}")
    segments = [unquote(s) for s in rest.split("?")[0].split("/") if s]
    return scheme.lower(), segments


def _segment(segments, index):
    return segments[index] if len(segments) > index else None


def _canonical_operation(name, operations, scheme):
    for operation in operations:
        if operation.lower() == (name or "").lower():
            return operation
    raise ValueError(f"Unsupported {scheme} operation: {name}")


def render_webapi_call(base_url, request, solution_unique_name=None):
    call = build_webapi_call(request, base_url, solution_unique_name=solution_unique_name)
    entity_set = format_entity_set_name(request.entity_set_name or "")
    return format_webapi_call(base_url, call, request, entity_set)


def render_powerpages_call(request):
    return format_powerpages_call(request, build_powerpages_call(request))


def _webapi_resource(base_url, segments, solution_unique_name):
    operation = _canonical_operation(_segment(segments, 0), WEBAPI_OPERATIONS, "webapi")
    request = WebApiCallRequest(
        operation=operation,
        entity_set_name=_segment(segments, 1),
        entity_id=_segment(segments, 2),
    )
    return render_webapi_call(base_url, request, solution_unique_name)


def _webapi_examples(base_url, segments, solution_unique_name):
    operation = _canonical_operation(_segment(segments, 0), WEBAPI_OPERATIONS, "webapi-examples")
    title, options = WEBAPI_EXAMPLES[operation]
    fields = {"entity_set_name": _segment(segments, 1) or "accounts"}
    fields.update(options)
    request = WebApiCallRequest(operation=operation, **fields)
    return (
        f"# Dataverse WebAPI Examples - {operation}\n\n## {title}\n\n"
        + render_webapi_call(base_url, request, solution_unique_name)
    )


def _powerpages_resource(segments):
    operation = _canonical_operation(_segment(segments, 0), POWERPAGES_OPERATIONS, "powerpages")
    entity_name = _segment(segments, 1)
    if not entity_name:
        raise ValueError(f"entityName is required for powerpages://{operation}")
    request = PowerPagesCallRequest(
        operation=operation,
        logical_entity_name=entity_name,
        entity_id=_segment(segments, 2),
    )
    return render_powerpages_call(request)


def _powerpages_examples(segments):
    operation = _canonical_operation(_segment(segments, 0), POWERPAGES_OPERATIONS, "powerpages-examples")
    title, options = POWERPAGES_EXAMPLES[operation]
    request = PowerPagesCallRequest(
        operation=operation,
        logical_entity_name=_segment(segments, 1) or "contacts",
        include_auth_context=True,
        **options,
    )
    return f"# PowerPages WebAPI Examples - {operation}\n\n## {title}\n\n" + render_powerpages_call(request)


def read_resource(uri, base_url, solution_unique_name=None) -> Tuple[str, str]:
    """Render the resource at ``uri``; returns ``(text, mime_type)``."""
    scheme, segments = parse_resource_uri(uri)
    logger.debug("Reading resource %s", uri)

    if scheme == "webapi":
        return _webapi_resource(base_url, segments, solution_unique_name), TEXT
    if scheme == "webapi-examples":
        return _webapi_examples(base_url, segments, solution_unique_name), MARKDOWN
    if scheme == "powerpages":
        return _powerpages_resource(segments), TEXT
    if scheme == "powerpages-examples":
        return _powerpages_examples(segments), MARKDOWN
    if scheme == "powerpages-auth":
        if segments and segments[0].lower() != "patterns":
            raise ValueError(f"Unknown resource: {uri}")
        return AUTH_PATTERNS, MARKDOWN
    raise ValueError(f"Unknown resource: {uri}")
