"""Build and render Dataverse Web API calls without sending them.

Everything here is a pure function of its arguments. The tools and resources
that expose these generators resolve any schema information up front and pass
it in as an :class:`~dataverse_mcp.models.EntityInfo`.
"""
import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from urllib.parse import quote

from pydantic import BaseModel, Field

from dataverse_mcp.dataverse_service import API_PATH, DEFAULT_HEADERS
from dataverse_mcp.errors import ToolValidationError
from dataverse_mcp.models import EntityInfo, ToolParams

WEBAPI_OPERATIONS = (
    "retrieve",
    "retrieveMultiple",
    "create",
    "update",
    "delete",
    "associate",
    "disassociate",
    "callAction",
    "callFunction",
)

WEBAPI_PATH_MARKER = f"/{API_PATH}"
ENTITY_REF_RE = re.compile(r"^[a-z0-9_]+\([^)]*\)$", re.IGNORECASE)
EMPTY_GUID = "00000000-0000-0000-0000-000000000000"
SIMPLE_ATTRIBUTE_TYPES = {"string", "memo", "integer", "decimal", "double", "money", "boolean", "datetime"}
NUMERIC_ATTRIBUTE_TYPES = {"integer", "decimal", "double", "money"}
ODATA_BIND = "@odata.bind"


class WebApiCallRequest(ToolParams):
    operation: Literal[WEBAPI_OPERATIONS] = Field(description="Type of operation to perform")
    entity_set_name: Optional[str] = Field(
        None,
        description="Entity set name or logical entity name (e.g., 'account', 'contact') - "
        "will be automatically suffixed with 's' for Dataverse API URLs",
    )
    entity_id: Optional[str] = Field(None, description="Entity ID for single record operations")
    select: Optional[List[str]] = Field(None, description="Fields to select (e.g., ['name', 'emailaddress1'])")
    filter: Optional[str] = Field(None, description="OData filter expression")
    orderby: Optional[str] = Field(None, description="OData orderby expression")
    top: Optional[int] = Field(None, description="Number of records to return")
    skip: Optional[int] = Field(None, description="Number of records to skip")
    expand: Optional[str] = Field(None, description="Related entities to expand")
    count: Optional[bool] = Field(None, description="Include count of records")
    data: Optional[Dict[str, Any]] = Field(None, description="Data to send in request body for create/update operations")
    prefer: Optional[List[str]] = Field(
        None, description="Prefer header values (e.g., ['return=representation', 'odata.include-annotations=*'])"
    )
    if_match: Optional[str] = Field(None, description="If-Match header for conditional updates")
    if_none_match: Optional[str] = Field(None, description="If-None-Match header")
    caller_id: Optional[str] = Field(None, description="MSCRMCallerID header for impersonation")
    relationship_name: Optional[str] = Field(None, description="Relationship name for associate/disassociate operations")
    related_entity_set_name: Optional[str] = Field(None, description="Related entity set name for associations")
    related_entity_id: Optional[str] = Field(None, description="Related entity ID for associations")
    action_or_function_name: Optional[str] = Field(None, description="Name of the action or function to call")
    parameters: Optional[Dict[str, Any]] = Field(None, description="Parameters for action/function calls")
    include_solution_context: bool = Field(True, description="Include current solution context in headers")
    include_auth_header: bool = Field(False, description="Include Authorization header placeholder in output")


class GeneratedCall(BaseModel):
    method: str
    endpoint: str
    headers: Dict[str, str]
    body: Optional[Any] = None


def build_odata_query(select=None, filter=None, orderby=None, top=None, skip=None, expand=None, count=None):
    """Return the ``?$select=...`` query string, or '' when no option is set."""
    params = []
    if select:
        params.append(f"$select={','.join(select)}")
    if filter:
        params.append(f"$filter={_encode(filter)}")
    if orderby:
        params.append(f"$orderby={_encode(orderby)}")
    if top:
        params.append(f"$top={top}")
    if skip:
        params.append(f"$skip={skip}")
    if expand:
        params.append(f"$expand={_encode(expand)}")
    if count:
        params.append("$count=true")
    return f"?{'&'.join(params)}" if params else ""


def _encode(value):
    # Same escaping as JavaScript's encodeURIComponent
    return quote(value, safe="-_.!~*'()")


def generate_headers(prefer=None, if_match=None, if_none_match=None, solution_unique_name=None, caller_id=None):
    headers = dict(DEFAULT_HEADERS)
    if prefer:
        headers["Prefer"] = ", ".join(prefer)
    if if_match:
        headers["If-Match"] = if_match
    if if_none_match:
        headers["If-None-Match"] = if_none_match
    if solution_unique_name:
        headers["MSCRM.SolutionUniqueName"] = solution_unique_name
    if caller_id:
        headers["MSCRMCallerID"] = caller_id
    return headers


def format_entity_set_name(entity_name):
    """Pluralize by appending 's' unless the name already ends with one."""
    if not entity_name or entity_name.endswith("s"):
        return entity_name
    return f"{entity_name}s"


def normalize_bind_value(value, marker=WEBAPI_PATH_MARKER, prefix="/"):
    """Reduce an entity reference to the relative ``<prefix><set>(<id>)`` form."""
    if not isinstance(value, str) or not value:
        return value

    if value.startswith("http"):
        match = re.search(re.escape(marker) + r"([^?]+)$", value, re.IGNORECASE)
        if match:
            return f"{prefix}{match.group(1)}"
        last = value.rsplit("/", 1)[-1]
        if ENTITY_REF_RE.match(last):
            return f"{prefix}{last}"
        return value

    if value.startswith(marker):
        return f"{prefix}{value[len(marker):]}"
    if value.startswith(prefix):
        return value
    if value.startswith("/"):
        return f"{prefix.rstrip('/')}{value}"
    return f"{prefix}{value}"


def _looks_like_ref(value, marker):
    return (
        value.startswith("http")
        or value.startswith(marker)
        or value.startswith("/")
        or bool(ENTITY_REF_RE.match(value))
    )


def process_odata_bind_properties(data, entity_info=None, marker=WEBAPI_PATH_MARKER, prefix="/"):
    """Normalize ``@odata.bind`` keys and values in a request body.

    Values become relative references. With schema information, keys that
    use a lookup attribute's logical name are renamed to its navigation
    property, and plain lookup attributes holding a reference are upgraded
    to ``<navigationProperty>@odata.bind``. ``None`` values are kept as-is
    so they still disassociate.
    """
    if not isinstance(data, dict):
        return data

    processed = dict(data)
    nav_by_attr = {}
    lookup_attrs = set()
    if entity_info is not None:
        nav_by_attr = {attr.lower(): nav for attr, nav in entity_info.lookup_nav_map.items()}
        lookup_attrs = {
            str(a.get("LogicalName")).lower()
            for a in entity_info.attributes
            if str(a.get("AttributeType")).lower() == "lookup"
        }

    for key in list(processed):
        if ODATA_BIND not in key or processed[key] is None:
            continue
        prop = key.replace(ODATA_BIND, "")
        nav = nav_by_attr.get(prop.lower())
        target_key = f"{nav}{ODATA_BIND}" if nav and nav != prop else key
        if target_key != key:
            if target_key not in processed:
                processed[target_key] = processed[key]
            del processed[key]

    for key in list(processed):
        value = processed[key]
        if ODATA_BIND in key:
            if isinstance(value, str):
                processed[key] = normalize_bind_value(value, marker, prefix)
            continue

        if key.lower() in lookup_attrs and isinstance(value, str) and _looks_like_ref(value, marker):
            nav = nav_by_attr.get(key.lower())
            if nav:
                new_key = f"{nav}{ODATA_BIND}"
                if new_key not in processed:
                    processed[new_key] = normalize_bind_value(value, marker, prefix)
                    del processed[key]

    return processed


def has_odata_bind_properties(data):
    return isinstance(data, dict) and any(ODATA_BIND in key for key in data)


def navigation_property_examples(data):
    examples = []
    for key, value in data.items():
        if ODATA_BIND not in key:
            continue
        nav = key.replace(ODATA_BIND, "")
        if value is None:
            examples.append(f'// Disassociate relationship: "{nav}{ODATA_BIND}": null')
        else:
            examples.append(f'// Associate with {nav}: "{key}": "{value}"')
    return examples


def generate_sample_body(entity_info, target_sets=None, mode="create", prefix="/"):
    """Build a request body shaped like the table's real schema.

    Uses the primary name column, up to two required (create) or updatable
    (update) simple columns, and up to two lookups bound through their
    navigation property to a placeholder record.
    """
    target_sets = target_sets or {}
    valid_flag = "IsValidForCreate" if mode == "create" else "IsValidForUpdate"
    attributes = entity_info.attributes
    body = {}

    primary_name = entity_info.primary_name_attribute
    if primary_name:
        primary = next(
            (a for a in attributes if str(a.get("LogicalName", "")).lower() == primary_name.lower()), None
        )
        if primary and primary.get(valid_flag) is True:
            body[primary_name] = f"Sample {entity_info.logical_name}"

    def is_simple_candidate(attr):
        attr_type = str(attr.get("AttributeType")).lower()
        if attr_type not in SIMPLE_ATTRIBUTE_TYPES or attr.get(valid_flag) is not True:
            return False
        if attr.get("IsPrimaryId") is True or attr.get("IsPrimaryName") is True:
            return False
        if mode == "create":
            level = (attr.get("RequiredLevel") or {}).get("Value")
            return level in ("ApplicationRequired", "SystemRequired")
        return True

    for attr in [a for a in attributes if is_simple_candidate(a)][:2]:
        attr_type = str(attr["AttributeType"]).lower()
        name = attr["LogicalName"]
        if attr_type == "boolean":
            body[name] = True
        elif attr_type == "datetime":
            body[name] = datetime.now(timezone.utc).isoformat()
        elif attr_type in NUMERIC_ATTRIBUTE_TYPES:
            body[name] = 1
        else:
            body[name] = f"Example {name}"

    lookups = [
        a for a in attributes
        if str(a.get("AttributeType")).lower() == "lookup" and a.get(valid_flag) is True
    ][:2]
    for attr in lookups:
        nav = entity_info.lookup_nav_map.get(attr.get("LogicalName"))
        targets = attr.get("Targets") or []
        if not nav or not targets:
            continue
        target_set = target_sets.get(targets[0].lower()) or format_entity_set_name(targets[0])
        body[f"{nav}{ODATA_BIND}"] = f"{prefix}{target_set}({EMPTY_GUID})"

    if not body:
        primary = primary_name or next(
            (a.get("LogicalName") for a in attributes if a.get("IsPrimaryName")), None
        )
        if primary:
            verb = "Sample" if mode == "create" else "Updated"
            body[primary] = f"{verb} {entity_info.logical_name}"

    return body


def _default_select(request_select, entity_info):
    if request_select or entity_info is None:
        return request_select
    select = [entity_info.primary_id_attribute] if entity_info.primary_id_attribute else []
    if entity_info.primary_name_attribute:
        select.append(entity_info.primary_name_attribute)
    return select


def _require(request, *names):
    missing = [name for name in names if not getattr(request, name)]
    if missing:
        aliases = [type(request).model_fields[name].alias for name in names]
        verb = "is" if len(aliases) == 1 else "are"
        raise ToolValidationError(f"{', '.join(aliases)} {verb} required for {request.operation} operation")


def build_webapi_call(request, base_url, solution_unique_name=None, entity_info=None, target_sets=None):
    """Turn a :class:`WebApiCallRequest` into a :class:`GeneratedCall`."""
    headers = generate_headers(
        prefer=request.prefer,
        if_match=request.if_match,
        if_none_match=request.if_none_match,
        solution_unique_name=solution_unique_name if request.include_solution_context else None,
        caller_id=request.caller_id,
    )
    if request.include_auth_header:
        headers["Authorization"] = "Bearer {ACCESS_TOKEN}"

    entity_set = ""
    if request.entity_set_name:
        if entity_info is not None and entity_info.entity_set_name:
            entity_set = entity_info.entity_set_name
        else:
            entity_set = format_entity_set_name(request.entity_set_name)
    record = f"{entity_set}({request.entity_id})"

    method = "GET"
    body = None
    operation = request.operation

    if operation == "retrieve":
        _require(request, "entity_set_name", "entity_id")
        select = _default_select(request.select, entity_info)
        endpoint = record + build_odata_query(select=select, expand=request.expand)

    elif operation == "retrieveMultiple":
        _require(request, "entity_set_name")
        endpoint = entity_set + build_odata_query(
            select=_default_select(request.select, entity_info),
            filter=request.filter,
            orderby=request.orderby,
            top=request.top,
            skip=request.skip,
            expand=request.expand,
            count=request.count,
        )

    elif operation in ("create", "update"):
        if operation == "create":
            _require(request, "entity_set_name")
            method, endpoint = "POST", entity_set
        else:
            _require(request, "entity_set_name", "entity_id")
            method, endpoint = "PATCH", record
        if request.data is not None:
            body = request.data
        elif entity_info is not None:
            body = generate_sample_body(entity_info, target_sets, mode=operation)
        else:
            body = {}

    elif operation == "delete":
        _require(request, "entity_set_name", "entity_id")
        method, endpoint = "DELETE", record

    elif operation == "associate":
        _require(request, "entity_set_name", "entity_id", "relationship_name",
                 "related_entity_set_name", "related_entity_id")
        related = format_entity_set_name(request.related_entity_set_name)
        method = "POST"
        endpoint = f"{record}/{request.relationship_name}/$ref"
        body = {"@odata.id": f"{base_url}/{API_PATH}{related}({request.related_entity_id})"}

    elif operation == "disassociate":
        _require(request, "entity_set_name", "entity_id", "relationship_name")
        method = "DELETE"
        if request.related_entity_id:
            endpoint = f"{record}/{request.relationship_name}({request.related_entity_id})/$ref"
        else:
            endpoint = f"{record}/{request.relationship_name}/$ref"

    elif operation == "callAction":
        _require(request, "action_or_function_name")
        method = "POST"
        if request.entity_set_name and request.entity_id:
            endpoint = f"{record}/Microsoft.Dynamics.CRM.{request.action_or_function_name}"
        else:
            endpoint = request.action_or_function_name
        body = request.parameters or {}

    else:
        _require(request, "action_or_function_name")
        function = request.action_or_function_name
        if request.parameters:
            function += f"({','.join(_function_argument(k, v) for k, v in request.parameters.items())})"
        if request.entity_set_name and request.entity_id:
            endpoint = f"{record}/Microsoft.Dynamics.CRM.{function}"
        else:
            endpoint = function

    if body is not None:
        body = process_odata_bind_properties(body, entity_info)

    return GeneratedCall(method=method, endpoint=endpoint, headers=headers, body=body)


def _function_argument(key, value):
    if isinstance(value, str):
        return f"{key}='{value}'"
    if isinstance(value, bool):
        return f"{key}={str(value).lower()}"
    return f"{key}={value}"


def format_webapi_call(base_url, call, request=None, entity_set_name=""):
    """Render a call as text: request, then curl and fetch equivalents."""
    url = f"{base_url}/{API_PATH}{call.endpoint}"

    lines = [f"HTTP Method: {call.method}", f"URL: {url}", "", "Headers:"]
    lines += [f"  {key}: {value}" for key, value in call.headers.items()]
    text = "\n".join(lines) + "\n"
    if call.body is not None:
        text += f"\nRequest Body:\n{json.dumps(call.body, indent=2)}"

    info = ["", "", "--- Additional Information ---"]
    if request is not None:
        info.append(f"Operation Type: {request.operation}")
        if request.entity_set_name:
            info.append(f"Entity Set: {request.entity_set_name}")
            info.append(f"Formatted Entity Set: {entity_set_name}")
            info.append("Dataverse WebAPI Format: /api/data/v9.2/[entitySetName]s (note: 's' suffix required)")
        if request.entity_id:
            info.append(f"Entity ID: {request.entity_id}")

    if has_odata_bind_properties(call.body):
        info += ["", "--- @odata.bind Usage Detected ---",
                 "This request uses @odata.bind syntax for relationship management:"]
        info += navigation_property_examples(call.body)
        info += [
            "",
            "@odata.bind Syntax Guide:",
            '• Associate on Create/Update: "navigationProperty@odata.bind": "/entitysets(id)"',
            '• Disassociate: "navigationProperty@odata.bind": null',
            "• Single-valued navigation properties: For many-to-one relationships",
            "• Collection-valued navigation properties: Use /$ref endpoints instead",
            '• Full URL format: "https://org.crm.dynamics.com/api/data/v9.2/accounts(id)"',
            '• Relative format: "/accounts(id)" (preferred; base URL is not used in @odata.bind)',
        ]

    info += ["", "Curl Command:", curl_command(call.method, url, call.headers, call.body)]
    info += ["", "JavaScript Fetch Example:", fetch_example(call.method, url, call.headers, call.body)]
    return text + "\n".join(info) + "\n"


def curl_command(method, url, headers, body=None):
    parts = [f"curl -X {method}", f'  "{url}"']
    parts += [f'  -H "{key}: {value}"' for key, value in headers.items()]
    if body is not None:
        parts.append(f"  -d '{json.dumps(body)}'")
    return " \\\n".join(parts)


def fetch_example(method, url, headers, body=None):
    lines = [f"fetch('{url}', {{", f"  method: '{method}',", f"  headers: {json.dumps(headers, indent=4)},"]
    if body is not None:
        lines.append(f"  body: JSON.stringify({json.dumps(body, indent=4)})")
    lines.append("})\n.then(response => response.json())\n.then(data => console.log(data));")
    return "\n".join(lines)
