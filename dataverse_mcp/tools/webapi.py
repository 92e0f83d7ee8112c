import logging

import requests

from dataverse_mcp.dataverse_service import odata_literal
from dataverse_mcp.errors import DataverseError
from dataverse_mcp.models import EntityInfo
from dataverse_mcp.powerpages_generator import (
    PowerPagesCallRequest,
    build_powerpages_call,
    format_powerpages_call,
)
from dataverse_mcp.tools.registry import tool
from dataverse_mcp.webapi_generator import (
    WebApiCallRequest,
    build_webapi_call,
    format_entity_set_name,
    format_webapi_call,
)

logger = logging.getLogger(__name__)

# A failed metadata lookup falls back to naive pluralization
LOOKUP_ERRORS = (DataverseError, requests.RequestException)

DEFINITION_SELECT = "EntitySetName,PrimaryIdAttribute,PrimaryNameAttribute,LogicalName"
ATTRIBUTE_SELECT = (
    "LogicalName,AttributeType,IsValidForCreate,IsValidForUpdate,IsPrimaryId,IsPrimaryName,RequiredLevel,Targets"
)
SAMPLE_LOOKUP_LIMIT = 2


async def _definition_by_logical_name(service, logical_name):
    try:
        return await service.get_metadata(
            f"EntityDefinitions(LogicalName='{logical_name}')", {"$select": DEFINITION_SELECT}
        )
    except LOOKUP_ERRORS as e:
        logger.debug("EntityDefinitions lookup with $select failed for %s: %s", logical_name, e)
    return await service.get_metadata(f"EntityDefinitions(LogicalName='{logical_name}')")


async def _find_definition(service, name):
    try:
        return await _definition_by_logical_name(service, name)
    except LOOKUP_ERRORS as e:
        logger.debug("No table with logical name %s: %s", name, e)

    if name.endswith("s"):
        try:
            return await _definition_by_logical_name(service, name[:-1])
        except LOOKUP_ERRORS as e:
            logger.debug("No table with logical name %s: %s", name[:-1], e)

    try:
        response = await service.get_metadata(
            "EntityDefinitions",
            {"$select": DEFINITION_SELECT, "$filter": f"EntitySetName eq {odata_literal(name)}"},
        )
    except LOOKUP_ERRORS as e:
        logger.debug("No table with entity set name %s: %s", name, e)
        return None
    matches = (response or {}).get("value", [])
    return matches[0] if matches else None


async def resolve_entity_info(service, name):
    """Look up the schema details of a table given its logical or entity set name.

    Returns None when the table cannot be resolved; callers then fall back
    to appending 's' to the name.
    """
    if not name:
        return None

    definition = await _find_definition(service, name)
    if not definition or not definition.get("LogicalName"):
        logger.info("Could not resolve table '%s'; using naive pluralization", name)
        return None

    logical_name = definition["LogicalName"]
    base = f"EntityDefinitions(LogicalName='{logical_name}')"

    try:
        attributes = await service.get_metadata(f"{base}/Attributes", {"$select": ATTRIBUTE_SELECT})
    except LOOKUP_ERRORS as e:
        logger.debug("Attribute lookup with $select failed for %s: %s", logical_name, e)
        try:
            attributes = await service.get_metadata(f"{base}/Attributes")
        except LOOKUP_ERRORS as e:
            logger.warning("Could not read attributes of %s: %s", logical_name, e)
            attributes = None

    nav_map = {}
    try:
        relationships = await service.get_metadata(
            f"{base}/ManyToOneRelationships",
            {"$select": "ReferencingAttribute,ReferencingEntityNavigationPropertyName"},
        )
        for rel in (relationships or {}).get("value", []):
            if rel.get("ReferencingAttribute") and rel.get("ReferencingEntityNavigationPropertyName"):
                nav_map[rel["ReferencingAttribute"]] = rel["ReferencingEntityNavigationPropertyName"]
    except LOOKUP_ERRORS as e:
        logger.warning("Could not read lookup navigation properties of %s: %s", logical_name, e)

    return EntityInfo(
        logical_name=logical_name,
        entity_set_name=definition.get("EntitySetName") or format_entity_set_name(logical_name),
        primary_id_attribute=definition.get("PrimaryIdAttribute") or "",
        primary_name_attribute=definition.get("PrimaryNameAttribute"),
        attributes=(attributes or {}).get("value", []),
        lookup_nav_map=nav_map,
    )


async def resolve_target_sets(service, entity_info, mode):
    """Entity set names of the lookup targets a sample body may bind to."""
    valid_flag = "IsValidForCreate" if mode == "create" else "IsValidForUpdate"
    lookups = [
        a for a in entity_info.attributes
        if str(a.get("AttributeType")).lower() == "lookup" and a.get(valid_flag) is True and a.get("Targets")
    ][:SAMPLE_LOOKUP_LIMIT]

    target_sets = {}
    for attr in lookups:
        target = attr["Targets"][0]
        if target.lower() in target_sets:
            continue
        try:
            definition = await service.get_metadata(
                f"EntityDefinitions(LogicalName='{target}')", {"$select": "EntitySetName"}
            )
            entity_set = (definition or {}).get("EntitySetName")
        except LOOKUP_ERRORS as e:
            logger.debug("Could not resolve entity set of %s: %s", target, e)
            entity_set = None
        target_sets[target.lower()] = entity_set or format_entity_set_name(target)
    return target_sets


async def _schema_for(service, name, operation, data):
    entity_info = await resolve_entity_info(service, name)
    target_sets = {}
    if entity_info is not None and operation in ("create", "update") and data is None:
        target_sets = await resolve_target_sets(service, entity_info, operation)
    return entity_info, target_sets


@tool(
    "generate_webapi_call",
    "Generate HTTP requests, curl commands, and JavaScript examples for Dataverse WebAPI operations. "
    "Supports all CRUD operations, associations, actions, and functions with proper OData query "
    "parameters and headers.",
    WebApiCallRequest,
    error="generating WebAPI call",
)
async def generate_webapi_call(service, params):
    entity_info, target_sets = await _schema_for(service, params.entity_set_name, params.operation, params.data)

    context = service.get_solution_context()
    call = build_webapi_call(
        params,
        service.config.dataverse_url,
        solution_unique_name=context.solutionUniqueName if context is not None else None,
        entity_info=entity_info,
        target_sets=target_sets,
    )

    entity_set_name = ""
    if params.entity_set_name:
        if entity_info is not None:
            entity_set_name = entity_info.entity_set_name
        else:
            entity_set_name = format_entity_set_name(params.entity_set_name)
    return format_webapi_call(service.config.dataverse_url, call, params, entity_set_name)


@tool(
    "generate_powerpages_webapi_call",
    "Generate PowerPages-specific API calls, JavaScript examples, and React components for Dataverse "
    "operations through PowerPages portals. Includes authentication context and portal-specific patterns.",
    PowerPagesCallRequest,
    error="generating PowerPages WebAPI call",
)
async def generate_powerpages_webapi_call(service, params):
    entity_info, target_sets = await _schema_for(
        service, params.logical_entity_name, params.operation, params.data
    )
    call = build_powerpages_call(params, entity_info, target_sets)
    return format_powerpages_call(params, call, entity_info)
