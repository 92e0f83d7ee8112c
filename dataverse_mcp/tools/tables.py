from typing import Literal, Optional

from pydantic import Field

from dataverse_mcp.models import ToolParams
from dataverse_mcp.tools.metadata import (
    generate_logical_name,
    generate_schema_name,
    label_text,
    localized_label,
    managed_property,
    odata_filter,
    pluralize,
)
from dataverse_mcp.tools.registry import tool, to_json

# Table options sent as BooleanManagedProperty rather than plain booleans
MANAGED_FLAGS = {
    "is_audit_enabled": "IsAuditEnabled",
    "is_duplicate_detection_enabled": "IsDuplicateDetectionEnabled",
    "is_valid_for_queue": "IsValidForQueue",
    "is_connections_enabled": "IsConnectionsEnabled",
    "is_mail_merge_enabled": "IsMailMergeEnabled",
}
PLAIN_FLAGS = {
    "has_activities": "HasActivities",
    "has_notes": "HasNotes",
    "is_document_management_enabled": "IsDocumentManagementEnabled",
}


class CreateTableParams(ToolParams):
    display_name: str = Field(description="Display name for the table (e.g., 'Test Table')")
    description: Optional[str] = Field(None, description="Description of the table")
    ownership_type: Literal["UserOwned", "OrganizationOwned"] = Field(
        "UserOwned", description="Ownership type of the table"
    )
    has_activities: bool = Field(False, description="Whether the table can have activities")
    has_notes: bool = Field(False, description="Whether the table can have notes")
    is_audit_enabled: bool = Field(False, description="Whether auditing is enabled")
    is_duplicate_detection_enabled: bool = Field(False, description="Whether duplicate detection is enabled")
    is_valid_for_queue: bool = Field(False, description="Whether records can be added to queues")
    is_connections_enabled: bool = Field(False, description="Whether connections are enabled")
    is_mail_merge_enabled: bool = Field(False, description="Whether mail merge is enabled")
    is_document_management_enabled: bool = Field(False, description="Whether document management is enabled")
    primary_name_attribute: Optional[str] = Field(
        None, description="Logical name of the primary name attribute (will be auto-generated if not provided)"
    )


class TableNameParams(ToolParams):
    logical_name: str = Field(description="Logical name of the table")


class UpdateTableParams(ToolParams):
    logical_name: str = Field(description="Logical name of the table to update")
    display_name: Optional[str] = Field(None, description="New display name for the table")
    display_collection_name: Optional[str] = Field(None, description="New display collection name for the table")
    description: Optional[str] = Field(None, description="New description of the table")
    has_activities: Optional[bool] = Field(None, description="Whether the table can have activities")
    has_notes: Optional[bool] = Field(None, description="Whether the table can have notes")
    is_audit_enabled: Optional[bool] = Field(None, description="Whether auditing is enabled")
    is_duplicate_detection_enabled: Optional[bool] = Field(None, description="Whether duplicate detection is enabled")
    is_valid_for_queue: Optional[bool] = Field(None, description="Whether records can be added to queues")
    is_connections_enabled: Optional[bool] = Field(None, description="Whether connections are enabled")
    is_mail_merge_enabled: Optional[bool] = Field(None, description="Whether mail merge is enabled")
    is_document_management_enabled: Optional[bool] = Field(None, description="Whether document management is enabled")


class ListTablesParams(ToolParams):
    custom_only: bool = Field(False, description="Whether to list only custom tables")
    include_managed: bool = Field(False, description="Whether to include managed tables")
    top: Optional[int] = Field(None, description="Maximum number of tables to return")
    filter: Optional[str] = Field(None, description="OData filter expression")


def _flag_values(params, skip_unset=False):
    values = {}
    for field, key in PLAIN_FLAGS.items():
        value = getattr(params, field)
        if value is not None or not skip_unset:
            values[key] = value
    for field, key in MANAGED_FLAGS.items():
        value = getattr(params, field)
        if value is not None or not skip_unset:
            values[key] = managed_property(value)
    return values


@tool(
    "create_dataverse_table",
    "Creates a new custom table in Dataverse. Logical and schema names are generated from the "
    "display name and the active solution's customization prefix, so set_solution_context must be "
    "called first.",
    CreateTableParams,
    error="creating table",
)
async def create_table(service, params):
    prefix = await service.get_customization_prefix()

    logical_name = generate_logical_name(params.display_name, prefix)
    schema_name = generate_schema_name(params.display_name, prefix)
    collection_name = pluralize(params.display_name)
    primary_name = params.primary_name_attribute or f"{logical_name}_name"
    primary_schema_name = generate_schema_name(
        params.primary_name_attribute or f"{params.display_name} Name", prefix
    )

    entity = {
        "@odata.type": "Microsoft.Dynamics.CRM.EntityMetadata",
        "LogicalName": logical_name,
        "SchemaName": schema_name,
        "DisplayName": localized_label(params.display_name),
        "DisplayCollectionName": localized_label(collection_name),
        "OwnershipType": params.ownership_type,
        "IsActivity": False,
        "IsCustomEntity": True,
        **_flag_values(params),
        "Attributes": [
            {
                "@odata.type": "Microsoft.Dynamics.CRM.StringAttributeMetadata",
                "LogicalName": primary_name,
                "SchemaName": primary_schema_name,
                "DisplayName": localized_label("Name"),
                "Description": localized_label("Primary name attribute"),
                "RequiredLevel": {
                    "Value": "ApplicationRequired",
                    "CanBeChanged": False,
                    "ManagedPropertyLogicalName": "canmodifyrequirementlevelsettings",
                },
                "MaxLength": 100,
                "FormatName": {"Value": "Text"},
                "IsPrimaryName": True,
                "IsCustomAttribute": True,
            }
        ],
    }
    if params.description:
        entity["Description"] = localized_label(params.description)

    result = await service.post_metadata("EntityDefinitions", entity)
    return (
        f"Successfully created table '{logical_name}' with display name '{params.display_name}'.\n\n"
        "Generated names:\n"
        f"- Logical Name: {logical_name}\n"
        f"- Schema Name: {schema_name}\n"
        f"- Display Collection Name: {collection_name}\n"
        f"- Primary Name Attribute: {primary_name}\n\n"
        f"Response: {to_json(result)}"
    )


@tool(
    "get_dataverse_table",
    "Retrieves the full metadata of a Dataverse table.",
    TableNameParams,
    error="retrieving table",
)
async def get_table(service, params):
    result = await service.get_metadata(f"EntityDefinitions(LogicalName='{params.logical_name}')")
    return f"Table information for '{params.logical_name}':\n\n{to_json(result)}"


@tool(
    "update_dataverse_table",
    "Updates the display names, description or options of an existing Dataverse table.",
    UpdateTableParams,
    error="updating table",
)
async def update_table(service, params):
    update = _flag_values(params, skip_unset=True)
    if params.display_name:
        update["DisplayName"] = localized_label(params.display_name)
    if params.display_collection_name:
        update["DisplayCollectionName"] = localized_label(params.display_collection_name)
    if params.description:
        update["Description"] = localized_label(params.description)

    await service.patch_metadata(f"EntityDefinitions(LogicalName='{params.logical_name}')", update)
    return f"Successfully updated table '{params.logical_name}'."


@tool(
    "delete_dataverse_table",
    "Deletes a custom Dataverse table and all of its data.",
    TableNameParams,
    error="deleting table",
)
async def delete_table(service, params):
    await service.delete_metadata(f"EntityDefinitions(LogicalName='{params.logical_name}')")
    return f"Successfully deleted table '{params.logical_name}'."


@tool(
    "list_dataverse_tables",
    "Lists Dataverse tables, optionally only custom or unmanaged ones.",
    ListTablesParams,
    error="listing tables",
)
async def list_tables(service, params):
    query = {
        "$select": "LogicalName,DisplayName,DisplayCollectionName,IsCustomEntity,IsManaged,"
                   "OwnershipType,HasActivities,HasNotes"
    }
    filter_expr = odata_filter(
        "IsCustomEntity eq true" if params.custom_only else None,
        "IsManaged eq false" if not params.include_managed else None,
        params.filter,
    )
    if filter_expr:
        query["$filter"] = filter_expr

    result = await service.get_metadata("EntityDefinitions", query)
    entities = result.get("value", [])
    if params.top:
        entities = entities[:params.top]

    tables = [
        {
            "logicalName": e.get("LogicalName"),
            "displayName": label_text(e, "DisplayName", e.get("LogicalName")),
            "displayCollectionName": label_text(e, "DisplayCollectionName", ""),
            "isCustom": e.get("IsCustomEntity"),
            "isManaged": e.get("IsManaged"),
            "ownershipType": e.get("OwnershipType"),
            "hasActivities": e.get("HasActivities"),
            "hasNotes": e.get("HasNotes"),
        }
        for e in entities
    ]
    return f"Found {len(tables)} tables:\n\n{to_json(tables)}"
