from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field

from dataverse_mcp.errors import DataverseError, ToolValidationError
from dataverse_mcp.models import ToolParams
from dataverse_mcp.tools.metadata import (
    generate_logical_name,
    generate_schema_name,
    label_text,
    localized_label,
    odata_filter,
    required_level,
)
from dataverse_mcp.tools.registry import tool, to_json

ColumnType = Literal[
    "String", "Integer", "Decimal", "Money", "Boolean", "DateTime",
    "Picklist", "Lookup", "Memo", "Double", "BigInt",
]
RequiredLevel = Literal["None", "SystemRequired", "ApplicationRequired", "Recommended"]

ATTRIBUTE_TYPES = {
    "String": "StringAttributeMetadata",
    "Integer": "IntegerAttributeMetadata",
    "Decimal": "DecimalAttributeMetadata",
    "Money": "MoneyAttributeMetadata",
    "Boolean": "BooleanAttributeMetadata",
    "DateTime": "DateTimeAttributeMetadata",
    "Picklist": "PicklistAttributeMetadata",
    "Lookup": "LookupAttributeMetadata",
    "Memo": "MemoAttributeMetadata",
    "Double": "DoubleAttributeMetadata",
    "BigInt": "BigIntAttributeMetadata",
}


class OptionItem(BaseModel):
    value: int
    label: str
    description: Optional[str] = None


class CreateColumnParams(ToolParams):
    entity_logical_name: str = Field(description="Logical name of the table to add the column to")
    display_name: str = Field(description="Display name for the column (e.g., 'Customer Email')")
    description: Optional[str] = Field(None, description="Description of the column")
    column_type: ColumnType = Field(description="Type of the column")
    required_level: RequiredLevel = Field("None", description="Required level of the column")
    is_audit_enabled: Optional[bool] = Field(None, description="Whether auditing is enabled for this column")
    is_valid_for_advanced_find: Optional[bool] = Field(None, description="Whether the column appears in Advanced Find")
    is_valid_for_create: Optional[bool] = Field(None, description="Whether the column can be set during create")
    is_valid_for_update: Optional[bool] = Field(None, description="Whether the column can be updated")
    max_length: Optional[int] = Field(None, description="Maximum length for string columns (default: 100)")
    format: Optional[Literal["Email", "Text", "TextArea", "Url", "Phone"]] = Field(
        None, description="Format for string columns"
    )
    min_value: Optional[float] = Field(None, description="Minimum value for integer/decimal columns")
    max_value: Optional[float] = Field(None, description="Maximum value for integer/decimal columns")
    precision: Optional[int] = Field(None, description="Precision for decimal columns (default: 2)")
    date_time_format: Optional[Literal["DateOnly", "DateAndTime"]] = Field(
        None, description="Format for datetime columns"
    )
    true_option_label: Optional[str] = Field(None, description="Label for true option in boolean columns (default: 'Yes')")
    false_option_label: Optional[str] = Field(None, description="Label for false option in boolean columns (default: 'No')")
    default_value: Optional[Union[bool, int, float, str]] = Field(None, description="Default value for the column")
    target_entity: Optional[str] = Field(None, description="Target entity for lookup columns")
    option_set_name: Optional[str] = Field(None, description="Name of the global option set for picklist columns")
    options: Optional[List[OptionItem]] = Field(None, description="Options for a local picklist option set")


class ColumnNameParams(ToolParams):
    entity_logical_name: str = Field(description="Logical name of the table")
    logical_name: str = Field(description="Logical name of the column")


class UpdateColumnParams(ToolParams):
    entity_logical_name: str = Field(description="Logical name of the table")
    logical_name: str = Field(description="Logical name of the column to update")
    display_name: Optional[str] = Field(None, description="New display name for the column")
    description: Optional[str] = Field(None, description="New description of the column")
    required_level: Optional[RequiredLevel] = Field(None, description="New required level of the column")
    is_audit_enabled: Optional[bool] = Field(None, description="Whether auditing is enabled for this column")
    is_valid_for_advanced_find: Optional[bool] = Field(None, description="Whether the column appears in Advanced Find")
    is_valid_for_create: Optional[bool] = Field(None, description="Whether the column can be set during create")
    is_valid_for_update: Optional[bool] = Field(None, description="Whether the column can be updated")


class ListColumnsParams(ToolParams):
    entity_logical_name: str = Field(description="Logical name of the table")
    custom_only: bool = Field(False, description="Whether to list only custom columns")
    include_managed: bool = Field(False, description="Whether to include managed columns")
    top: Optional[int] = Field(None, description="Maximum number of columns to return")
    filter: Optional[str] = Field(None, description="OData filter expression")


def _attributes_path(entity_logical_name, logical_name=None):
    path = f"EntityDefinitions(LogicalName='{entity_logical_name}')/Attributes"
    if logical_name:
        path += f"(LogicalName='{logical_name}')"
    return path


def _number_bounds(attribute, params):
    if params.min_value is not None:
        attribute["MinValue"] = params.min_value
    if params.max_value is not None:
        attribute["MaxValue"] = params.max_value


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


async def build_attribute(service, params, logical_name, schema_name):
    """Build the AttributeMetadata payload for a new column."""
    attribute = {
        "@odata.type": f"Microsoft.Dynamics.CRM.{ATTRIBUTE_TYPES[params.column_type]}",
        "LogicalName": logical_name,
        "SchemaName": schema_name,
        "DisplayName": localized_label(params.display_name),
        "RequiredLevel": required_level(params.required_level),
        "IsCustomAttribute": True,
    }
    if params.description:
        attribute["Description"] = localized_label(params.description)
    if params.is_audit_enabled is not None:
        attribute["IsAuditEnabled"] = {"Value": params.is_audit_enabled}
    for field, key in (
        ("is_valid_for_advanced_find", "IsValidForAdvancedFind"),
        ("is_valid_for_create", "IsValidForCreate"),
        ("is_valid_for_update", "IsValidForUpdate"),
    ):
        if getattr(params, field) is not None:
            attribute[key] = getattr(params, field)

    column_type = params.column_type
    if column_type == "String":
        attribute["MaxLength"] = params.max_length or 100
        if params.format:
            attribute["FormatName"] = {"Value": params.format}
        if isinstance(params.default_value, str) and params.default_value:
            attribute["DefaultValue"] = params.default_value
    elif column_type in ("Integer", "Decimal", "Double", "Money"):
        _number_bounds(attribute, params)
        if column_type != "Integer":
            attribute["Precision"] = params.precision or 2
        if column_type in ("Integer", "Decimal") and _is_number(params.default_value):
            attribute["DefaultValue"] = params.default_value
    elif column_type == "Boolean":
        attribute["OptionSet"] = {
            "@odata.type": "Microsoft.Dynamics.CRM.BooleanOptionSetMetadata",
            "TrueOption": {"Value": 1, "Label": localized_label(params.true_option_label or "Yes")},
            "FalseOption": {"Value": 0, "Label": localized_label(params.false_option_label or "No")},
        }
        if isinstance(params.default_value, bool):
            attribute["DefaultValue"] = params.default_value
    elif column_type == "DateTime":
        attribute["DateTimeBehavior"] = {"Value": "UserLocal"}
        if params.date_time_format:
            attribute["Format"] = params.date_time_format
    elif column_type == "Memo":
        attribute["MaxLength"] = params.max_length or 2000
    elif column_type == "Lookup":
        if not params.target_entity:
            raise ToolValidationError("targetEntity is required for Lookup columns")
        attribute["Targets"] = [params.target_entity]
    elif column_type == "Picklist":
        if params.option_set_name:
            try:
                option_set = await service.get_metadata(
                    f"GlobalOptionSetDefinitions(Name='{params.option_set_name}')"
                )
            except DataverseError as e:
                raise DataverseError(
                    f"Global option set '{params.option_set_name}' not found: {e}"
                ) from e
            attribute["GlobalOptionSet@odata.bind"] = (
                f"/GlobalOptionSetDefinitions({option_set['MetadataId']})"
            )
        elif params.options:
            attribute["OptionSet"] = {
                "@odata.type": "Microsoft.Dynamics.CRM.OptionSetMetadata",
                "Name": f"{params.entity_logical_name}_{logical_name}",
                "DisplayName": localized_label(f"{params.display_name} Options"),
                "IsGlobal": False,
                "OptionSetType": "Picklist",
                "Options": [_option(o) for o in params.options],
            }
        else:
            raise ToolValidationError(
                "Either optionSetName (for global option set) or options array "
                "(for local option set) is required for Picklist columns"
            )
    return attribute


def _option(option):
    item = {"Value": option.value, "Label": localized_label(option.label)}
    if option.description:
        item["Description"] = localized_label(option.description)
    return item


@tool(
    "create_dataverse_column",
    "Creates a new column on a Dataverse table. Supports String, Integer, Decimal, Money, Boolean, "
    "DateTime, Picklist, Lookup, Memo, Double and BigInt columns. Names are generated from the "
    "display name and the active solution's customization prefix.",
    CreateColumnParams,
    error="creating column",
)
async def create_column(service, params):
    prefix = await service.get_customization_prefix()
    logical_name = generate_logical_name(params.display_name, prefix)
    schema_name = generate_schema_name(params.display_name, prefix)

    attribute = await build_attribute(service, params, logical_name, schema_name)
    result = await service.post_metadata(_attributes_path(params.entity_logical_name), attribute)
    return (
        f"Successfully created column '{logical_name}' with display name '{params.display_name}' "
        f"of type '{params.column_type}' in table '{params.entity_logical_name}'.\n\n"
        "Generated names:\n"
        f"- Logical Name: {logical_name}\n"
        f"- Schema Name: {schema_name}\n\n"
        f"Response: {to_json(result)}"
    )


@tool(
    "get_dataverse_column",
    "Retrieves the metadata of a single column.",
    ColumnNameParams,
    error="retrieving column",
)
async def get_column(service, params):
    result = await service.get_metadata(_attributes_path(params.entity_logical_name, params.logical_name))
    return (
        f"Column information for '{params.logical_name}' in table "
        f"'{params.entity_logical_name}':\n\n{to_json(result)}"
    )


@tool(
    "update_dataverse_column",
    "Updates the display name, description, required level or search/audit flags of a column.",
    UpdateColumnParams,
    error="updating column",
)
async def update_column(service, params):
    update = {}
    if params.display_name:
        update["DisplayName"] = localized_label(params.display_name)
    if params.description:
        update["Description"] = localized_label(params.description)
    if params.required_level:
        update["RequiredLevel"] = required_level(params.required_level)
    if params.is_audit_enabled is not None:
        update["IsAuditEnabled"] = {
            "Value": params.is_audit_enabled,
            "CanBeChanged": True,
            "ManagedPropertyLogicalName": "canmodifyauditsettings",
        }
    if params.is_valid_for_advanced_find is not None:
        update["IsValidForAdvancedFind"] = params.is_valid_for_advanced_find
    if params.is_valid_for_create is not None:
        update["IsValidForCreate"] = params.is_valid_for_create
    if params.is_valid_for_update is not None:
        update["IsValidForUpdate"] = params.is_valid_for_update

    await service.patch_metadata(_attributes_path(params.entity_logical_name, params.logical_name), update)
    return f"Successfully updated column '{params.logical_name}' in table '{params.entity_logical_name}'."


@tool(
    "delete_dataverse_column",
    "Deletes a custom column from a Dataverse table.",
    ColumnNameParams,
    error="deleting column",
)
async def delete_column(service, params):
    await service.delete_metadata(_attributes_path(params.entity_logical_name, params.logical_name))
    return f"Successfully deleted column '{params.logical_name}' from table '{params.entity_logical_name}'."


@tool(
    "list_dataverse_columns",
    "Lists the columns of a Dataverse table.",
    ListColumnsParams,
    error="listing columns",
)
async def list_columns(service, params):
    query = {
        "$select": "LogicalName,DisplayName,AttributeType,AttributeTypeName,IsCustomAttribute,"
                   "IsManaged,RequiredLevel,IsPrimaryId,IsPrimaryName"
    }
    filter_expr = odata_filter(
        "IsCustomAttribute eq true" if params.custom_only else None,
        "IsManaged eq false" if not params.include_managed else None,
        params.filter,
    )
    if filter_expr:
        query["$filter"] = filter_expr

    result = await service.get_metadata(_attributes_path(params.entity_logical_name), query)
    attributes = result.get("value", [])
    if params.top:
        attributes = attributes[:params.top]

    columns = [
        {
            "logicalName": a.get("LogicalName"),
            "displayName": label_text(a, "DisplayName", a.get("LogicalName")),
            "attributeType": a.get("AttributeType"),
            "attributeTypeName": (a.get("AttributeTypeName") or {}).get("Value", ""),
            "isCustom": a.get("IsCustomAttribute"),
            "isManaged": a.get("IsManaged"),
            "requiredLevel": (a.get("RequiredLevel") or {}).get("Value", "None"),
            "isPrimaryId": a.get("IsPrimaryId"),
            "isPrimaryName": a.get("IsPrimaryName"),
        }
        for a in attributes
    ]
    return (
        f"Found {len(columns)} columns in table '{params.entity_logical_name}':\n\n{to_json(columns)}"
    )
