"""AutoNumber column tools.

An AutoNumber column is a String/Text column with an ``AutoNumberFormat``
such as ``INV-{SEQNUM:5}-{RANDSTRING:3}-{DATETIMEUTC:yyyyMMdd}``. Dataverse
fills the value on create; the sequence seed is environment specific.
"""
import re
from typing import Annotated, Literal, Optional

from pydantic import AfterValidator, Field

from dataverse_mcp.errors import DataverseError, ToolValidationError
from dataverse_mcp.models import ToolParams
from dataverse_mcp.tools.metadata import (
    generate_schema_name,
    label_text,
    localized_label,
    required_level,
)
from dataverse_mcp.tools.registry import tool, to_json

FORMAT_HELP = (
    "Invalid AutoNumber format. Use placeholders like {SEQNUM:4}, {RANDSTRING:3} (1-6), "
    "{DATETIMEUTC:yyyyMMdd}"
)
FORMAT_TIP = "Tip: Check AutoNumber format syntax. Use {SEQNUM:length}, {RANDSTRING:1-6}, {DATETIMEUTC:format}"

PLACEHOLDER = re.compile(r"\{([^{}]*)\}")
SEQNUM = re.compile(r"SEQNUM:(\d+)")
RANDSTRING = re.compile(r"RANDSTRING:(\d+)")
DATETIMEUTC = re.compile(r"DATETIMEUTC:[^{}]+")

AUTONUMBER_SELECT = (
    "LogicalName,SchemaName,DisplayName,AttributeType,AutoNumberFormat,RequiredLevel,"
    "IsCustomAttribute,IsManaged,EntityLogicalName"
)


def validate_autonumber_format(value):
    placeholders = PLACEHOLDER.findall(value)
    if not placeholders or "{" in PLACEHOLDER.sub("", value) or "}" in PLACEHOLDER.sub("", value):
        raise ValueError(FORMAT_HELP)
    for placeholder in placeholders:
        seqnum = SEQNUM.fullmatch(placeholder)
        randstring = RANDSTRING.fullmatch(placeholder)
        if seqnum:
            valid = int(seqnum.group(1)) >= 1
        elif randstring:
            valid = 1 <= int(randstring.group(1)) <= 6
        else:
            valid = DATETIMEUTC.fullmatch(placeholder) is not None
        if not valid:
            raise ValueError(FORMAT_HELP)
    return value


AutoNumberFormat = Annotated[str, AfterValidator(validate_autonumber_format)]
RequiredLevel = Literal["None", "SystemRequired", "ApplicationRequired", "Recommended"]


class CreateAutoNumberParams(ToolParams):
    entity_logical_name: str = Field(description="Logical name of the table to add the AutoNumber column to")
    display_name: str = Field(description="Display name for the AutoNumber column (e.g., 'Serial Number')")
    schema_name: Optional[str] = Field(None, description="Schema name for the column (auto-generated if not provided)")
    description: Optional[str] = Field(None, description="Description of the AutoNumber column")
    auto_number_format: AutoNumberFormat = Field(
        description="AutoNumber format using placeholders like 'PREFIX-{SEQNUM:4}-{RANDSTRING:3}-{DATETIMEUTC:yyyyMMdd}'"
    )
    required_level: RequiredLevel = Field("None", description="Required level of the column")
    max_length: int = Field(
        100, ge=1, le=4000, description="Maximum length for the column (leave room for format expansion)"
    )
    is_audit_enabled: Optional[bool] = Field(None, description="Whether auditing is enabled for this column")
    is_valid_for_advanced_find: Optional[bool] = Field(None, description="Whether the column appears in Advanced Find")
    is_valid_for_create: Optional[bool] = Field(None, description="Whether the column can be set during create")
    is_valid_for_update: Optional[bool] = Field(None, description="Whether the column can be updated")


class UpdateAutoNumberParams(ToolParams):
    entity_logical_name: str = Field(description="Logical name of the table containing the AutoNumber column")
    column_logical_name: str = Field(description="Logical name of the AutoNumber column to update")
    auto_number_format: AutoNumberFormat = Field(description="New AutoNumber format")
    display_name: Optional[str] = Field(None, description="New display name for the column")
    description: Optional[str] = Field(None, description="New description for the column")
    max_length: Optional[int] = Field(None, ge=1, le=4000, description="New maximum length")


class SeedParams(ToolParams):
    entity_logical_name: str = Field(description="Logical name of the table containing the AutoNumber column")
    column_logical_name: str = Field(description="Logical name of the AutoNumber column")
    seed_value: int = Field(ge=1, description="Next sequential number to use (e.g., 10000 to start from 10000)")


class AutoNumberColumnParams(ToolParams):
    entity_logical_name: str = Field(description="Logical name of the table")
    column_logical_name: str = Field(description="Logical name of the AutoNumber column")


class ListAutoNumberParams(ToolParams):
    entity_logical_name: Optional[str] = Field(
        None, description="Logical name of a specific table (if not provided, searches all tables)"
    )
    custom_only: bool = Field(True, description="Whether to list only custom AutoNumber columns")
    include_managed: bool = Field(False, description="Whether to include managed AutoNumber columns")


class ConvertToAutoNumberParams(ToolParams):
    entity_logical_name: str = Field(description="Logical name of the table containing the column")
    column_logical_name: str = Field(description="Logical name of the existing text column to convert")
    auto_number_format: AutoNumberFormat = Field(description="AutoNumber format to apply")
    max_length: Optional[int] = Field(None, ge=1, le=4000, description="New maximum length if needed")


def _attribute_path(entity_logical_name, column_logical_name):
    return (
        f"EntityDefinitions(LogicalName='{entity_logical_name}')"
        f"/Attributes(LogicalName='{column_logical_name}')"
    )


def _value(prop):
    """Unwrap a managed property (``{"Value": ...}``) or return a plain value."""
    if isinstance(prop, dict):
        return prop.get("Value")
    return prop


def _column_summary(column):
    return {
        "entityLogicalName": column.get("EntityLogicalName"),
        "logicalName": column.get("LogicalName"),
        "schemaName": column.get("SchemaName"),
        "displayName": label_text(column, "DisplayName"),
        "autoNumberFormat": column.get("AutoNumberFormat"),
        "maxLength": column.get("MaxLength"),
        "requiredLevel": _value(column.get("RequiredLevel")),
        "isCustomAttribute": _value(column.get("IsCustomAttribute")),
        "isManaged": _value(column.get("IsManaged")),
    }


async def _put_autonumber(service, params, current, **changes):
    attribute = dict(current)
    attribute["@odata.type"] = "Microsoft.Dynamics.CRM.StringAttributeMetadata"
    attribute["AutoNumberFormat"] = params.auto_number_format
    attribute.update({k: v for k, v in changes.items() if v is not None})
    try:
        await service.put_metadata(
            _attribute_path(params.entity_logical_name, params.column_logical_name),
            attribute,
            headers={"MSCRM.MergeLabels": "true"},
        )
    except DataverseError as e:
        if "Invalid Argument" in str(e):
            raise DataverseError(f"{e}\n\n{FORMAT_TIP}") from e
        raise


@tool(
    "create_autonumber_column",
    "Creates a new AutoNumber column that generates values from sequential numbers, random "
    "strings and UTC date placeholders. Requires a solution context to be set first.",
    CreateAutoNumberParams,
    error="creating AutoNumber column",
)
async def create_autonumber_column(service, params):
    prefix = await service.get_customization_prefix()
    schema_name = params.schema_name or generate_schema_name(params.display_name, prefix)

    column = {
        "@odata.type": "Microsoft.Dynamics.CRM.StringAttributeMetadata",
        "AttributeType": "String",
        "SchemaName": schema_name,
        "DisplayName": localized_label(params.display_name),
        "FormatName": {"Value": "Text"},
        "AutoNumberFormat": params.auto_number_format,
        "RequiredLevel": required_level(params.required_level),
        "MaxLength": params.max_length,
        "IsCustomAttribute": True,
    }
    if params.description:
        column["Description"] = localized_label(params.description)
    if params.is_audit_enabled is not None:
        column["IsAuditEnabled"] = {
            "Value": params.is_audit_enabled,
            "CanBeChanged": True,
            "ManagedPropertyLogicalName": "canmodifyauditsettings",
        }
    if params.is_valid_for_advanced_find is not None:
        column["IsValidForAdvancedFind"] = {"Value": params.is_valid_for_advanced_find}
    if params.is_valid_for_create is not None:
        column["IsValidForCreate"] = params.is_valid_for_create
    if params.is_valid_for_update is not None:
        column["IsValidForUpdate"] = params.is_valid_for_update

    try:
        result = await service.post_metadata(
            f"EntityDefinitions(LogicalName='{params.entity_logical_name}')/Attributes", column
        )
    except DataverseError as e:
        if "Invalid Argument" in str(e):
            raise DataverseError(f"{e}\n\n{FORMAT_TIP}") from e
        raise

    return (
        f"Successfully created AutoNumber column '{schema_name}' with display name "
        f"'{params.display_name}' in table '{params.entity_logical_name}'.\n\n"
        f"AutoNumber Format: {params.auto_number_format}\n"
        f"Max Length: {params.max_length}\n"
        f"Required Level: {params.required_level}\n\n"
        f"Response: {to_json(result)}"
    )


@tool(
    "update_autonumber_format",
    "Changes the AutoNumberFormat of an existing AutoNumber column. Existing values are not regenerated.",
    UpdateAutoNumberParams,
    error="updating AutoNumber format",
)
async def update_autonumber_format(service, params):
    current = await service.get_metadata(
        _attribute_path(params.entity_logical_name, params.column_logical_name)
    )
    await _put_autonumber(
        service, params, current,
        DisplayName=localized_label(params.display_name) if params.display_name else None,
        Description=localized_label(params.description) if params.description else None,
        MaxLength=params.max_length,
    )

    message = (
        f"Successfully updated AutoNumber format for column '{params.column_logical_name}' in table "
        f"'{params.entity_logical_name}'.\n\nNew AutoNumber Format: {params.auto_number_format}"
    )
    if params.display_name:
        message += f"\nNew Display Name: {params.display_name}"
    if params.max_length:
        message += f"\nNew Max Length: {params.max_length}"
    return message


@tool(
    "set_autonumber_seed",
    "Sets the next sequential number of an AutoNumber column. Seeds are environment specific "
    "and are not carried in solutions.",
    SeedParams,
    error="setting AutoNumber seed",
)
async def set_autonumber_seed(service, params):
    await service.call_action("SetAutoNumberSeed", {
        "EntityName": params.entity_logical_name,
        "AttributeName": params.column_logical_name,
        "Value": params.seed_value,
    })
    return (
        f"Successfully set AutoNumber seed for column '{params.column_logical_name}' in table "
        f"'{params.entity_logical_name}'.\n\nSeed Value: {params.seed_value}\n\n"
        "Note: Seed value only affects future records and is environment-specific "
        "(not included in solutions)."
    )


@tool(
    "get_autonumber_column",
    "Retrieves an AutoNumber column with its current format and settings.",
    AutoNumberColumnParams,
    error="retrieving AutoNumber column",
)
async def get_autonumber_column(service, params):
    column = await service.get_metadata(
        _attribute_path(params.entity_logical_name, params.column_logical_name)
    )
    if column.get("AttributeType") != "String" or not column.get("AutoNumberFormat"):
        raise DataverseError(
            f"The specified column '{params.column_logical_name}' is not an AutoNumber column.\n\n"
            f"Attribute Type: {column.get('AttributeType')}\n"
            f"Has AutoNumber Format: {str(bool(column.get('AutoNumberFormat'))).lower()}"
        )

    info = _column_summary(column)
    info.update({
        "description": label_text(column, "Description"),
        "attributeType": column.get("AttributeType"),
        "format": column.get("Format"),
        "isAuditEnabled": _value(column.get("IsAuditEnabled")),
        "isValidForAdvancedFind": _value(column.get("IsValidForAdvancedFind")),
        "isValidForCreate": _value(column.get("IsValidForCreate")),
        "isValidForUpdate": _value(column.get("IsValidForUpdate")),
        "metadataId": column.get("MetadataId"),
    })
    return (
        f"AutoNumber column information for '{params.column_logical_name}' in table "
        f"'{params.entity_logical_name}':\n\n{to_json(info)}"
    )


@tool(
    "list_autonumber_columns",
    "Lists AutoNumber columns in one table, or across all tables when no table is given.",
    ListAutoNumberParams,
    error="listing AutoNumber columns",
)
async def list_autonumber_columns(service, params):
    # Metadata queries cannot filter on AutoNumberFormat, so matching happens here
    if params.entity_logical_name:
        result = await service.get_metadata(
            f"EntityDefinitions(LogicalName='{params.entity_logical_name}')/Attributes",
            {"$select": AUTONUMBER_SELECT},
        )
        attributes = result.get("value", [])
    else:
        result = await service.get_metadata(
            "EntityDefinitions",
            {"$select": "LogicalName", "$expand": f"Attributes($select={AUTONUMBER_SELECT})"},
        )
        attributes = [a for entity in result.get("value", []) for a in entity.get("Attributes") or []]

    columns = []
    for attribute in attributes:
        if attribute.get("AttributeType") != "String" or not attribute.get("AutoNumberFormat"):
            continue
        if not params.include_managed and _value(attribute.get("IsManaged")):
            continue
        if params.custom_only and not _value(attribute.get("IsCustomAttribute")):
            continue
        columns.append(_column_summary(attribute))

    scope = f" in table '{params.entity_logical_name}'" if params.entity_logical_name else ""
    return f"Found {len(columns)} AutoNumber column(s){scope}:\n\n{to_json(columns)}"


@tool(
    "convert_to_autonumber",
    "Converts an existing String/Text column into an AutoNumber column. Existing values are kept.",
    ConvertToAutoNumberParams,
    error="converting column to AutoNumber",
)
async def convert_to_autonumber(service, params):
    current = await service.get_metadata(
        _attribute_path(params.entity_logical_name, params.column_logical_name)
    )
    if current.get("AttributeType") != "String":
        raise ToolValidationError(
            "Cannot convert column to AutoNumber. Only String type columns can be converted.\n\n"
            f"Current Attribute Type: {current.get('AttributeType')}"
        )
    if current.get("Format") != "Text":
        raise ToolValidationError(
            "Cannot convert column to AutoNumber. Only Text format columns can be converted.\n\n"
            f"Current Format: {current.get('Format')}"
        )
    if current.get("AutoNumberFormat"):
        raise ToolValidationError(
            "Column is already an AutoNumber column.\n\n"
            f"Current AutoNumber Format: {current.get('AutoNumberFormat')}"
        )

    await _put_autonumber(service, params, current, MaxLength=params.max_length)

    message = (
        f"Successfully converted column '{params.column_logical_name}' to AutoNumber in table "
        f"'{params.entity_logical_name}'.\n\nAutoNumber Format: {params.auto_number_format}\n"
        f"Previous Format: {current.get('Format')}"
    )
    if params.max_length:
        message += f"\nNew Max Length: {params.max_length}"
    return message + (
        "\n\nWarning: Existing data in the column will remain unchanged. "
        "New records will use the AutoNumber format."
    )
