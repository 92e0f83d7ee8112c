from typing import List, Optional

from pydantic import BaseModel, Field

from dataverse_mcp.errors import ToolValidationError
from dataverse_mcp.models import ToolParams
from dataverse_mcp.tools.metadata import label_text, localized_label
from dataverse_mcp.tools.registry import tool, to_json


class NewOption(BaseModel):
    value: int = Field(description="Numeric value for the option")
    label: str = Field(description="Display label for the option")
    description: Optional[str] = Field(None, description="Description for the option")
    color: Optional[str] = Field(None, description="Color for the option (hex format, e.g., '#FF0000')")


class ChangedOption(BaseModel):
    value: int = Field(description="Numeric value of the option to update")
    label: Optional[str] = Field(None, description="New display label for the option")
    description: Optional[str] = Field(None, description="New description for the option")
    color: Optional[str] = Field(None, description="New color for the option (hex format)")


class CreateOptionSetParams(ToolParams):
    name: str = Field(description="Name for the option set (e.g., 'new_priority')")
    display_name: str = Field(description="Display name for the option set")
    description: Optional[str] = Field(None, description="Description of the option set")
    is_global: bool = Field(True, description="Whether this is a global option set")
    options: List[NewOption] = Field(description="Array of options for the option set")


class OptionSetNameParams(ToolParams):
    name: str = Field(description="Name of the option set")


class UpdateOptionSetParams(ToolParams):
    name: str = Field(description="Name of the option set to update")
    display_name: Optional[str] = Field(None, description="New display name for the option set")
    description: Optional[str] = Field(None, description="New description of the option set")
    add_options: Optional[List[NewOption]] = Field(None, description="New options to add to the option set")
    update_options: Optional[List[ChangedOption]] = Field(None, description="Existing options to update")
    remove_options: Optional[List[int]] = Field(None, description="Values of options to remove from the option set")


class ListOptionSetsParams(ToolParams):
    custom_only: bool = Field(False, description="Whether to list only custom option sets")
    include_managed: bool = Field(False, description="Whether to include managed option sets")
    top: Optional[int] = Field(None, description="Maximum number of option sets to return")
    filter: Optional[str] = Field(None, description="Substring the option set name must contain")


def _option_labels(option, payload):
    if option.label:
        payload["Label"] = localized_label(option.label)
    if option.description:
        payload["Description"] = localized_label(option.description)
    if option.color:
        payload["Color"] = option.color
    return payload


def _optionset_path(name):
    return f"GlobalOptionSetDefinitions(Name='{name}')"


@tool(
    "create_dataverse_optionset",
    "Creates a new global option set (choice) in Dataverse.",
    CreateOptionSetParams,
    error="creating option set",
)
async def create_optionset(service, params):
    if not params.options:
        raise ToolValidationError("At least one option is required")

    definition = {
        "@odata.type": "Microsoft.Dynamics.CRM.OptionSetMetadata",
        "Name": params.name,
        "DisplayName": localized_label(params.display_name),
        "OptionSetType": "Picklist",
        "IsGlobal": params.is_global,
        "IsCustomOptionSet": True,
        "Options": [
            _option_labels(option, {"Value": option.value, "IsManaged": False})
            for option in params.options
        ],
    }
    if params.description:
        definition["Description"] = localized_label(params.description)

    result = await service.post_metadata("GlobalOptionSetDefinitions", definition)
    return (
        f"Successfully created option set '{params.name}' with {len(params.options)} options.\n\n"
        f"Response: {to_json(result)}"
    )


@tool(
    "get_dataverse_optionset",
    "Retrieves the metadata of a global option set.",
    OptionSetNameParams,
    error="retrieving option set",
)
async def get_optionset(service, params):
    result = await service.get_metadata(_optionset_path(params.name))
    return f"Option set information for '{params.name}':\n\n{to_json(result)}"


@tool(
    "update_dataverse_optionset",
    "Updates a global option set: its labels, and adds, updates or removes individual options.",
    UpdateOptionSetParams,
    error="updating option set",
)
async def update_optionset(service, params):
    update = {}
    if params.display_name:
        update["DisplayName"] = localized_label(params.display_name)
    if params.description:
        update["Description"] = localized_label(params.description)
    if update:
        await service.patch_metadata(_optionset_path(params.name), update)

    for option in params.add_options or []:
        await service.call_action(
            "InsertOptionValue",
            _option_labels(option, {"OptionSetName": params.name, "Value": option.value}),
        )

    for value in params.remove_options or []:
        await service.call_action("DeleteOptionValue", {"OptionSetName": params.name, "Value": value})

    for option in params.update_options or []:
        await service.call_action(
            "UpdateOptionValue",
            _option_labels(option, {"OptionSetName": params.name, "Value": option.value, "MergeLabels": True}),
        )

    message = f"Successfully updated option set '{params.name}'."
    if params.add_options:
        message += f" Added {len(params.add_options)} options."
    if params.update_options:
        message += f" Updated {len(params.update_options)} options."
    if params.remove_options:
        message += f" Removed {len(params.remove_options)} options."
    return message


@tool(
    "delete_dataverse_optionset",
    "Deletes a global option set.",
    OptionSetNameParams,
    error="deleting option set",
)
async def delete_optionset(service, params):
    await service.delete_metadata(_optionset_path(params.name))
    return f"Successfully deleted option set '{params.name}'."


@tool(
    "list_dataverse_optionsets",
    "Lists global option sets.",
    ListOptionSetsParams,
    error="listing option sets",
)
async def list_optionsets(service, params):
    # GlobalOptionSetDefinitions rejects $filter, so filtering happens here
    query = {"$select": "Name,DisplayName,Description,IsCustomOptionSet,IsManaged,IsGlobal,OptionSetType"}
    result = await service.get_metadata("GlobalOptionSetDefinitions", query)

    option_sets = []
    for option_set in result.get("value", []):
        if params.custom_only and not option_set.get("IsCustomOptionSet"):
            continue
        if not params.include_managed and option_set.get("IsManaged"):
            continue
        if params.filter and params.filter.lower() not in (option_set.get("Name") or "").lower():
            continue
        option_sets.append({
            "name": option_set.get("Name"),
            "displayName": label_text(option_set, "DisplayName", option_set.get("Name")),
            "description": label_text(option_set, "Description", ""),
            "isCustom": option_set.get("IsCustomOptionSet"),
            "isManaged": option_set.get("IsManaged"),
            "isGlobal": option_set.get("IsGlobal"),
            "optionSetType": option_set.get("OptionSetType"),
            "optionCount": len(option_set.get("Options") or []),
        })
    if params.top:
        option_sets = option_sets[:params.top]

    return f"Found {len(option_sets)} option sets:\n\n{to_json(option_sets)}"


@tool(
    "get_dataverse_optionset_options",
    "Lists the values, labels and colors of the options in a global option set.",
    OptionSetNameParams,
    error="retrieving option set options",
)
async def get_optionset_options(service, params):
    result = await service.get_metadata(_optionset_path(params.name))
    options = [
        {
            "value": option.get("Value"),
            "label": label_text(option, "Label", ""),
            "description": label_text(option, "Description", ""),
            "color": option.get("Color"),
            "isManaged": option.get("IsManaged"),
        }
        for option in result.get("Options") or []
    ]
    return f"Options for option set '{params.name}':\n\n{to_json(options)}"
