from typing import Optional

from pydantic import Field

from dataverse_mcp.dataverse_service import odata_literal
from dataverse_mcp.errors import DataverseError
from dataverse_mcp.models import ToolParams
from dataverse_mcp.tools.registry import tool, to_json


class CreatePublisherParams(ToolParams):
    friendly_name: str = Field(description="Friendly name for the publisher")
    unique_name: str = Field(description="Unique name for the publisher (e.g., 'examplepublisher')")
    description: Optional[str] = Field(None, description="Description of the publisher")
    customization_prefix: str = Field(description="Customization prefix for schema names (e.g., 'sample')")
    customization_option_value_prefix: int = Field(description="Option value prefix (e.g., 72700)")


class CreateSolutionParams(ToolParams):
    friendly_name: str = Field(description="Friendly name for the solution")
    unique_name: str = Field(description="Unique name for the solution (e.g., 'examplesolution')")
    description: Optional[str] = Field(None, description="Description of the solution")
    version: str = Field("1.0.0.0", description="Version of the solution")
    publisher_unique_name: str = Field(description="Unique name of the publisher to associate with this solution")


class UniqueNameParams(ToolParams):
    unique_name: str = Field(description="Unique name of the record to retrieve")


class ListSolutionsParams(ToolParams):
    include_managed: bool = Field(False, description="Whether to include managed solutions")
    top: Optional[int] = Field(None, description="Maximum number of solutions to return")


class ListPublishersParams(ToolParams):
    custom_only: bool = Field(True, description="Whether to list only custom publishers")
    top: Optional[int] = Field(None, description="Maximum number of publishers to return")


class SetSolutionContextParams(ToolParams):
    solution_unique_name: str = Field(
        description="Unique name of the solution to set as context for subsequent operations"
    )


@tool(
    "create_dataverse_publisher",
    "Creates a new publisher in Dataverse. Publishers are required for creating solutions "
    "and provide customization prefixes for schema names.",
    CreatePublisherParams,
    error="creating publisher",
)
async def create_publisher(service, params):
    publisher = {
        "friendlyname": params.friendly_name,
        "uniquename": params.unique_name,
        "description": params.description or f"Publisher for {params.friendly_name}",
        "customizationprefix": params.customization_prefix,
        "customizationoptionvalueprefix": params.customization_option_value_prefix,
    }
    result = await service.post("publishers", publisher)
    return (
        f"Successfully created publisher '{params.friendly_name}' with prefix "
        f"'{params.customization_prefix}'.\n\nResponse: {to_json(result)}"
    )


@tool(
    "create_dataverse_solution",
    "Creates a new unmanaged solution in Dataverse linked to an existing publisher. "
    "Create a solution before adding tables, columns, and other customizations.",
    CreateSolutionParams,
    error="creating solution",
)
async def create_solution(service, params):
    response = await service.get(
        f"publishers?$filter=uniquename eq {odata_literal(params.publisher_unique_name)}&$select=publisherid"
    )
    publishers = (response or {}).get("value", [])
    if not publishers:
        raise DataverseError(f"Publisher with unique name '{params.publisher_unique_name}' not found")

    solution = {
        "friendlyname": params.friendly_name,
        "uniquename": params.unique_name,
        "description": params.description or f"Solution for {params.friendly_name}",
        "version": params.version,
        "publisherid@odata.bind": f"/publishers({publishers[0]['publisherid']})",
    }
    result = await service.post("solutions", solution)
    return (
        f"Successfully created solution '{params.friendly_name}' ({params.unique_name}) linked to "
        f"publisher '{params.publisher_unique_name}'.\n\nResponse: {to_json(result)}"
    )


@tool(
    "get_dataverse_solution",
    "Retrieves detailed information about a specific solution including its version and publisher details.",
    UniqueNameParams,
    error="retrieving solution",
)
async def get_solution(service, params):
    result = await service.get(
        f"solutions?$filter=uniquename eq {odata_literal(params.unique_name)}"
        "&$expand=publisherid($select=friendlyname,uniquename,customizationprefix,customizationoptionvalueprefix)"
    )
    solutions = (result or {}).get("value", [])
    if not solutions:
        raise DataverseError(f"Solution with unique name '{params.unique_name}' not found")
    return f"Solution information for '{params.unique_name}':\n\n{to_json(solutions[0])}"


@tool(
    "get_dataverse_publisher",
    "Retrieves detailed information about a specific publisher including its customization "
    "prefix and option value prefix.",
    UniqueNameParams,
    error="retrieving publisher",
)
async def get_publisher(service, params):
    result = await service.get(f"publishers?$filter=uniquename eq {odata_literal(params.unique_name)}")
    publishers = (result or {}).get("value", [])
    if not publishers:
        raise DataverseError(f"Publisher with unique name '{params.unique_name}' not found")
    return f"Publisher information for '{params.unique_name}':\n\n{to_json(publishers[0])}"


@tool(
    "list_dataverse_solutions",
    "Retrieves a list of solutions in the Dataverse environment, with publisher information for each.",
    ListSolutionsParams,
    error="listing solutions",
)
async def list_solutions(service, params):
    query = {
        "$select": "friendlyname,uniquename,version,description,ismanaged",
        "$expand": "publisherid($select=friendlyname,uniquename,customizationprefix)",
    }
    if not params.include_managed:
        query["$filter"] = "ismanaged eq false"
    if params.top:
        query["$top"] = params.top

    result = await service.get("solutions", query)
    solutions = []
    for solution in result.get("value", []):
        publisher = solution.get("publisherid") or {}
        solutions.append({
            "friendlyName": solution.get("friendlyname"),
            "uniqueName": solution.get("uniquename"),
            "version": solution.get("version"),
            "description": solution.get("description"),
            "isManaged": solution.get("ismanaged"),
            "publisher": {
                "friendlyName": publisher.get("friendlyname"),
                "uniqueName": publisher.get("uniquename"),
                "customizationPrefix": publisher.get("customizationprefix"),
            },
        })
    return f"Found {len(solutions)} solutions:\n\n{to_json(solutions)}"


@tool(
    "list_dataverse_publishers",
    "Retrieves a list of publishers in the Dataverse environment including their customization prefixes.",
    ListPublishersParams,
    error="listing publishers",
)
async def list_publishers(service, params):
    query = {
        "$select": "friendlyname,uniquename,customizationprefix,customizationoptionvalueprefix,description,isreadonly"
    }
    if params.custom_only:
        query["$filter"] = "isreadonly eq false"
    if params.top:
        query["$top"] = params.top

    result = await service.get("publishers", query)
    publishers = [
        {
            "friendlyName": p.get("friendlyname"),
            "uniqueName": p.get("uniquename"),
            "customizationPrefix": p.get("customizationprefix"),
            "customizationOptionValuePrefix": p.get("customizationoptionvalueprefix"),
            "description": p.get("description"),
            "isReadOnly": p.get("isreadonly"),
        }
        for p in result.get("value", [])
    ]
    return f"Found {len(publishers)} publishers:\n\n{to_json(publishers)}"


@tool(
    "set_solution_context",
    "Sets the active solution context for all subsequent metadata operations. Created tables, "
    "columns, relationships and other components are added to this solution, and its publisher's "
    "customization prefix is used for new schema names.",
    SetSolutionContextParams,
    error="setting solution context",
)
async def set_solution_context(service, params):
    context = await service.set_solution_context(params.solution_unique_name)
    return (
        f"Solution context set to '{context.solutionUniqueName}' ({context.solutionDisplayName}). "
        "All subsequent metadata operations will be associated with this solution.\n\n"
        f"Publisher: {context.publisherDisplayName} ({context.publisherUniqueName})\n"
        f"Prefix: {context.customizationPrefix}\n\n"
        "Context has been persisted to .dataverse-mcp file."
    )


@tool(
    "get_solution_context",
    "Retrieves the currently active solution context and the customization prefix used for new components.",
    error="getting solution context",
)
async def get_solution_context(service, params):
    context = service.get_solution_context()
    if context is None:
        return (
            "No solution context is currently set. Metadata operations will not be associated "
            "with any specific solution."
        )
    return (
        f"Current solution context: '{context.solutionUniqueName}' ({context.solutionDisplayName})\n\n"
        f"Publisher: {context.publisherDisplayName} ({context.publisherUniqueName})\n"
        f"Prefix: {context.customizationPrefix}\n\n"
        "All metadata operations will be associated with this solution.\n"
        f"Last updated: {context.lastUpdated}"
    )


@tool(
    "clear_solution_context",
    "Clears the currently active solution context. Metadata operations are no longer associated "
    "with a solution until a new context is set.",
    error="clearing solution context",
)
async def clear_solution_context(service, params):
    previous = service.get_solution_context()
    service.clear_solution_context()
    if previous is None:
        return "Solution context cleared (no context was previously set)."
    return (
        f"Solution context cleared. Previously set to '{previous.solutionUniqueName}'. Metadata "
        "operations will no longer be associated with any specific solution.\n\n"
        ".dataverse-mcp file has been removed."
    )
