from typing import Optional

from pydantic import Field, create_model

from dataverse_mcp.models import ToolParams
from dataverse_mcp.tools.registry import tool, to_json
from dataverse_mcp.tools.teams import team_type_label

# (field, column, type, constraints, description)
BUSINESS_UNIT_FIELDS = [
    ("description", "description", str, {"max_length": 2000}, "Description of the business unit"),
    ("division_name", "divisionname", str, {"max_length": 100},
     "Name of the division to which the business unit belongs"),
    ("email_address", "emailaddress", str, {"max_length": 100}, "Email address for the business unit"),
    ("cost_center", "costcenter", str, {"max_length": 100}, "Name of the business unit cost center"),
    ("credit_limit", "creditlimit", float, {"ge": 0, "le": 1000000000}, "Credit limit for the business unit"),
    ("file_as_name", "fileasname", str, {"max_length": 100},
     "Alternative name under which the business unit can be filed"),
    ("ftp_site_url", "ftpsiteurl", str, {"max_length": 200}, "FTP site URL for the business unit"),
    ("web_site_url", "websiteurl", str, {"max_length": 200}, "Website URL for the business unit"),
    ("stock_exchange", "stockexchange", str, {"max_length": 10}, "Stock exchange on which the business is listed"),
    ("ticker_symbol", "tickersymbol", str, {"max_length": 10}, "Stock exchange ticker symbol for the business unit"),
]

# (suffix, type, constraints, description) repeated for address1_* and address2_*
ADDRESS_FIELDS = [
    ("name", str, {"max_length": 100}, "Name"),
    ("line1", str, {"max_length": 250}, "First line"),
    ("line2", str, {"max_length": 250}, "Second line"),
    ("line3", str, {"max_length": 250}, "Third line"),
    ("city", str, {"max_length": 80}, "City name"),
    ("stateorprovince", str, {"max_length": 50}, "State or province"),
    ("postalcode", str, {"max_length": 20}, "ZIP Code or postal code"),
    ("country", str, {"max_length": 80}, "Country/region name"),
    ("county", str, {"max_length": 50}, "County name"),
    ("telephone1", str, {"max_length": 50}, "Main phone number"),
    ("telephone2", str, {"max_length": 50}, "Other phone number"),
    ("telephone3", str, {"max_length": 50}, "Third telephone number"),
    ("fax", str, {"max_length": 50}, "Fax number"),
    ("latitude", float, {"ge": -90, "le": 90}, "Latitude"),
    ("longitude", float, {"ge": -180, "le": 180}, "Longitude"),
    ("postofficebox", str, {"max_length": 20}, "Post office box number"),
    ("upszone", str, {"max_length": 4}, "UPS zone"),
    ("utcoffset", int, {"ge": -1500, "le": 1500}, "UTC offset"),
]

ADDRESS_COLUMNS = [
    f"address{n}_{suffix}" for n in (1, 2) for suffix, _, _, _ in ADDRESS_FIELDS
]

# Param field -> businessunit column for everything copied verbatim into payloads
COLUMNS = {field: column for field, column, _, _, _ in BUSINESS_UNIT_FIELDS}
COLUMNS.update({column: column for column in ADDRESS_COLUMNS})
COLUMNS["is_disabled"] = "isdisabled"

LIST_SELECT = (
    "businessunitid,name,description,divisionname,emailaddress,costcenter,isdisabled,"
    "createdon,modifiedon,_parentbusinessunitid_value"
)
PARENT_EXPAND = "parentbusinessunitid($select=businessunitid,name)"


def _optional_fields():
    fields = {}
    for field, _, kind, limits, description in BUSINESS_UNIT_FIELDS:
        fields[field] = (Optional[kind], Field(None, description=description, **limits))
    for n in (1, 2):
        for suffix, kind, limits, description in ADDRESS_FIELDS:
            name = f"address{n}_{suffix}"
            # Address parameters keep their Dataverse column names on the wire
            fields[name] = (
                Optional[kind],
                Field(None, alias=name, description=f"{description} for address {n}", **limits),
            )
    return fields


CreateBusinessUnitParams = create_model(
    "CreateBusinessUnitParams",
    __base__=ToolParams,
    name=(str, Field(min_length=1, max_length=160, description="Name of the business unit")),
    parent_business_unit_id=(
        Optional[str], Field(None, description="Unique identifier for the parent business unit")
    ),
    is_disabled=(bool, Field(False, description="Whether the business unit is disabled")),
    **_optional_fields(),
)

UpdateBusinessUnitParams = create_model(
    "UpdateBusinessUnitParams",
    __base__=ToolParams,
    business_unit_id=(str, Field(description="Unique identifier of the business unit to update")),
    name=(Optional[str], Field(None, min_length=1, max_length=160, description="Name of the business unit")),
    is_disabled=(Optional[bool], Field(None, description="Whether the business unit is disabled")),
    **_optional_fields(),
)


class BusinessUnitIdParams(ToolParams):
    business_unit_id: str = Field(description="Unique identifier of the business unit")


class ListBusinessUnitsParams(ToolParams):
    top: Optional[int] = Field(None, ge=1, le=5000, description="Maximum number of business units to return (default: 50)")
    filter: Optional[str] = Field(None, description="OData filter expression")
    orderby: Optional[str] = Field(None, description="OData orderby expression")
    select: Optional[str] = Field(None, description="OData select expression to specify which fields to return")


class SetParentParams(ToolParams):
    business_unit_id: str = Field(description="Unique identifier of the business unit")
    parent_business_unit_id: str = Field(description="Unique identifier of the new parent business unit")


class BusinessUnitUsersParams(ToolParams):
    business_unit_id: str = Field(description="Unique identifier of the business unit")
    include_subsidiary_users: bool = Field(False, description="Whether to include users from subsidiary business units")


class BusinessUnitTeamsParams(ToolParams):
    business_unit_id: str = Field(description="Unique identifier of the business unit")
    include_subsidiary_teams: bool = Field(False, description="Whether to include teams from subsidiary business units")


def business_unit_columns(params):
    """Map every set parameter to its businessunit column."""
    columns = {}
    for field, column in COLUMNS.items():
        value = getattr(params, field)
        if value is not None:
            columns[column] = value
    return columns


def _records(result):
    if isinstance(result, list):
        return result
    return (result or {}).get("value", [])


@tool(
    "create_dataverse_businessunit",
    "Creates a business unit, optionally under a parent business unit, with contact and address details.",
    CreateBusinessUnitParams,
    error="creating business unit",
)
async def create_business_unit(service, params):
    business_unit = {"name": params.name}
    business_unit.update(business_unit_columns(params))
    if params.parent_business_unit_id:
        business_unit["parentbusinessunitid@odata.bind"] = f"/businessunits({params.parent_business_unit_id})"

    response = await service.post("businessunits", business_unit) or {}
    return (
        f"Successfully created business unit '{params.name}'.\n\n"
        f"Business unit ID: {response.get('businessunitid')}\n\n"
        f"Response: {to_json(response)}"
    )


@tool(
    "get_dataverse_businessunit",
    "Retrieves a business unit with its parent, audit fields and addresses.",
    BusinessUnitIdParams,
    error="retrieving business unit",
)
async def get_business_unit(service, params):
    select = ",".join(
        ["businessunitid", "name", "createdon", "modifiedon", "_organizationid_value"]
        + [column for column in COLUMNS.values()]
    )
    expand = ",".join([
        PARENT_EXPAND,
        "createdby($select=systemuserid,fullname)",
        "modifiedby($select=systemuserid,fullname)",
    ])
    business_unit = await service.get(f"businessunits({params.business_unit_id})?$select={select}&$expand={expand}")
    return f"Business unit information:\n\n{to_json(business_unit)}"


@tool(
    "update_dataverse_businessunit",
    "Updates the properties or addresses of a business unit.",
    UpdateBusinessUnitParams,
    error="updating business unit",
)
async def update_business_unit(service, params):
    update = business_unit_columns(params)
    if params.name:
        update["name"] = params.name
    if not update:
        return "No fields provided to update"

    await service.patch(f"businessunits({params.business_unit_id})", update)
    return f"Successfully updated business unit. Updated fields: {', '.join(update)}"


@tool(
    "delete_dataverse_businessunit",
    "Deletes a business unit. Dataverse only allows deleting disabled business units.",
    BusinessUnitIdParams,
    error="deleting business unit",
)
async def delete_business_unit(service, params):
    await service.delete(f"businessunits({params.business_unit_id})")
    return "Successfully deleted business unit"


@tool(
    "list_dataverse_businessunits",
    "Lists business units with their parent business unit.",
    ListBusinessUnitsParams,
    error="listing business units",
)
async def list_business_units(service, params):
    query = {
        "$select": params.select or LIST_SELECT,
        "$top": params.top or 50,
        "$expand": PARENT_EXPAND,
        "$count": "true",
    }
    if params.filter:
        query["$filter"] = params.filter
    if params.orderby:
        query["$orderby"] = params.orderby

    result = await service.get("businessunits", query) or {}
    units = []
    for unit in result.get("value", []):
        parent = unit.get("parentbusinessunitid") or {}
        units.append({
            "businessUnitId": unit.get("businessunitid"),
            "name": unit.get("name"),
            "description": unit.get("description"),
            "divisionName": unit.get("divisionname"),
            "emailAddress": unit.get("emailaddress"),
            "costCenter": unit.get("costcenter"),
            "isDisabled": unit.get("isdisabled"),
            "createdOn": unit.get("createdon"),
            "modifiedOn": unit.get("modifiedon"),
            "parentBusinessUnitId": parent.get("businessunitid", unit.get("_parentbusinessunitid_value")),
            "parentBusinessUnitName": parent.get("name"),
        })
    total = result.get("@odata.count") or len(units)
    return f"Found {len(units)} business units (Total: {total}):\n\n{to_json(units)}"


@tool(
    "get_businessunit_hierarchy",
    "Retrieves the business unit hierarchy below a business unit.",
    BusinessUnitIdParams,
    error="retrieving business unit hierarchy",
)
async def get_business_unit_hierarchy(service, params):
    response = await service.get(
        f"businessunits({params.business_unit_id})/Microsoft.Dynamics.CRM.RetrieveBusinessHierarchyBusinessUnit()"
    )
    return f"Business unit hierarchy:\n\n{to_json(response)}"


@tool(
    "set_businessunit_parent",
    "Moves a business unit under a new parent business unit.",
    SetParentParams,
    error="setting business unit parent",
)
async def set_business_unit_parent(service, params):
    await service.call_action(
        "SetParentBusinessUnit",
        {"BusinessUnitId": params.business_unit_id, "ParentId": params.parent_business_unit_id},
    )
    return "Successfully set business unit parent"


@tool(
    "get_businessunit_users",
    "Lists the users of a business unit, optionally including subsidiary business units.",
    BusinessUnitUsersParams,
    error="retrieving business unit users",
)
async def get_business_unit_users(service, params):
    if params.include_subsidiary_users:
        endpoint = f"RetrieveSubsidiaryUsersBusinessUnit(BusinessUnitId={params.business_unit_id})"
    else:
        endpoint = (
            f"systemusers?$filter=_businessunitid_value eq {params.business_unit_id}"
            "&$select=systemuserid,fullname,domainname,isdisabled&$expand=businessunitid($select=name)"
        )
    result = await service.get(endpoint)

    users = []
    for user in _records(result):
        business_unit = user.get("businessunitid") or {}
        users.append({
            "userId": user.get("systemuserid"),
            "fullName": user.get("fullname"),
            "domainName": user.get("domainname"),
            "businessUnitId": business_unit.get("businessunitid", user.get("_businessunitid_value")),
            "businessUnitName": business_unit.get("name"),
            "isDisabled": user.get("isdisabled"),
        })
    scope = "subsidiary " if params.include_subsidiary_users else ""
    return f"Found {len(users)} {scope}users for business unit:\n\n{to_json(users)}"


@tool(
    "get_businessunit_teams",
    "Lists the teams of a business unit, optionally including subsidiary business units.",
    BusinessUnitTeamsParams,
    error="retrieving business unit teams",
)
async def get_business_unit_teams(service, params):
    if params.include_subsidiary_teams:
        endpoint = f"RetrieveSubsidiaryTeamsBusinessUnit(BusinessUnitId={params.business_unit_id})"
    else:
        endpoint = (
            f"teams?$filter=_businessunitid_value eq {params.business_unit_id}"
            "&$select=teamid,name,teamtype&$expand=businessunitid($select=name)"
        )
    result = await service.get(endpoint)

    teams = []
    for team in _records(result):
        business_unit = team.get("businessunitid") or {}
        teams.append({
            "teamId": team.get("teamid"),
            "name": team.get("name"),
            "teamType": team.get("teamtype"),
            "teamTypeLabel": team_type_label(team.get("teamtype")),
            "businessUnitId": business_unit.get("businessunitid", team.get("_businessunitid_value")),
            "businessUnitName": business_unit.get("name"),
        })
    scope = "subsidiary " if params.include_subsidiary_teams else ""
    return f"Found {len(teams)} {scope}teams for business unit:\n\n{to_json(teams)}"
