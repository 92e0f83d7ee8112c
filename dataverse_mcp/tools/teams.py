from typing import List, Literal, Optional

from pydantic import Field

from dataverse_mcp.models import ToolParams
from dataverse_mcp.tools.metadata import odata_filter
from dataverse_mcp.tools.registry import tool, to_json

TEAM_TYPES = {0: "Owner", 1: "Access", 2: "Security Group", 3: "Office Group"}
MEMBERSHIP_TYPES = {0: "Members and guests", 1: "Members", 2: "Owners", 3: "Guests"}

Code = Literal["0", "1", "2", "3"]

# Optional lookups settable on create/update: param field -> (navigation property, entity set)
TEAM_LOOKUPS = {
    "queue_id": ("queueid", "queues"),
    "team_template_id": ("teamtemplateid", "teamtemplates"),
    "delegated_authorization_id": ("delegatedauthorizationid", "delegatedauthorizations"),
    "transaction_currency_id": ("transactioncurrencyid", "transactioncurrencies"),
}

TEAM_EXPAND = "administratorid($select=fullname),businessunitid($select=name)"


class CreateTeamParams(ToolParams):
    name: str = Field(max_length=160, description="Name of the team")
    description: Optional[str] = Field(None, max_length=2000, description="Description of the team")
    business_unit_id: Optional[str] = Field(
        None, description="Business unit ID to associate the team with (defaults to root business unit)"
    )
    administrator_id: str = Field(description="User ID of the team administrator")
    team_type: Code = Field("0", description="Team type: 0=Owner, 1=Access, 2=Security Group, 3=Office Group")
    membership_type: Code = Field(
        "0", description="Membership type: 0=Members and guests, 1=Members, 2=Owners, 3=Guests"
    )
    email_address: Optional[str] = Field(None, max_length=100, description="Email address for the team")
    yomi_name: Optional[str] = Field(None, max_length=160, description="Pronunciation of the team name in phonetic characters")
    azure_active_directory_object_id: Optional[str] = Field(None, description="Azure AD Object ID for the team")
    queue_id: Optional[str] = Field(None, description="Default queue ID for the team")
    team_template_id: Optional[str] = Field(None, description="Team template ID to associate with the team")
    delegated_authorization_id: Optional[str] = Field(None, description="Delegated authorization context for the team")
    transaction_currency_id: Optional[str] = Field(None, description="Currency ID associated with the team")


class TeamIdParams(ToolParams):
    team_id: str = Field(description="ID of the team")


class UpdateTeamParams(ToolParams):
    team_id: str = Field(description="ID of the team to update")
    name: Optional[str] = Field(None, max_length=160, description="New name of the team")
    description: Optional[str] = Field(None, max_length=2000, description="New description of the team")
    team_type: Optional[Code] = Field(None, description="Team type: 0=Owner, 1=Access, 2=Security Group, 3=Office Group")
    membership_type: Optional[Code] = Field(
        None, description="Membership type: 0=Members and guests, 1=Members, 2=Owners, 3=Guests"
    )
    email_address: Optional[str] = Field(None, max_length=100, description="Email address for the team")
    yomi_name: Optional[str] = Field(None, max_length=160, description="Pronunciation of the team name in phonetic characters")
    azure_active_directory_object_id: Optional[str] = Field(None, description="Azure AD Object ID for the team")
    administrator_id: Optional[str] = Field(None, description="New administrator user ID")
    queue_id: Optional[str] = Field(None, description="Default queue ID for the team (empty string clears it)")
    team_template_id: Optional[str] = Field(None, description="Team template ID (empty string clears it)")
    delegated_authorization_id: Optional[str] = Field(None, description="Delegated authorization context (empty string clears it)")
    transaction_currency_id: Optional[str] = Field(None, description="Currency ID (empty string clears it)")


class ListTeamsParams(ToolParams):
    business_unit_id: Optional[str] = Field(None, description="Filter teams by business unit ID")
    team_type: Optional[Code] = Field(
        None, description="Filter by team type: 0=Owner, 1=Access, 2=Security Group, 3=Office Group"
    )
    system_managed_only: bool = Field(False, description="Whether to list only system-managed teams")
    exclude_default: bool = Field(False, description="Whether to exclude default business unit teams")
    top: Optional[int] = Field(None, description="Maximum number of teams to return (default: 50)")
    filter: Optional[str] = Field(None, description="OData filter expression")


class TeamMembersParams(ToolParams):
    team_id: str = Field(description="ID of the team")
    member_ids: List[str] = Field(description="Array of user IDs")


def team_type_label(team_type):
    return TEAM_TYPES.get(team_type, "Unknown")


def membership_type_label(membership_type):
    return MEMBERSHIP_TYPES.get(membership_type, "Unknown")


def _scalar_fields(params):
    fields = {}
    for field, column in (
        ("name", "name"),
        ("description", "description"),
        ("email_address", "emailaddress"),
        ("yomi_name", "yominame"),
        ("azure_active_directory_object_id", "azureactivedirectoryobjectid"),
    ):
        value = getattr(params, field)
        if value is not None:
            fields[column] = value
    if params.team_type is not None:
        fields["teamtype"] = int(params.team_type)
    if params.membership_type is not None:
        fields["membershiptype"] = int(params.membership_type)
    return fields


def _team_summary(team):
    administrator = team.get("administratorid") or {}
    business_unit = team.get("businessunitid") or {}
    return {
        "teamId": team.get("teamid"),
        "name": team.get("name"),
        "description": team.get("description"),
        "teamType": team.get("teamtype"),
        "teamTypeLabel": team_type_label(team.get("teamtype")),
        "membershipType": team.get("membershiptype"),
        "membershipTypeLabel": membership_type_label(team.get("membershiptype")),
        "emailAddress": team.get("emailaddress"),
        "businessUnitId": business_unit.get("businessunitid", team.get("_businessunitid_value")),
        "businessUnitName": business_unit.get("name"),
        "administratorId": administrator.get("systemuserid", team.get("_administratorid_value")),
        "administratorName": administrator.get("fullname"),
        "isDefault": team.get("isdefault"),
        "systemManaged": team.get("systemmanaged"),
        "createdOn": team.get("createdon"),
    }


async def root_business_unit_id(service):
    response = await service.get("businessunits?$filter=parentbusinessunitid eq null&$select=businessunitid")
    units = (response or {}).get("value", [])
    return units[0]["businessunitid"] if units else None


@tool(
    "create_dataverse_team",
    "Creates a team. Without a businessUnitId the team is created in the root business unit.",
    CreateTeamParams,
    error="creating team",
)
async def create_team(service, params):
    team = _scalar_fields(params)
    team["administratorid@odata.bind"] = f"/systemusers({params.administrator_id})"

    business_unit_id = params.business_unit_id or await root_business_unit_id(service)
    if business_unit_id:
        team["businessunitid@odata.bind"] = f"/businessunits({business_unit_id})"

    for field, (nav, entity_set) in TEAM_LOOKUPS.items():
        value = getattr(params, field)
        if value:
            team[f"{nav}@odata.bind"] = f"/{entity_set}({value})"

    response = await service.post("teams", team)
    return (
        f"Successfully created team '{params.name}'.\n\nTeam created successfully.\n\n"
        f"Response: {to_json(response)}"
    )


@tool(
    "get_dataverse_team",
    "Retrieves a team with its type, membership type, administrator and business unit.",
    TeamIdParams,
    error="retrieving team",
)
async def get_team(service, params):
    team = await service.get(
        f"teams({params.team_id})?$select=teamid,name,description,teamtype,membershiptype,emailaddress,"
        "yominame,azureactivedirectoryobjectid,_queueid_value,_teamtemplateid_value,"
        "_delegatedauthorizationid_value,_transactioncurrencyid_value,createdon,modifiedon,"
        "isdefault,systemmanaged"
        f"&$expand={TEAM_EXPAND},createdby($select=fullname),modifiedby($select=fullname)"
    )
    info = _team_summary(team)
    info.update({
        "yomiName": team.get("yominame"),
        "azureActiveDirectoryObjectId": team.get("azureactivedirectoryobjectid"),
        "queueId": team.get("_queueid_value"),
        "teamTemplateId": team.get("_teamtemplateid_value"),
        "delegatedAuthorizationId": team.get("_delegatedauthorizationid_value"),
        "transactionCurrencyId": team.get("_transactioncurrencyid_value"),
        "modifiedOn": team.get("modifiedon"),
        "createdBy": (team.get("createdby") or {}).get("fullname"),
        "modifiedBy": (team.get("modifiedby") or {}).get("fullname"),
    })
    return f"Team information:\n\n{to_json(info)}"


@tool(
    "update_dataverse_team",
    "Updates a team's properties. Passing an empty string for an optional lookup clears it.",
    UpdateTeamParams,
    error="updating team",
)
async def update_team(service, params):
    update = _scalar_fields(params)
    if params.administrator_id is not None:
        update["administratorid@odata.bind"] = f"/systemusers({params.administrator_id})"
    for field, (nav, entity_set) in TEAM_LOOKUPS.items():
        value = getattr(params, field)
        if value is not None:
            update[f"{nav}@odata.bind"] = f"/{entity_set}({value})" if value else None

    await service.patch(f"teams({params.team_id})", update)
    return "Successfully updated team."


@tool(
    "delete_dataverse_team",
    "Permanently deletes a team.",
    TeamIdParams,
    error="deleting team",
)
async def delete_team(service, params):
    await service.delete(f"teams({params.team_id})")
    return "Successfully deleted team."


@tool(
    "list_dataverse_teams",
    "Lists teams, optionally filtered by business unit, team type or system-managed status.",
    ListTeamsParams,
    error="listing teams",
)
async def list_teams(service, params):
    query = {
        "$select": "teamid,name,description,teamtype,membershiptype,emailaddress,isdefault,systemmanaged,createdon",
        "$expand": TEAM_EXPAND,
        "$top": params.top or 50,
    }
    filter_expr = odata_filter(
        f"_businessunitid_value eq {params.business_unit_id}" if params.business_unit_id else None,
        f"teamtype eq {int(params.team_type)}" if params.team_type is not None else None,
        "systemmanaged eq true" if params.system_managed_only else None,
        "isdefault eq false" if params.exclude_default else None,
        params.filter,
    )
    if filter_expr:
        query["$filter"] = filter_expr

    response = await service.get("teams", query)
    teams = [_team_summary(team) for team in (response or {}).get("value", [])]
    return f"Found {len(teams)} teams:\n\n{to_json(teams)}"


def _members(member_ids):
    return [
        {"@odata.type": "Microsoft.Dynamics.CRM.systemuser", "systemuserid": member_id}
        for member_id in member_ids
    ]


@tool(
    "add_members_to_team",
    "Adds users to a team.",
    TeamMembersParams,
    error="adding members to team",
)
async def add_members_to_team(service, params):
    await service.post(
        f"teams({params.team_id})/Microsoft.Dynamics.CRM.AddMembersTeam",
        {"Members": _members(params.member_ids)},
    )
    return f"Successfully added {len(params.member_ids)} member(s) to team."


@tool(
    "remove_members_from_team",
    "Removes users from a team.",
    TeamMembersParams,
    error="removing members from team",
)
async def remove_members_from_team(service, params):
    await service.post(
        f"teams({params.team_id})/Microsoft.Dynamics.CRM.RemoveMembersTeam",
        {"Members": _members(params.member_ids)},
    )
    return f"Successfully removed {len(params.member_ids)} member(s) from team."


@tool(
    "get_team_members",
    "Lists the users that belong to a team.",
    TeamIdParams,
    error="retrieving team members",
)
async def get_team_members(service, params):
    response = await service.get(
        f"teams({params.team_id})/teammembership_association"
        "?$select=systemuserid,fullname,domainname,isdisabled&$expand=businessunitid($select=name)"
    )
    members = []
    for member in (response or {}).get("value", []):
        business_unit = member.get("businessunitid") or {}
        members.append({
            "userId": member.get("systemuserid"),
            "fullName": member.get("fullname"),
            "domainName": member.get("domainname"),
            "businessUnitId": business_unit.get("businessunitid"),
            "businessUnitName": business_unit.get("name"),
            "isDisabled": member.get("isdisabled"),
        })
    return f"Team has {len(members)} member(s):\n\n{to_json(members)}"


@tool(
    "convert_owner_team_to_access_team",
    "Converts an owner team into an access team.",
    TeamIdParams,
    error="converting team",
)
async def convert_owner_team_to_access_team(service, params):
    await service.post(f"teams({params.team_id})/Microsoft.Dynamics.CRM.ConvertOwnerTeamToAccessTeam", {})
    return "Successfully converted owner team to access team."
