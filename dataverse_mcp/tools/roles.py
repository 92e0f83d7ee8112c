from typing import List, Literal, Optional

from pydantic import Field

from dataverse_mcp.models import ToolParams
from dataverse_mcp.tools.metadata import odata_filter
from dataverse_mcp.tools.registry import tool, to_json

PRIVILEGE_DEPTHS = {"Basic": 0, "Local": 1, "Deep": 2, "Global": 3}
PrivilegeDepth = Literal["Basic", "Local", "Deep", "Global"]

ROLE_SELECT = (
    "roleid,name,description,appliesto,isautoassigned,isinherited,summaryofcoretablepermissions,"
    "_businessunitid_value,createdon,modifiedon,_createdby_value,_modifiedby_value,ismanaged,iscustomizable,canbedeleted"
)
ROLE_LIST_SELECT = (
    "roleid,name,description,appliesto,isautoassigned,isinherited,_businessunitid_value,"
    "ismanaged,iscustomizable,canbedeleted"
)


class PrivilegeGrant(ToolParams):
    privilege_id: str = Field(description="ID of the privilege")
    depth: PrivilegeDepth = Field(description="Access level for the privilege")


class CreateRoleParams(ToolParams):
    name: str = Field(max_length=100, description="Name of the security role")
    description: Optional[str] = Field(None, max_length=2000, description="Description of the security role")
    business_unit_id: Optional[str] = Field(
        None, description="Business unit ID to associate the role with (defaults to root business unit)"
    )
    applies_to: Optional[str] = Field(None, max_length=2000, description="Personas/Licenses the security role applies to")
    is_auto_assigned: bool = Field(False, description="Whether the role is auto-assigned based on user license")
    is_inherited: Literal["0", "1"] = Field(
        "1", description="0 = Team privileges only, 1 = Direct User access level and Team privileges"
    )
    summary_of_core_table_permissions: Optional[str] = Field(
        None, max_length=2000, description="Summary of Core Table Permissions of the Role"
    )


class RoleIdParams(ToolParams):
    role_id: str = Field(description="ID of the role")


class UpdateRoleParams(ToolParams):
    role_id: str = Field(description="ID of the role to update")
    name: Optional[str] = Field(None, max_length=100, description="New name of the security role")
    description: Optional[str] = Field(None, max_length=2000, description="New description of the security role")
    applies_to: Optional[str] = Field(None, max_length=2000, description="New personas/licenses the security role applies to")
    is_auto_assigned: Optional[bool] = Field(None, description="Whether the role is auto-assigned based on user license")
    is_inherited: Optional[Literal["0", "1"]] = Field(
        None, description="0 = Team privileges only, 1 = Direct User access level and Team privileges"
    )
    summary_of_core_table_permissions: Optional[str] = Field(
        None, max_length=2000, description="Summary of Core Table Permissions of the Role"
    )


class ListRolesParams(ToolParams):
    business_unit_id: Optional[str] = Field(None, description="Filter roles by business unit ID")
    custom_only: bool = Field(False, description="Whether to list only custom (non-system) roles")
    include_managed: bool = Field(False, description="Whether to include managed roles")
    top: Optional[int] = Field(None, description="Maximum number of roles to return (default: 50)")
    filter: Optional[str] = Field(None, description="OData filter expression")


class RolePrivilegesParams(ToolParams):
    role_id: str = Field(description="ID of the role")
    privileges: List[PrivilegeGrant] = Field(description="Privileges with their access levels")


class RemovePrivilegeParams(ToolParams):
    role_id: str = Field(description="ID of the role to remove privilege from")
    privilege_id: str = Field(description="ID of the privilege to remove")


class UserRoleParams(ToolParams):
    role_id: str = Field(description="ID of the role")
    user_id: str = Field(description="ID of the user")


class TeamRoleParams(ToolParams):
    role_id: str = Field(description="ID of the role")
    team_id: str = Field(description="ID of the team")


def _privileges_payload(privileges):
    return [{"PrivilegeId": p.privilege_id, "Depth": PRIVILEGE_DEPTHS[p.depth]} for p in privileges]


def _role_summary(role):
    return {
        "roleId": role.get("roleid"),
        "name": role.get("name"),
        "description": role.get("description"),
        "appliesTo": role.get("appliesto"),
        "isAutoAssigned": role.get("isautoassigned") == 1,
        "isInherited": role.get("isinherited"),
        "businessUnitId": role.get("_businessunitid_value", role.get("businessunitid")),
        "isManaged": role.get("ismanaged"),
        "isCustomizable": role.get("iscustomizable"),
        "canBeDeleted": role.get("canbedeleted"),
    }


def _role_ref(service, role_id):
    return {"@odata.id": f"{service.base_url}roles({role_id})"}


@tool(
    "create_dataverse_role",
    "Creates a new security role. Without a businessUnitId the role is created in the root business unit.",
    CreateRoleParams,
    error="creating security role",
)
async def create_role(service, params):
    role = {
        "name": params.name,
        "description": params.description or "",
        "isautoassigned": 1 if params.is_auto_assigned else 0,
        "isinherited": int(params.is_inherited),
    }
    if params.applies_to is not None:
        role["appliesto"] = params.applies_to
    if params.summary_of_core_table_permissions is not None:
        role["summaryofcoretablepermissions"] = params.summary_of_core_table_permissions

    business_unit_id = params.business_unit_id
    if not business_unit_id:
        root = await service.get("businessunits?$filter=parentbusinessunitid eq null&$select=businessunitid")
        units = (root or {}).get("value", [])
        if units:
            business_unit_id = units[0]["businessunitid"]
    if business_unit_id:
        role["businessunitid@odata.bind"] = f"/businessunits({business_unit_id})"

    response = await service.post("roles", role) or {}
    role_id = response.get("roleid") or "Created successfully"
    return (
        f"Successfully created security role '{params.name}'.\n\nRole ID: {role_id}\n\n"
        f"Response: {to_json(response)}"
    )


@tool(
    "get_dataverse_role",
    "Retrieves a security role's properties and business unit association.",
    RoleIdParams,
    error="retrieving security role",
)
async def get_role(service, params):
    role = await service.get(f"roles({params.role_id})?$select={ROLE_SELECT}")
    info = _role_summary(role)
    info.update({
        "summaryOfCoreTablePermissions": role.get("summaryofcoretablepermissions"),
        "createdOn": role.get("createdon"),
        "modifiedOn": role.get("modifiedon"),
        "createdBy": role.get("_createdby_value", role.get("createdby")),
        "modifiedBy": role.get("_modifiedby_value", role.get("modifiedby")),
    })
    return f"Security role information:\n\n{to_json(info)}"


@tool(
    "update_dataverse_role",
    "Updates the properties of a security role without changing its privileges.",
    UpdateRoleParams,
    error="updating security role",
)
async def update_role(service, params):
    update = {}
    if params.name is not None:
        update["name"] = params.name
    if params.description is not None:
        update["description"] = params.description
    if params.applies_to is not None:
        update["appliesto"] = params.applies_to
    if params.is_auto_assigned is not None:
        update["isautoassigned"] = 1 if params.is_auto_assigned else 0
    if params.is_inherited is not None:
        update["isinherited"] = int(params.is_inherited)
    if params.summary_of_core_table_permissions is not None:
        update["summaryofcoretablepermissions"] = params.summary_of_core_table_permissions

    await service.patch(f"roles({params.role_id})", update)
    return "Successfully updated security role."


@tool(
    "delete_dataverse_role",
    "Permanently deletes a security role. Fails if the role is still assigned to users or teams.",
    RoleIdParams,
    error="deleting security role",
)
async def delete_role(service, params):
    await service.delete(f"roles({params.role_id})")
    return "Successfully deleted security role."


@tool(
    "list_dataverse_roles",
    "Lists security roles, optionally filtered by business unit or custom/managed status.",
    ListRolesParams,
    error="listing security roles",
)
async def list_roles(service, params):
    query = {"$select": ROLE_LIST_SELECT, "$top": params.top or 50}
    filter_expr = odata_filter(
        f"_businessunitid_value eq {params.business_unit_id}" if params.business_unit_id else None,
        "iscustomizable/Value eq true" if params.custom_only else None,
        "ismanaged eq false" if not params.include_managed else None,
        params.filter,
    )
    if filter_expr:
        query["$filter"] = filter_expr

    response = await service.get("roles", query)
    roles = [_role_summary(role) for role in (response or {}).get("value", [])]
    return f"Found {len(roles)} security roles:\n\n{to_json(roles)}"


@tool(
    "add_privileges_to_role",
    "Adds privileges with access levels (Basic, Local, Deep, Global) to a security role.",
    RolePrivilegesParams,
    error="adding privileges to role",
)
async def add_privileges_to_role(service, params):
    privileges = _privileges_payload(params.privileges)
    await service.post(
        f"roles({params.role_id})/Microsoft.Dynamics.CRM.AddPrivilegesRole",
        {"Privileges": privileges},
    )
    return f"Successfully added {len(privileges)} privilege(s) to role."


@tool(
    "remove_privilege_from_role",
    "Removes a single privilege from a security role.",
    RemovePrivilegeParams,
    error="removing privilege from role",
)
async def remove_privilege_from_role(service, params):
    await service.post(
        f"roles({params.role_id})/Microsoft.Dynamics.CRM.RemovePrivilegeRole",
        {"PrivilegeId": params.privilege_id},
    )
    return "Successfully removed privilege from role."


@tool(
    "replace_role_privileges",
    "Replaces all privileges of a security role with the given set.",
    RolePrivilegesParams,
    error="replacing role privileges",
)
async def replace_role_privileges(service, params):
    privileges = _privileges_payload(params.privileges)
    await service.post(
        f"roles({params.role_id})/Microsoft.Dynamics.CRM.ReplacePrivilegesRole",
        {"Privileges": privileges},
    )
    return f"Successfully replaced role privileges with {len(privileges)} privilege(s)."


@tool(
    "get_role_privileges",
    "Lists the privileges currently granted by a security role.",
    RoleIdParams,
    error="retrieving role privileges",
)
async def get_role_privileges(service, params):
    response = await service.get(
        f"roles({params.role_id})?$select=roleid"
        "&$expand=roleprivileges_association($select=name,privilegeid)"
    )
    privileges = [
        {"privilegeId": p.get("privilegeid"), "privilegeName": p.get("name")}
        for p in (response or {}).get("roleprivileges_association", [])
    ]
    privileges.sort(key=lambda p: p["privilegeName"] or "")
    return f"Role privileges ({len(privileges)} found):\n\n{to_json(privileges)}"


@tool(
    "assign_role_to_user",
    "Assigns a security role to a user.",
    UserRoleParams,
    error="assigning role to user",
)
async def assign_role_to_user(service, params):
    await service.post(
        f"systemusers({params.user_id})/systemuserroles_association/$ref",
        _role_ref(service, params.role_id),
    )
    return "Successfully assigned role to user."


@tool(
    "remove_role_from_user",
    "Removes a security role assignment from a user.",
    UserRoleParams,
    error="removing role from user",
)
async def remove_role_from_user(service, params):
    await service.delete(f"systemusers({params.user_id})/systemuserroles_association({params.role_id})/$ref")
    return "Successfully removed role from user."


@tool(
    "assign_role_to_team",
    "Assigns a security role to a team, granting it to every team member.",
    TeamRoleParams,
    error="assigning role to team",
)
async def assign_role_to_team(service, params):
    await service.post(
        f"teams({params.team_id})/teamroles_association/$ref",
        _role_ref(service, params.role_id),
    )
    return "Successfully assigned role to team."


@tool(
    "remove_role_from_team",
    "Removes a security role assignment from a team.",
    TeamRoleParams,
    error="removing role from team",
)
async def remove_role_from_team(service, params):
    await service.delete(f"teams({params.team_id})/teamroles_association({params.role_id})/$ref")
    return "Successfully removed role from team."
