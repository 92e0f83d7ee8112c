"""Tests for the security role tools."""

import pytest
from pydantic import ValidationError

from dataverse_mcp.tools.roles import (
    CreateRoleParams,
    ListRolesParams,
    RoleIdParams,
    RolePrivilegesParams,
    TeamRoleParams,
    UpdateRoleParams,
    UserRoleParams,
    add_privileges_to_role,
    assign_role_to_team,
    assign_role_to_user,
    create_role,
    get_role_privileges,
    list_roles,
    remove_role_from_user,
    replace_role_privileges,
    update_role,
)

from tests.conftest import BASE_URL, run


class TestCreateRole:
    """create_dataverse_role."""

    def test_defaults_to_root_business_unit(self, mock_service):
        mock_service.get.return_value = {"value": [{"businessunitid": "bu-root"}]}
        mock_service.post.return_value = {"roleid": "r1"}

        text = run(create_role(mock_service, CreateRoleParams(name="Sales Reader", is_auto_assigned=True)))

        endpoint, role = mock_service.post.await_args.args
        assert endpoint == "roles"
        assert role["businessunitid@odata.bind"] == "/businessunits(bu-root)"
        assert role["isautoassigned"] == 1
        assert role["isinherited"] == 1
        assert role["description"] == ""
        assert "Role ID: r1" in text

    def test_explicit_business_unit_skips_lookup(self, mock_service):
        mock_service.post.return_value = None

        text = run(create_role(mock_service, CreateRoleParams(name="X", business_unit_id="bu-1", is_inherited="0")))

        mock_service.get.assert_not_awaited()
        role = mock_service.post.await_args.args[1]
        assert role["businessunitid@odata.bind"] == "/businessunits(bu-1)"
        assert role["isinherited"] == 0
        assert "Role ID: Created successfully" in text

    def test_name_length_is_validated(self):
        with pytest.raises(ValidationError):
            CreateRoleParams(name="x" * 101)


class TestRoleUpdatesAndQueries:
    """update, list and privilege reads."""

    def test_update_only_sends_given_fields(self, mock_service):
        run(update_role(mock_service, UpdateRoleParams(role_id="r1", is_auto_assigned=False)))

        mock_service.patch.assert_awaited_once_with("roles(r1)", {"isautoassigned": 0})

    def test_list_filters(self, mock_service):
        mock_service.get.return_value = {"value": [{"roleid": "r1", "name": "A", "isautoassigned": 1}]}

        text = run(list_roles(mock_service, ListRolesParams(business_unit_id="bu-1", custom_only=True)))

        endpoint, query = mock_service.get.await_args.args
        assert endpoint == "roles"
        assert query["$top"] == 50
        assert query["$filter"] == (
            "_businessunitid_value eq bu-1 and iscustomizable/Value eq true and ismanaged eq false"
        )
        assert '"isAutoAssigned": true' in text

    def test_privileges_sorted_by_name(self, mock_service):
        mock_service.get.return_value = {"roleprivileges_association": [
            {"privilegeid": "p2", "name": "prvWriteAccount"},
            {"privilegeid": "p1", "name": "prvReadAccount"},
        ]}

        text = run(get_role_privileges(mock_service, RoleIdParams(role_id="r1")))

        assert text.index("prvReadAccount") < text.index("prvWriteAccount")
        assert text.startswith("Role privileges (2 found):")


class TestPrivilegesAndAssignments:
    """Bound actions and association references."""

    def test_add_privileges_maps_depth(self, mock_service):
        params = RolePrivilegesParams.model_validate({
            "roleId": "r1",
            "privileges": [{"privilegeId": "p1", "depth": "Global"}, {"privilegeId": "p2", "depth": "Basic"}],
        })

        text = run(add_privileges_to_role(mock_service, params))

        mock_service.post.assert_awaited_once_with(
            "roles(r1)/Microsoft.Dynamics.CRM.AddPrivilegesRole",
            {"Privileges": [{"PrivilegeId": "p1", "Depth": 3}, {"PrivilegeId": "p2", "Depth": 0}]},
        )
        assert text == "Successfully added 2 privilege(s) to role."

    def test_replace_privileges(self, mock_service):
        params = RolePrivilegesParams(role_id="r1", privileges=[{"privilege_id": "p1", "depth": "Deep"}])

        run(replace_role_privileges(mock_service, params))

        endpoint, body = mock_service.post.await_args.args
        assert endpoint.endswith("ReplacePrivilegesRole")
        assert body["Privileges"][0]["Depth"] == 2

    def test_assign_to_user_and_team(self, mock_service):
        run(assign_role_to_user(mock_service, UserRoleParams(role_id="r1", user_id="u1")))
        run(assign_role_to_team(mock_service, TeamRoleParams(role_id="r1", team_id="t1")))

        user_call, team_call = mock_service.post.await_args_list
        assert user_call.args == ("systemusers(u1)/systemuserroles_association/$ref",
                                  {"@odata.id": f"{BASE_URL}roles(r1)"})
        assert team_call.args[0] == "teams(t1)/teamroles_association/$ref"

    def test_remove_from_user(self, mock_service):
        run(remove_role_from_user(mock_service, UserRoleParams(role_id="r1", user_id="u1")))

        mock_service.delete.assert_awaited_once_with("systemusers(u1)/systemuserroles_association(r1)/$ref")
