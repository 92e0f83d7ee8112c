"""Tests for dataverse_mcp.webapi_generator."""

import json

import pytest

from dataverse_mcp.errors import ToolValidationError
from dataverse_mcp.models import EntityInfo
from dataverse_mcp.webapi_generator import (
    EMPTY_GUID,
    WebApiCallRequest,
    build_odata_query,
    build_webapi_call,
    format_entity_set_name,
    format_webapi_call,
    generate_headers,
    generate_sample_body,
    normalize_bind_value,
    process_odata_bind_properties,
)

ORG = "https://contoso.crm.dynamics.com"


def _call(**fields):
    return build_webapi_call(WebApiCallRequest(**fields), ORG)


@pytest.fixture
def contact_info():
    return EntityInfo(
        logical_name="contact",
        entity_set_name="contacts",
        primary_id_attribute="contactid",
        primary_name_attribute="fullname",
        attributes=[
            {"LogicalName": "contactid", "AttributeType": "Uniqueidentifier", "IsPrimaryId": True},
            {"LogicalName": "fullname", "AttributeType": "String", "IsPrimaryName": True,
             "IsValidForCreate": True, "IsValidForUpdate": True},
            {"LogicalName": "lastname", "AttributeType": "String", "IsValidForCreate": True,
             "IsValidForUpdate": True, "RequiredLevel": {"Value": "ApplicationRequired"}},
            {"LogicalName": "emailaddress1", "AttributeType": "String", "IsValidForCreate": True,
             "IsValidForUpdate": True, "RequiredLevel": {"Value": "None"}},
            {"LogicalName": "parentcustomerid", "AttributeType": "Lookup", "IsValidForCreate": True,
             "IsValidForUpdate": True, "Targets": ["account"]},
        ],
        lookup_nav_map={"parentcustomerid": "parentcustomerid_account"},
    )


class TestQueryAndHeaders:
    """OData query strings, headers and entity set naming."""

    def test_empty_query(self):
        assert build_odata_query() == ""

    def test_query_options_are_ordered_and_encoded(self):
        query = build_odata_query(
            select=["name", "revenue"], filter="revenue gt 1000", orderby="name asc", top=5, count=True
        )

        assert query == "?$select=name,revenue&$filter=revenue%20gt%201000&$orderby=name%20asc&$top=5&$count=true"

    def test_expand_keeps_parentheses(self):
        assert build_odata_query(expand="primarycontactid($select=fullname)") == \
            "?$expand=primarycontactid(%24select%3Dfullname)"

    def test_headers(self):
        headers = generate_headers(
            prefer=["return=representation", "odata.include-annotations=*"],
            if_match="*",
            solution_unique_name="mysolution",
            caller_id="user-1",
        )

        assert headers["Prefer"] == "return=representation, odata.include-annotations=*"
        assert headers["If-Match"] == "*"
        assert headers["MSCRM.SolutionUniqueName"] == "mysolution"
        assert headers["MSCRMCallerID"] == "user-1"
        assert headers["OData-MaxVersion"] == "4.0"

    @pytest.mark.parametrize("name,expected", [("account", "accounts"), ("accounts", "accounts"), ("", "")])
    def test_format_entity_set_name(self, name, expected):
        assert format_entity_set_name(name) == expected
        assert format_entity_set_name(format_entity_set_name(name)) == expected


class TestBuildCall:
    """Per-operation method, endpoint and body."""

    def test_retrieve(self):
        call = _call(operation="retrieve", entity_set_name="account", entity_id="1", select=["name"])

        assert call.method == "GET"
        assert call.endpoint == "accounts(1)?$select=name"
        assert call.body is None

    def test_retrieve_multiple(self):
        call = _call(operation="retrieveMultiple", entity_set_name="contacts", top=3)

        assert call.endpoint == "contacts?$top=3"

    def test_create_defaults_to_empty_body(self):
        call = _call(operation="create", entity_set_name="accounts")

        assert call.method == "POST"
        assert call.endpoint == "accounts"
        assert call.body == {}

    def test_update_and_delete(self):
        update = _call(operation="update", entity_set_name="accounts", entity_id="1", data={"name": "x"})
        delete = _call(operation="delete", entity_set_name="accounts", entity_id="1")

        assert (update.method, update.endpoint, update.body) == ("PATCH", "accounts(1)", {"name": "x"})
        assert (delete.method, delete.endpoint, delete.body) == ("DELETE", "accounts(1)", None)

    def test_associate(self):
        call = _call(
            operation="associate", entity_set_name="accounts", entity_id="1",
            relationship_name="contact_customer_accounts",
            related_entity_set_name="contact", related_entity_id="2",
        )

        assert call.method == "POST"
        assert call.endpoint == "accounts(1)/contact_customer_accounts/$ref"
        assert call.body == {"@odata.id": f"{ORG}/api/data/v9.2/contacts(2)"}

    def test_disassociate_with_and_without_related_id(self):
        with_id = _call(operation="disassociate", entity_set_name="accounts", entity_id="1",
                        relationship_name="rel", related_entity_id="2")
        without_id = _call(operation="disassociate", entity_set_name="accounts", entity_id="1",
                           relationship_name="rel")

        assert with_id.endpoint == "accounts(1)/rel(2)/$ref"
        assert without_id.endpoint == "accounts(1)/rel/$ref"
        assert with_id.method == "DELETE"

    def test_bound_and_unbound_actions(self):
        bound = _call(operation="callAction", entity_set_name="accounts", entity_id="1",
                      action_or_function_name="AddToQueue")
        unbound = _call(operation="callAction", action_or_function_name="WinOpportunity",
                        parameters={"Status": 3})

        assert bound.endpoint == "accounts(1)/Microsoft.Dynamics.CRM.AddToQueue"
        assert bound.body == {}
        assert unbound.endpoint == "WinOpportunity"
        assert unbound.body == {"Status": 3}

    def test_function_parameters_are_inlined(self):
        call = _call(operation="callFunction", action_or_function_name="RetrieveVersion")
        with_args = _call(operation="callFunction", action_or_function_name="Calc",
                          parameters={"Name": "x", "Flag": True, "Count": 2})

        assert call.method == "GET"
        assert call.endpoint == "RetrieveVersion"
        assert with_args.endpoint == "Calc(Name='x',Flag=true,Count=2)"

    def test_missing_fields_are_reported(self):
        with pytest.raises(ToolValidationError, match="entitySetName, entityId are required for retrieve operation"):
            _call(operation="retrieve", entity_set_name="accounts")

    def test_missing_action_name(self):
        with pytest.raises(ToolValidationError, match="actionOrFunctionName is required for callAction operation"):
            _call(operation="callAction")

    def test_solution_header_respects_flag(self):
        request = WebApiCallRequest(operation="retrieveMultiple", entity_set_name="accounts",
                                    include_solution_context=False)

        call = build_webapi_call(request, ORG, solution_unique_name="mysolution")

        assert "MSCRM.SolutionUniqueName" not in call.headers

    def test_auth_header_placeholder(self):
        call = _call(operation="retrieveMultiple", entity_set_name="accounts", include_auth_header=True)

        assert call.headers["Authorization"] == "Bearer {ACCESS_TOKEN}"

    def test_entity_info_overrides_set_name_and_select(self, contact_info):
        request = WebApiCallRequest(operation="retrieve", entity_set_name="contact", entity_id="1")

        call = build_webapi_call(request, ORG, entity_info=contact_info)

        assert call.endpoint == "contacts(1)?$select=contactid,fullname"


class TestODataBind:
    """Normalization of @odata.bind references."""

    @pytest.mark.parametrize("value,expected", [
        (f"{ORG}/api/data/v9.2/accounts(1)", "/accounts(1)"),
        ("/api/data/v9.2/accounts(1)", "/accounts(1)"),
        ("accounts(1)", "/accounts(1)"),
        ("/accounts(1)", "/accounts(1)"),
        ("https://elsewhere.example.com/x/accounts(1)", "/accounts(1)"),
    ])
    def test_normalize_bind_value(self, value, expected):
        assert normalize_bind_value(value) == expected

    def test_null_bind_is_kept(self):
        data = {"parentcustomerid_account@odata.bind": None}

        assert process_odata_bind_properties(data) == data

    def test_logical_name_key_is_renamed(self, contact_info):
        data = {"parentcustomerid@odata.bind": "accounts(1)"}

        result = process_odata_bind_properties(data, contact_info)

        assert result == {"parentcustomerid_account@odata.bind": "/accounts(1)"}

    def test_plain_lookup_reference_is_upgraded(self, contact_info):
        data = {"parentcustomerid": f"{ORG}/api/data/v9.2/accounts(1)", "fullname": "x"}

        result = process_odata_bind_properties(data, contact_info)

        assert result == {"fullname": "x", "parentcustomerid_account@odata.bind": "/accounts(1)"}

    def test_non_dict_is_returned_unchanged(self):
        assert process_odata_bind_properties(["a"]) == ["a"]


class TestSampleBody:
    """Schema-driven sample bodies."""

    def test_create_body(self, contact_info):
        body = generate_sample_body(contact_info, {"account": "accounts"}, mode="create")

        assert body["fullname"] == "Sample contact"
        assert body["lastname"] == "Example lastname"
        assert "emailaddress1" not in body
        assert body["parentcustomerid_account@odata.bind"] == f"/accounts({EMPTY_GUID})"

    def test_update_body_uses_updatable_columns(self, contact_info):
        body = generate_sample_body(contact_info, mode="update")

        assert "emailaddress1" in body
        assert body["parentcustomerid_account@odata.bind"] == f"/accounts({EMPTY_GUID})"

    def test_empty_schema_falls_back_to_primary_name(self):
        info = EntityInfo(logical_name="widget", primary_name_attribute="name")

        assert generate_sample_body(info, mode="update") == {"name": "Updated widget"}


class TestFormatCall:
    """Text rendering."""

    def test_rendered_sections(self):
        request = WebApiCallRequest(operation="create", entity_set_name="account",
                                    data={"primarycontactid@odata.bind": "/contacts(1)"})
        call = build_webapi_call(request, ORG)

        text = format_webapi_call(ORG, call, request, "accounts")

        assert text.startswith("HTTP Method: POST\nURL: https://contoso.crm.dynamics.com/api/data/v9.2/accounts\n")
        assert "Request Body:" in text
        assert "--- @odata.bind Usage Detected ---" in text
        assert "Formatted Entity Set: accounts" in text
        assert "curl -X POST" in text
        assert "JavaScript Fetch Example:" in text
        assert json.dumps({"primarycontactid@odata.bind": "/contacts(1)"}) in text

    def test_no_body_section_for_get(self):
        call = _call(operation="retrieveMultiple", entity_set_name="accounts")

        text = format_webapi_call(ORG, call)

        assert "Request Body:" not in text
        assert "Operation Type" not in text
