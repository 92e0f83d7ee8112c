"""Tests for dataverse_mcp.dataverse_service."""

import json
import os
from unittest.mock import patch

import pytest
import requests

from dataverse_mcp.dataverse_service import (
    CONTEXT_FILE,
    LEGACY_CONTEXT_FILE,
    TOKEN_EXPIRY_MARGIN,
    AuthToken,
    DataverseService,
    odata_literal,
)
from dataverse_mcp.errors import (
    AuthenticationError,
    DataverseApiError,
    NoSolutionContextError,
    SolutionNotFoundError,
)

from tests.conftest import BASE_URL, make_context, make_response, run


class TestAuthentication:
    """Token acquisition and caching."""

    def test_token_expiry_has_safety_margin(self, service):
        with patch("dataverse_mcp.dataverse_service.datetime") as mock_dt:
            mock_dt.now.return_value.timestamp.return_value = 1000.0
            token = run(service.ensure_authenticated())

        assert token.access_token == "token-123"
        assert token.expires_at == 1000.0 + 3600 - TOKEN_EXPIRY_MARGIN

    def test_token_is_cached(self, service, msal_app):
        run(service.ensure_authenticated())
        run(service.ensure_authenticated())

        msal_app.acquire_token_for_client.assert_called_once_with(
            scopes=["https://contoso.crm.dynamics.com/.default"]
        )

    def test_expired_token_is_refreshed(self, service, msal_app):
        service.auth_token = AuthToken(access_token="old", expires_at=0)

        token = run(service.ensure_authenticated())

        assert token.access_token == "token-123"
        msal_app.acquire_token_for_client.assert_called_once()

    def test_error_response_raises(self, service, msal_app):
        msal_app.acquire_token_for_client.return_value = {
            "error": "invalid_client",
            "error_description": "AADSTS7000215: Invalid client secret",
        }

        with pytest.raises(AuthenticationError, match="Invalid client secret"):
            run(service.ensure_authenticated())

    def test_transport_failure_raises(self, service, msal_app):
        msal_app.acquire_token_for_client.side_effect = requests.ConnectionError("down")

        with pytest.raises(AuthenticationError, match="Authentication failed: down"):
            run(service.ensure_authenticated())

    def test_client_construction_failure_raises(self, config, session, tmp_path):
        with patch("dataverse_mcp.dataverse_service.msal.ConfidentialClientApplication") as factory:
            factory.side_effect = requests.ConnectionError("token host unreachable")
            service = DataverseService(config, context_dir=str(tmp_path), session=session)

            factory.assert_not_called()
            with pytest.raises(AuthenticationError, match="Authentication failed: token host unreachable"):
                run(service.ensure_authenticated())

    def test_is_expired(self):
        token = AuthToken(access_token="t", expires_at=100.0)
        assert token.is_expired(now=100.0)
        assert not token.is_expired(now=99.0)


class TestMakeRequest:
    """HTTP request layer."""

    def test_sends_default_headers_and_json_body(self, service, session):
        session.request.return_value = make_response(200, {"id": "1"})

        result = run(service.post("accounts", {"name": "Contoso"}))

        assert result == {"id": "1"}
        args, kwargs = session.request.call_args
        assert args == ("POST", f"{BASE_URL}accounts")
        assert kwargs["headers"]["Authorization"] == "Bearer token-123"
        assert kwargs["headers"]["OData-Version"] == "4.0"
        assert kwargs["headers"]["Accept"] == "application/json"
        assert json.loads(kwargs["data"]) == {"name": "Contoso"}

    def test_get_sends_no_body(self, service, session):
        session.request.return_value = make_response(200, {"value": []})

        run(service.get("accounts", params={"$top": "1"}))

        _, kwargs = session.request.call_args
        assert kwargs["data"] is None
        assert kwargs["params"] == {"$top": "1"}

    def test_no_content_returns_none(self, service, session):
        session.request.return_value = make_response(204)

        assert run(service.patch("accounts(1)", {"name": "x"})) is None

    def test_dataverse_error_body_is_mapped(self, service, session):
        session.request.return_value = make_response(
            400, {"error": {"code": "0x80040203", "message": "Invalid attribute"}}
        )

        with pytest.raises(DataverseApiError) as exc:
            run(service.get("accounts"))

        assert exc.value.code == "0x80040203"
        assert exc.value.status_code == 400
        assert str(exc.value) == "Dataverse API Error: Invalid attribute (Code: 0x80040203)"

    def test_other_http_errors_propagate(self, service, session):
        response = make_response(502, None)
        response.json.side_effect = ValueError("not json")
        session.request.return_value = response

        with pytest.raises(requests.HTTPError):
            run(service.get("accounts"))

    def test_metadata_calls_carry_solution_header(self, service, session):
        service.solution_context = make_context(unique_name="mysolution")

        run(service.post_metadata("EntityDefinitions", {}, headers={"Prefer": "return=representation"}))

        headers = session.request.call_args.kwargs["headers"]
        assert headers["MSCRM.SolutionUniqueName"] == "mysolution"
        assert headers["Prefer"] == "return=representation"

    def test_metadata_calls_without_context(self, service, session):
        run(service.get_metadata("EntityDefinitions"))

        headers = session.request.call_args.kwargs["headers"]
        assert "MSCRM.SolutionUniqueName" not in headers

    def test_plain_calls_never_carry_solution_header(self, service, session):
        service.solution_context = make_context()

        run(service.get("accounts"))

        assert "MSCRM.SolutionUniqueName" not in session.request.call_args.kwargs["headers"]


class TestCallAction:
    """Action name prefixing."""

    @pytest.mark.parametrize("action", ["PublishXml", "PublishAllXml", "InsertOptionValue", "OrderOption"])
    def test_global_actions_are_not_prefixed(self, service, session, action):
        run(service.call_action(action, {"x": 1}))

        assert session.request.call_args.args[1] == f"{BASE_URL}{action}"

    def test_other_actions_are_prefixed(self, service, session):
        run(service.call_action("AddPrivilegesRole"))

        args, kwargs = session.request.call_args
        assert args[1] == f"{BASE_URL}Microsoft.Dynamics.CRM.AddPrivilegesRole"
        assert json.loads(kwargs["data"]) == {}


class TestSolutionContext:
    """Context persistence in the working directory."""

    def _solution_response(self):
        return make_response(200, {"value": [{
            "uniquename": "mysolution",
            "friendlyname": "My Solution",
            "publisherid": {
                "uniquename": "mypublisher",
                "friendlyname": "My Publisher",
                "customizationprefix": "mp",
            },
        }]})

    def test_set_context_persists_file(self, service, session, tmp_path):
        session.request.return_value = self._solution_response()

        context = run(service.set_solution_context("mysolution"))

        assert context.customizationPrefix == "mp"
        assert context.publisherUniqueName == "mypublisher"
        with open(tmp_path / CONTEXT_FILE, encoding="utf-8") as f:
            saved = json.load(f)
        assert saved["solutionUniqueName"] == "mysolution"
        assert saved["lastUpdated"]

    def test_unknown_solution_raises(self, service, session):
        session.request.return_value = make_response(200, {"value": []})

        with pytest.raises(SolutionNotFoundError, match="Solution 'nope' not found"):
            run(service.set_solution_context("nope"))

    def test_context_is_loaded_on_start(self, config, msal_app, session, tmp_path):
        (tmp_path / CONTEXT_FILE).write_text(json.dumps(make_context(prefix="ab").model_dump()))

        service = DataverseService(config, context_dir=str(tmp_path), session=session)

        assert service.get_solution_context().customizationPrefix == "ab"

    def test_legacy_context_file_is_read(self, config, msal_app, session, tmp_path):
        (tmp_path / LEGACY_CONTEXT_FILE).write_text(json.dumps(make_context(prefix="old").model_dump()))

        service = DataverseService(config, context_dir=str(tmp_path), session=session)

        assert run(service.get_customization_prefix()) == "old"

    def test_corrupt_context_file_is_ignored(self, config, msal_app, session, tmp_path):
        (tmp_path / CONTEXT_FILE).write_text("{not json")

        service = DataverseService(config, context_dir=str(tmp_path), session=session)

        assert service.get_solution_context() is None

    def test_clear_removes_files(self, config, msal_app, session, tmp_path):
        for name in (CONTEXT_FILE, LEGACY_CONTEXT_FILE):
            (tmp_path / name).write_text(json.dumps(make_context().model_dump()))
        service = DataverseService(config, context_dir=str(tmp_path), session=session)

        service.clear_solution_context()

        assert service.get_solution_context() is None
        assert not os.path.exists(tmp_path / CONTEXT_FILE)
        assert not os.path.exists(tmp_path / LEGACY_CONTEXT_FILE)

    def test_prefix_without_context_raises(self, service):
        with pytest.raises(NoSolutionContextError, match="No solution context set"):
            run(service.get_customization_prefix())

    def test_prefix_missing_on_publisher_raises(self, service):
        service.solution_context = make_context(prefix=None)

        with pytest.raises(NoSolutionContextError, match="has no customization prefix"):
            run(service.get_customization_prefix())

    def test_context_survives_restart_until_cleared(self, config, msal_app, session, tmp_path):
        session.request.return_value = self._solution_response()
        first = DataverseService(config, context_dir=str(tmp_path), session=session)
        saved = run(first.set_solution_context("mysolution"))

        second = DataverseService(config, context_dir=str(tmp_path), session=session)
        assert second.get_solution_context() == saved

        second.clear_solution_context()
        third = DataverseService(config, context_dir=str(tmp_path), session=session)
        assert third.get_solution_context() is None

    def test_prefix_follows_context_lifecycle(self, service, session):
        response = self._solution_response()
        response.json.return_value["value"][0]["publisherid"]["customizationprefix"] = "xyz"
        session.request.return_value = response

        run(service.set_solution_context("mysolution"))
        assert run(service.get_customization_prefix()) == "xyz"

        service.clear_solution_context()
        with pytest.raises(NoSolutionContextError):
            run(service.get_customization_prefix())


@pytest.mark.parametrize("value,expected", [
    ("mysolution", "'mysolution'"),
    ("o'brien", "'o''brien'"),
    ("''", "''''''"),
])
def test_odata_literal(value, expected):
    assert odata_literal(value) == expected
