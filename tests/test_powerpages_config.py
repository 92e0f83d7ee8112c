"""Tests for manage_powerpages_webapi_config against a code site on disk."""

import pytest
import yaml

from dataverse_mcp.errors import DataverseError, ToolValidationError
from dataverse_mcp.tools.powerpages_config import (
    PowerPagesConfigParams,
    manage_powerpages_webapi_config,
    permission_file_name,
    read_yaml_list,
)

from tests.conftest import run

WEB_ROLES = [
    {"adx_name": "Authenticated Users", "adx_webroleid": "role-auth"},
    {"adx_name": "Administrators", "adx_webroleid": "role-admin"},
]


@pytest.fixture
def site(tmp_path):
    root = tmp_path / ".powerpages-site"
    root.mkdir()
    (root / "webrole.yml").write_text(yaml.safe_dump(WEB_ROLES))
    (root / "sitesetting.yml").write_text(yaml.safe_dump([
        {"adx_name": "Authentication/Registration/Enabled", "adx_value": True},
    ]))
    return root


def manage(site, **fields):
    params = PowerPagesConfigParams(project_path=str(site.parent), **fields)
    return run(manage_powerpages_webapi_config(None, params))


class TestWebApiSettings:
    """Webapi/<table>/* site settings."""

    def test_add_then_list(self, site):
        text = manage(site, operation="add_webapi_config", table_name="contact", fields="fullname,emailaddress1")

        assert text.startswith("Successfully added WebAPI configuration for table 'contact':")
        settings = read_yaml_list(str(site / "sitesetting.yml"))
        assert [s["adx_name"] for s in settings] == [
            "Authentication/Registration/Enabled", "Webapi/contact/enabled", "Webapi/contact/fields",
        ]
        assert settings[1]["adx_value"] is True
        assert settings[2]["adx_value"] == "fullname,emailaddress1"
        assert settings[1]["adx_sitesettingid"]

        listing = manage(site, operation="list_webapi_configs")
        assert "Table: contact\n  - Enabled: True\n  - Fields: fullname,emailaddress1" in listing

    def test_add_is_idempotent(self, site):
        manage(site, operation="add_webapi_config", table_name="contact")

        text = manage(site, operation="add_webapi_config", table_name="contact")

        assert text == "WebAPI configuration for table 'contact' already exists."
        assert len(read_yaml_list(str(site / "sitesetting.yml"))) == 3

    def test_remove(self, site):
        manage(site, operation="add_webapi_config", table_name="contact")

        assert manage(site, operation="remove_webapi_config", table_name="contact") == (
            "Successfully removed WebAPI configuration for table 'contact'."
        )
        assert manage(site, operation="remove_webapi_config", table_name="contact") == (
            "No WebAPI configuration found for table 'contact'."
        )
        assert len(read_yaml_list(str(site / "sitesetting.yml"))) == 1

    def test_list_when_empty(self, site):
        assert manage(site, operation="list_webapi_configs") == "No WebAPI configurations found."

    def test_table_name_required(self, site):
        with pytest.raises(ToolValidationError, match="tableName is required for add_webapi_config operation"):
            manage(site, operation="add_webapi_config")


class TestTablePermissions:
    """table-permissions/*.yml files."""

    def test_add_writes_permission_file(self, site):
        text = manage(site, operation="add_table_permission", table_name="contact",
                      permission_name="Contact Read", privileges=["Read", "Write"], access_type="Contact")

        path = site / "table-permissions" / "contact-read.yml"
        permission = yaml.safe_load(path.read_text())[0]
        assert permission["adx_entityname"] == "contact"
        assert permission["adx_websiteaccesspermission"] == "Contact"
        assert permission["adx_read"] is True
        assert permission["adx_write"] is True
        assert permission["adx_delete"] is False
        assert permission["adx_webroles"] == [{"adx_webroleid": "role-auth", "adx_name": "Authenticated Users"}]
        assert "- Privileges: Read, Write" in text

    def test_unknown_web_role(self, site):
        with pytest.raises(DataverseError, match="Available roles: Authenticated Users, Administrators"):
            manage(site, operation="add_table_permission", table_name="contact",
                   permission_name="x", web_role_name="Guests")

    def test_requires_both_names(self, site):
        with pytest.raises(ToolValidationError,
                           match="tableName and permissionName are required for add_table_permission operation"):
            manage(site, operation="add_table_permission", table_name="contact")

    def test_list_and_remove(self, site):
        assert manage(site, operation="list_table_permissions") == "No table permissions directory found."
        manage(site, operation="add_table_permission", table_name="contact", permission_name="Contact Read",
               web_role_name="Administrators")

        listing = manage(site, operation="list_table_permissions")
        assert "Permission: Contact Read" in listing
        assert "  - Privileges: Read" in listing
        assert "  - Web Roles: Administrators" in listing

        assert manage(site, operation="remove_table_permission", permission_name="Contact Read") == (
            "Successfully removed table permission 'Contact Read'."
        )
        assert manage(site, operation="remove_table_permission", permission_name="Contact Read") == (
            "Table permission file 'contact-read.yml' not found."
        )
        assert manage(site, operation="list_table_permissions") == "No table permissions found."


class TestStatus:
    """check_config_status."""

    def test_unconfigured_table(self, site):
        text = manage(site, operation="check_config_status", table_name="contact")

        assert "  - Enabled: Not configured" in text
        assert "  - No table permissions directory found" in text
        assert 'operation "add_webapi_config"' in text
        assert 'operation "add_table_permission"' in text

    def test_configured_table(self, site):
        manage(site, operation="add_webapi_config", table_name="contact")
        manage(site, operation="add_table_permission", table_name="contact", permission_name="Contact Read")

        text = manage(site, operation="check_config_status", table_name="contact")

        assert "  - Enabled: True" in text
        assert "  - Fields: *" in text
        assert "  - Contact Read" in text
        assert "add_webapi_config" not in text
        assert text.endswith("  - Deploy changes using: pac pages upload-code-site")


class TestSiteHandling:
    """Project layout and file errors."""

    def test_missing_site_directory(self, tmp_path):
        params = PowerPagesConfigParams(operation="list_webapi_configs", project_path=str(tmp_path))

        with pytest.raises(DataverseError, match=".powerpages-site directory not found"):
            run(manage_powerpages_webapi_config(None, params))

    def test_malformed_yaml(self, site):
        (site / "sitesetting.yml").write_text("adx_name: [unclosed")

        with pytest.raises(DataverseError, match="Could not parse"):
            manage(site, operation="list_webapi_configs")

    def test_non_list_yaml(self, site):
        (site / "sitesetting.yml").write_text("adx_name: x\n")

        with pytest.raises(DataverseError, match="Expected a list"):
            manage(site, operation="list_webapi_configs")

    def test_permission_file_name(self):
        assert permission_file_name("My  Contact Perm") == "my-contact-perm.yml"
