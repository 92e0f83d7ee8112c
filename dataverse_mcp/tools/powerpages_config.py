"""Edit the WebAPI site settings and table permissions of a PowerPages code site.

A code site downloaded with ``pac pages download-code-site`` keeps its
configuration as YAML under ``.powerpages-site/``:

- ``sitesetting.yml``: a list of site settings; the WebAPI is switched on
  per table with ``Webapi/<table>/enabled`` and ``Webapi/<table>/fields``.
- ``webrole.yml``: the site's web roles.
- ``table-permissions/*.yml``: one file per table permission.

Changes are local only; they reach the portal with ``pac pages upload-code-site``.
"""
import logging
import os
import re
import uuid
from typing import List, Literal, Optional

import yaml
from pydantic import Field

from dataverse_mcp.errors import DataverseError, ToolValidationError
from dataverse_mcp.models import ToolParams
from dataverse_mcp.tools.registry import tool

logger = logging.getLogger(__name__)

SITE_DIR = ".powerpages-site"
SITE_SETTINGS_FILE = "sitesetting.yml"
WEB_ROLES_FILE = "webrole.yml"
TABLE_PERMISSIONS_DIR = "table-permissions"
DEPLOY_HINT = "pac pages upload-code-site"

# Privilege name to table permission column
PRIVILEGE_COLUMNS = {
    "Read": "adx_read",
    "Write": "adx_write",
    "Create": "adx_create",
    "Delete": "adx_delete",
    "Append": "adx_append",
    "AppendTo": "adx_appendto",
}

ConfigOperation = Literal[
    "add_webapi_config",
    "remove_webapi_config",
    "list_webapi_configs",
    "add_table_permission",
    "remove_table_permission",
    "list_table_permissions",
    "check_config_status",
]
Privilege = Literal["Create", "Read", "Write", "Delete", "Append", "AppendTo"]


class PowerPagesConfigParams(ToolParams):
    operation: ConfigOperation = Field(description="Type of configuration operation to perform")
    table_name: Optional[str] = Field(
        None, description="Logical name of the table (e.g., 'cr7ae_creditcardses', 'contacts')"
    )
    fields: str = Field("*", description="Fields to expose via WebAPI (default: '*' for all fields)")
    permission_name: Optional[str] = Field(None, description="Name for the table permission")
    web_role_name: str = Field("Authenticated Users", description="Web role name (default: 'Authenticated Users')")
    access_type: Literal["Global", "Contact", "Account", "Parent"] = Field(
        "Global", description="Access type for the permission"
    )
    privileges: List[Privilege] = Field(["Read"], description="Privileges to grant")
    project_path: Optional[str] = Field(
        None, description="Path to PowerPages project (defaults to current directory)"
    )


def read_yaml_list(path):
    """Load a YAML file holding a list; a missing or empty file is []."""
    if not os.path.exists(path):
        return []
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise DataverseError(f"Could not parse {path}: {e}") from e
    if data is None:
        return []
    if not isinstance(data, list):
        raise DataverseError(f"Expected a list in {path}")
    return data


def write_yaml_list(path, data):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, indent=2, sort_keys=False, default_flow_style=False, allow_unicode=True)


def permission_file_name(permission_name):
    return re.sub(r"\s+", "-", permission_name.lower()) + ".yml"


def granted_privileges(permission):
    return [name for name, column in PRIVILEGE_COLUMNS.items() if permission.get(column)]


class PowerPagesSite:
    """Paths of one code site's configuration files."""

    def __init__(self, project_path=None):
        self.root = os.path.join(project_path or os.getcwd(), SITE_DIR)
        if not os.path.isdir(self.root):
            raise DataverseError(
                f"{SITE_DIR} directory not found at {self.root}. "
                "This tool should be run from a PowerPages Code Site project root."
            )
        self.site_settings_path = os.path.join(self.root, SITE_SETTINGS_FILE)
        self.web_roles_path = os.path.join(self.root, WEB_ROLES_FILE)
        self.permissions_dir = os.path.join(self.root, TABLE_PERMISSIONS_DIR)

    def permission_files(self):
        if not os.path.isdir(self.permissions_dir):
            return []
        return [
            os.path.join(self.permissions_dir, name)
            for name in sorted(os.listdir(self.permissions_dir))
            if name.endswith(".yml")
        ]

    def permissions(self):
        for path in self.permission_files():
            for permission in read_yaml_list(path):
                if isinstance(permission, dict):
                    yield permission


def _webapi_setting_names(table_name):
    return f"Webapi/{table_name}/enabled", f"Webapi/{table_name}/fields"


def add_webapi_config(site, table_name, fields):
    settings = read_yaml_list(site.site_settings_path)
    existing = {s.get("adx_name") for s in settings if isinstance(s, dict)}
    enabled_name, fields_name = _webapi_setting_names(table_name)

    added = []
    for name, value in ((enabled_name, True), (fields_name, fields)):
        if name in existing:
            continue
        settings.append({
            "adx_name": name,
            "adx_sitesettingid": str(uuid.uuid4()),
            "adx_source": 0,
            "adx_value": value,
        })
        added.append(name)

    if not added:
        return f"WebAPI configuration for table '{table_name}' already exists."

    write_yaml_list(site.site_settings_path, settings)
    logger.info("Added WebAPI site settings for %s", table_name)
    return (
        f"Successfully added WebAPI configuration for table '{table_name}':\n- " + "\n- ".join(added) +
        f"\n\nNext steps:\n1. Add table permissions for this table\n"
        f"2. Deploy the configuration using '{DEPLOY_HINT}'"
    )


def remove_webapi_config(site, table_name):
    settings = read_yaml_list(site.site_settings_path)
    names = set(_webapi_setting_names(table_name))
    kept = [s for s in settings if not (isinstance(s, dict) and s.get("adx_name") in names)]

    if len(kept) == len(settings):
        return f"No WebAPI configuration found for table '{table_name}'."

    write_yaml_list(site.site_settings_path, kept)
    logger.info("Removed WebAPI site settings for %s", table_name)
    return f"Successfully removed WebAPI configuration for table '{table_name}'."


def list_webapi_configs(site):
    configs = {}
    for setting in read_yaml_list(site.site_settings_path):
        if not isinstance(setting, dict):
            continue
        match = re.match(r"^Webapi/([^/]+)/(.+)$", str(setting.get("adx_name") or ""))
        if match:
            configs.setdefault(match.group(1), {})[match.group(2)] = setting.get("adx_value")

    if not configs:
        return "No WebAPI configurations found."

    lines = ["WebAPI Configurations:", ""]
    for table_name, config in configs.items():
        lines += [
            f"Table: {table_name}",
            f"  - Enabled: {config.get('enabled', 'Not set')}",
            f"  - Fields: {config.get('fields', 'Not set')}",
            "",
        ]
    return "\n".join(lines)


def add_table_permission(site, table_name, permission_name, web_role_name, access_type, privileges):
    web_roles = [r for r in read_yaml_list(site.web_roles_path) if isinstance(r, dict)]
    web_role = next((r for r in web_roles if r.get("adx_name") == web_role_name), None)
    if web_role is None:
        available = ", ".join(str(r.get("adx_name")) for r in web_roles)
        raise DataverseError(f"Web role '{web_role_name}' not found. Available roles: {available}")

    permission = {
        "adx_entityname": table_name,
        "adx_name": permission_name,
        "adx_tablename": table_name,
        "adx_websiteaccesspermission": access_type,
        "adx_tablepermissionid": str(uuid.uuid4()),
    }
    for name, column in PRIVILEGE_COLUMNS.items():
        permission[column] = name in privileges
    permission["adx_webroles"] = [
        {"adx_webroleid": web_role.get("adx_webroleid"), "adx_name": web_role.get("adx_name")}
    ]

    path = os.path.join(site.permissions_dir, permission_file_name(permission_name))
    write_yaml_list(path, [permission])
    logger.info("Wrote table permission %s to %s", permission_name, path)
    return (
        f"Successfully created table permission '{permission_name}' for table '{table_name}':\n"
        f"- File: {path}\n"
        f"- Web Role: {web_role_name}\n"
        f"- Access Type: {access_type}\n"
        f"- Privileges: {', '.join(privileges)}\n\n"
        f"Next steps:\n1. Deploy the configuration using '{DEPLOY_HINT}'"
    )


def remove_table_permission(site, permission_name):
    file_name = permission_file_name(permission_name)
    path = os.path.join(site.permissions_dir, file_name)
    if not os.path.exists(path):
        return f"Table permission file '{file_name}' not found."
    os.remove(path)
    logger.info("Deleted table permission file %s", path)
    return f"Successfully removed table permission '{permission_name}'."


def list_table_permissions(site):
    if not os.path.isdir(site.permissions_dir):
        return "No table permissions directory found."
    if not site.permission_files():
        return "No table permissions found."

    lines = ["Table Permissions:", ""]
    for permission in site.permissions():
        lines += [
            f"Permission: {permission.get('adx_name')}",
            f"  - Table: {permission.get('adx_entityname')}",
            f"  - Access Type: {permission.get('adx_websiteaccesspermission')}",
            f"  - Privileges: {', '.join(granted_privileges(permission))}",
        ]
        roles = permission.get("adx_webroles") or []
        if roles:
            lines.append(f"  - Web Roles: {', '.join(str(r.get('adx_name')) for r in roles)}")
        lines.append("")
    return "\n".join(lines)


def check_config_status(site, table_name):
    settings = {
        s.get("adx_name"): s for s in read_yaml_list(site.site_settings_path) if isinstance(s, dict)
    }
    enabled_name, fields_name = _webapi_setting_names(table_name)
    enabled = settings.get(enabled_name)
    fields = settings.get(fields_name)

    lines = [
        f"Configuration Status for Table: {table_name}",
        "",
        "WebAPI Configuration:",
        f"  - Enabled: {enabled.get('adx_value') if enabled else 'Not configured'}",
        f"  - Fields: {fields.get('adx_value') if fields else 'Not configured'}",
        "",
        "Table Permissions:",
    ]

    permissions = [p for p in site.permissions() if p.get("adx_entityname") == table_name]
    if not os.path.isdir(site.permissions_dir):
        lines.append("  - No table permissions directory found")
    elif not permissions:
        lines.append("  - No table permissions found for this table")
    for permission in permissions:
        lines += [
            f"  - {permission.get('adx_name')}",
            f"     Access: {permission.get('adx_websiteaccesspermission')}",
            f"     Privileges: {', '.join(granted_privileges(permission))}",
        ]

    lines += ["", "Recommendations:"]
    if not enabled or not fields:
        lines.append(
            '  - Add WebAPI configuration using: manage_powerpages_webapi_config with operation "add_webapi_config"'
        )
    if not permissions:
        lines.append(
            '  - Add table permissions using: manage_powerpages_webapi_config with operation "add_table_permission"'
        )
    lines.append(f"  - Deploy changes using: {DEPLOY_HINT}")
    return "\n".join(lines)


def _require(params, *names):
    missing = [name for name in names if not getattr(params, name)]
    if missing:
        aliases = [PowerPagesConfigParams.model_fields[name].alias for name in names]
        verb = "is" if len(aliases) == 1 else "are"
        raise ToolValidationError(f"{' and '.join(aliases)} {verb} required for {params.operation} operation")


@tool(
    "manage_powerpages_webapi_config",
    "Manages PowerPages WebAPI site settings and table permissions in the .powerpages-site "
    "folder of a PowerPages Code Site project.",
    PowerPagesConfigParams,
    error="managing PowerPages configuration",
    needs_service=False,
)
async def manage_powerpages_webapi_config(_service, params):
    site = PowerPagesSite(params.project_path)
    operation = params.operation

    if operation == "add_webapi_config":
        _require(params, "table_name")
        return add_webapi_config(site, params.table_name, params.fields)
    if operation == "remove_webapi_config":
        _require(params, "table_name")
        return remove_webapi_config(site, params.table_name)
    if operation == "list_webapi_configs":
        return list_webapi_configs(site)
    if operation == "add_table_permission":
        _require(params, "table_name", "permission_name")
        return add_table_permission(
            site, params.table_name, params.permission_name,
            params.web_role_name, params.access_type, params.privileges,
        )
    if operation == "remove_table_permission":
        _require(params, "permission_name")
        return remove_table_permission(site, params.permission_name)
    if operation == "list_table_permissions":
        return list_table_permissions(site)
    _require(params, "table_name")
    return check_config_status(site, params.table_name)
