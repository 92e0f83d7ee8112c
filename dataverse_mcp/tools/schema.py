"""Solution schema export and Mermaid ER diagrams built from an export.

``export_solution_schema`` walks the table, column, option set and
relationship metadata and writes it as one JSON document.
``generate_mermaid_diagram`` reads such a document back and renders it as
Mermaid ``erDiagram`` source, so it works offline against any export.
"""
import json
import logging
import math
import os
import re
from datetime import datetime, timezone

from pydantic import Field

from dataverse_mcp.dataverse_service import odata_literal
from dataverse_mcp.errors import DataverseError
from dataverse_mcp.models import ToolParams
from dataverse_mcp.tools.metadata import label_text
from dataverse_mcp.tools.registry import tool

logger = logging.getLogger(__name__)

TABLE_SELECT = (
    "LogicalName,DisplayName,DisplayCollectionName,Description,SchemaName,OwnershipType,"
    "HasActivities,HasNotes,IsAuditEnabled,IsDuplicateDetectionEnabled,IsValidForQueue,"
    "IsConnectionsEnabled,IsMailMergeEnabled,IsDocumentManagementEnabled,IsCustomEntity,"
    "IsManaged,PrimaryNameAttribute,PrimaryIdAttribute"
)
COLUMN_SELECT = (
    "LogicalName,DisplayName,Description,SchemaName,AttributeType,RequiredLevel,IsAuditEnabled,"
    "IsValidForAdvancedFind,IsValidForCreate,IsValidForUpdate,IsCustomAttribute,IsManaged,"
    "IsPrimaryId,IsPrimaryName"
)
ONE_TO_MANY_SELECT = (
    "SchemaName,ReferencedEntity,ReferencingEntity,ReferencedAttribute,ReferencingAttribute,"
    "IsCustomRelationship,IsManaged"
)
MANY_TO_MANY_SELECT = "SchemaName,Entity1LogicalName,Entity2LogicalName,IntersectEntityName,IsCustomRelationship,IsManaged"

LOOKUP_TYPES = {"Lookup", "Customer", "Owner"}
ONE_TO_MANY_EDGE = "||--o{"
MANY_TO_MANY_EDGE = "}o--o{"


class ExportSchemaParams(ToolParams):
    output_path: str = Field("schema-export.json", description="Path where to save the schema JSON file")
    include_system_tables: bool = Field(False, description="Whether to include system tables in the export")
    include_system_columns: bool = Field(False, description="Whether to include system columns in the export")
    include_system_option_sets: bool = Field(False, description="Whether to include system option sets in the export")
    prefix_only: bool = Field(
        False,
        description="Whether to export only tables, columns and option sets that start with the "
        "customization prefix of the current solution context",
    )
    prettify: bool = Field(True, description="Whether to format the JSON output for readability")


class MermaidDiagramParams(ToolParams):
    schema_path: str = Field(description="Path to the schema JSON file written by export_solution_schema")
    output_path: str = Field("schema-diagram.mmd", description="Path where to save the Mermaid diagram file")
    include_columns: bool = Field(True, description="Whether to list each table's columns")
    include_relationships: bool = Field(True, description="Whether to draw relationships between tables")
    max_tables_per_diagram: int = Field(
        20, ge=1, description="Split the output into several diagrams when there are more tables than this"
    )


def _managed_value(value):
    if isinstance(value, dict):
        return value.get("Value")
    return value


def _has_prefix(name, prefix):
    return bool(prefix) and (name or "").lower().startswith(f"{prefix.lower()}_")


def _export_option(option, index):
    return {
        "value": option.get("Value"),
        "label": label_text(option, "Label", f"Option {index + 1}"),
        "description": label_text(option, "Description", ""),
        "color": option.get("Color"),
    }


async def _option_set_detail(service, option_set):
    metadata_id = option_set.get("MetadataId")
    if metadata_id:
        try:
            return await service.get_metadata(f"GlobalOptionSetDefinitions({metadata_id})")
        except DataverseError as e:
            logger.debug("Falling back to name lookup for option set %s: %s", option_set.get("Name"), e)

    response = await service.get_metadata(
        "GlobalOptionSetDefinitions", {"$filter": f"Name eq {odata_literal(option_set.get('Name'))}"}
    )
    matches = (response or {}).get("value", [])
    return matches[0] if matches else None


async def _export_option_sets(service, params, prefix):
    response = await service.get_metadata("GlobalOptionSetDefinitions")
    exported = []
    for option_set in (response or {}).get("value", []):
        name = option_set.get("Name")
        if not params.include_system_option_sets and not option_set.get("IsCustomOptionSet"):
            continue
        if prefix and not _has_prefix(name, prefix):
            continue

        try:
            detail = await _option_set_detail(service, option_set)
        except DataverseError as e:
            logger.warning("Skipping option set %s: %s", name, e)
            continue
        if detail is None:
            logger.warning("Skipping option set %s: not found", name)
            continue

        exported.append({
            "name": name,
            "displayName": label_text(detail, "DisplayName", name),
            "description": label_text(detail, "Description", ""),
            "isGlobal": True,
            "isCustomOptionSet": detail.get("IsCustomOptionSet"),
            "isManaged": detail.get("IsManaged"),
            "options": [_export_option(option, i) for i, option in enumerate(detail.get("Options") or [])],
        })
    return exported


def _export_column(column):
    return {
        "logicalName": column.get("LogicalName"),
        "displayName": label_text(column, "DisplayName", column.get("LogicalName")),
        "description": label_text(column, "Description", ""),
        "schemaName": column.get("SchemaName"),
        "attributeType": column.get("AttributeType"),
        "requiredLevel": _managed_value(column.get("RequiredLevel")) or "None",
        "isAuditEnabled": _managed_value(column.get("IsAuditEnabled")),
        "isValidForAdvancedFind": _managed_value(column.get("IsValidForAdvancedFind")),
        "isValidForCreate": column.get("IsValidForCreate"),
        "isValidForUpdate": column.get("IsValidForUpdate"),
        "isCustomAttribute": column.get("IsCustomAttribute"),
        "isManaged": column.get("IsManaged"),
        "isPrimaryId": column.get("IsPrimaryId"),
        "isPrimaryName": column.get("IsPrimaryName"),
    }


def _export_table(table, columns):
    return {
        "logicalName": table.get("LogicalName"),
        "displayName": label_text(table, "DisplayName", table.get("LogicalName")),
        "displayCollectionName": label_text(table, "DisplayCollectionName", ""),
        "description": label_text(table, "Description", ""),
        "schemaName": table.get("SchemaName"),
        "ownershipType": "UserOwned" if table.get("OwnershipType") == 1 else "OrganizationOwned",
        "hasActivities": table.get("HasActivities"),
        "hasNotes": table.get("HasNotes"),
        "isAuditEnabled": _managed_value(table.get("IsAuditEnabled")),
        "isDuplicateDetectionEnabled": _managed_value(table.get("IsDuplicateDetectionEnabled")),
        "isValidForQueue": _managed_value(table.get("IsValidForQueue")),
        "isConnectionsEnabled": _managed_value(table.get("IsConnectionsEnabled")),
        "isMailMergeEnabled": _managed_value(table.get("IsMailMergeEnabled")),
        "isDocumentManagementEnabled": table.get("IsDocumentManagementEnabled"),
        "isCustomEntity": table.get("IsCustomEntity"),
        "isManaged": table.get("IsManaged"),
        "primaryNameAttribute": table.get("PrimaryNameAttribute"),
        "primaryIdAttribute": table.get("PrimaryIdAttribute"),
        "columns": columns,
    }


async def _export_tables(service, params, prefix):
    query = {"$select": TABLE_SELECT}
    if not params.include_system_tables:
        query["$filter"] = "IsCustomEntity eq true"
    response = await service.get_metadata("EntityDefinitions", query)

    tables = []
    for table in (response or {}).get("value", []):
        logical_name = table.get("LogicalName")
        if prefix and not _has_prefix(logical_name, prefix):
            continue

        column_query = {"$select": COLUMN_SELECT}
        if not params.include_system_columns:
            column_query["$filter"] = "IsCustomAttribute eq true"
        attributes = await service.get_metadata(
            f"EntityDefinitions(LogicalName='{logical_name}')/Attributes", column_query
        )
        columns = [
            _export_column(column)
            for column in (attributes or {}).get("value", [])
            if not prefix or column.get("IsPrimaryId") or _has_prefix(column.get("LogicalName"), prefix)
        ]
        tables.append(_export_table(table, columns))
        logger.debug("Exported table %s with %d columns", logical_name, len(columns))
    return tables


async def _export_relationships(service, params, table_names):
    relationships = []
    custom_only = None if params.include_system_tables else "IsCustomRelationship eq true"

    query = {"$select": ONE_TO_MANY_SELECT}
    if custom_only:
        query["$filter"] = custom_only
    response = await service.get_metadata("RelationshipDefinitions/Microsoft.Dynamics.CRM.OneToManyRelationshipMetadata", query)
    for rel in (response or {}).get("value", []):
        if rel.get("ReferencedEntity") not in table_names and rel.get("ReferencingEntity") not in table_names:
            continue
        relationships.append({
            "schemaName": rel.get("SchemaName"),
            "relationshipType": "OneToMany",
            "referencedEntity": rel.get("ReferencedEntity"),
            "referencingEntity": rel.get("ReferencingEntity"),
            "referencedAttribute": rel.get("ReferencedAttribute"),
            "referencingAttribute": rel.get("ReferencingAttribute"),
            "isCustomRelationship": rel.get("IsCustomRelationship"),
            "isManaged": rel.get("IsManaged"),
        })

    query = {"$select": MANY_TO_MANY_SELECT}
    if custom_only:
        query["$filter"] = custom_only
    response = await service.get_metadata("RelationshipDefinitions/Microsoft.Dynamics.CRM.ManyToManyRelationshipMetadata", query)
    for rel in (response or {}).get("value", []):
        if rel.get("Entity1LogicalName") not in table_names and rel.get("Entity2LogicalName") not in table_names:
            continue
        relationships.append({
            "schemaName": rel.get("SchemaName"),
            "relationshipType": "ManyToMany",
            "entity1LogicalName": rel.get("Entity1LogicalName"),
            "entity2LogicalName": rel.get("Entity2LogicalName"),
            "intersectEntityName": rel.get("IntersectEntityName"),
            "isCustomRelationship": rel.get("IsCustomRelationship"),
            "isManaged": rel.get("IsManaged"),
        })
    return relationships


def _write_text(path, text):
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)


@tool(
    "export_solution_schema",
    "Exports the tables, columns, global option sets and relationships of the environment "
    "(or only those using the solution's customization prefix) to a JSON file.",
    ExportSchemaParams,
    error="exporting schema",
)
async def export_solution_schema(service, params):
    context = service.get_solution_context()
    prefix = await service.get_customization_prefix() if params.prefix_only else None

    metadata = {
        "exportedAt": datetime.now(timezone.utc).isoformat(),
        "includeSystemTables": params.include_system_tables,
        "includeSystemColumns": params.include_system_columns,
        "includeSystemOptionSets": params.include_system_option_sets,
        "prefixOnly": params.prefix_only,
    }
    if context is not None:
        metadata.update({
            "solutionUniqueName": context.solutionUniqueName,
            "solutionDisplayName": context.solutionDisplayName,
            "publisherPrefix": context.customizationPrefix,
        })

    logger.info("Exporting schema to %s", params.output_path)
    tables = await _export_tables(service, params, prefix)
    option_sets = await _export_option_sets(service, params, prefix)
    relationships = await _export_relationships(service, params, {t["logicalName"] for t in tables})

    schema = {
        "metadata": metadata,
        "tables": tables,
        "globalOptionSets": option_sets,
        "relationships": relationships,
    }
    text = json.dumps(schema, indent=2 if params.prettify else None, separators=None if params.prettify else (",", ":"))
    _write_text(params.output_path, text)

    column_count = sum(len(t["columns"]) for t in tables)
    size_kb = os.path.getsize(params.output_path) / 1024
    lines = [
        "Schema export completed successfully!",
        "",
        f"**Tables:** {len(tables)}",
        f"**Columns:** {column_count}",
        f"**Global Option Sets:** {len(option_sets)}",
        f"**Relationships:** {len(relationships)}",
        f"**Output:** {params.output_path} ({size_kb:.2f} KB)",
    ]
    if context is not None:
        lines.append(
            f"**Solution Context:** {context.solutionDisplayName or context.solutionUniqueName} "
            f"(prefix: {context.customizationPrefix})"
        )
    filters = []
    if not params.include_system_tables:
        filters.append("custom tables only")
    if not params.include_system_columns:
        filters.append("custom columns only")
    if not params.include_system_option_sets:
        filters.append("custom option sets only")
    if prefix:
        filters.append(f"names starting with '{prefix}_'")
    if filters:
        lines.append(f"**Filters:** {', '.join(filters)}")
    return "\n".join(lines)


# Mermaid rendering

def _mermaid_token(value, default):
    token = re.sub(r"[^A-Za-z0-9_-]", "", str(value or ""))
    return token or default


def _mermaid_comment(value):
    return str(value or "").replace('"', "'")


def _column_line(column, foreign_keys):
    name = column.get("logicalName")
    keys = []
    if column.get("isPrimaryId"):
        keys.append("PK")
    if column.get("attributeType") in LOOKUP_TYPES or name in foreign_keys:
        keys.append("FK")
    parts = [_mermaid_token(column.get("attributeType"), "String"), _mermaid_token(name, "column")]
    if keys:
        parts.append(",".join(keys))
    display = column.get("displayName")
    if display and display != name:
        parts.append(f'"{_mermaid_comment(display)}"')
    return " ".join(parts)


def _relationship_ends(rel):
    if rel.get("relationshipType") == "ManyToMany":
        return rel.get("entity1LogicalName"), rel.get("entity2LogicalName"), MANY_TO_MANY_EDGE
    return rel.get("referencedEntity"), rel.get("referencingEntity"), ONE_TO_MANY_EDGE


def _relationship_owner(rel, exported):
    """The exported table whose diagram draws this relationship."""
    first, second, _ = _relationship_ends(rel)
    if rel.get("relationshipType") != "ManyToMany":
        first, second = second, first
    return first if first in exported else second


def render_mermaid_diagram(tables, relationships, include_columns=True, include_relationships=True):
    """Render one ``erDiagram`` for ``tables`` and the relationships drawn with them."""
    foreign_keys = {}
    for rel in relationships:
        if rel.get("relationshipType") != "ManyToMany" and rel.get("referencingAttribute"):
            foreign_keys.setdefault(rel.get("referencingEntity"), set()).add(rel["referencingAttribute"])

    lines = ["erDiagram"]
    for table in tables:
        name = _mermaid_token(table.get("logicalName"), "table")
        columns = (table.get("columns") or []) if include_columns else []
        if not columns:
            lines.append(f"    {name}")
            continue
        lines.append(f"    {name} {{")
        keys = foreign_keys.get(table.get("logicalName"), set())
        lines += [f"        {_column_line(column, keys)}" for column in columns]
        lines.append("    }")

    if include_relationships:
        for rel in relationships:
            first, second, edge = _relationship_ends(rel)
            if not first or not second:
                continue
            label = _mermaid_comment(rel.get("schemaName") or rel.get("relationshipType"))
            lines.append(
                f'    {_mermaid_token(first, "table")} {edge} {_mermaid_token(second, "table")} : "{label}"'
            )
    return "\n".join(lines) + "\n"


def _part_path(path, index, total):
    if total == 1:
        return path
    root, ext = os.path.splitext(path)
    return f"{root}-part{index}{ext or '.mmd'}"


@tool(
    "generate_mermaid_diagram",
    "Generates a Mermaid ER diagram from a schema file written by export_solution_schema.",
    MermaidDiagramParams,
    error="generating Mermaid diagram",
    needs_service=False,
)
async def generate_mermaid_diagram(_service, params):
    try:
        with open(params.schema_path, "r", encoding="utf-8") as f:
            schema = json.load(f)
    except FileNotFoundError as e:
        raise DataverseError(f"Schema file not found: {params.schema_path}") from e
    except ValueError as e:
        raise DataverseError(f"Schema file is not valid JSON: {params.schema_path}") from e

    tables = schema.get("tables") or []
    relationships = (schema.get("relationships") or []) if params.include_relationships else []
    exported = {t.get("logicalName") for t in tables}

    chunk_size = params.max_tables_per_diagram
    total = max(1, math.ceil(len(tables) / chunk_size))
    outputs = []
    first_diagram = None
    for index in range(total):
        chunk = tables[index * chunk_size:(index + 1) * chunk_size]
        names = {t.get("logicalName") for t in chunk}
        chunk_relationships = [r for r in relationships if _relationship_owner(r, exported) in names]
        diagram = render_mermaid_diagram(
            chunk, chunk_relationships, params.include_columns, params.include_relationships
        )
        path = _part_path(params.output_path, index + 1, total)
        _write_text(path, diagram)
        outputs.append(path)
        if first_diagram is None:
            first_diagram = diagram

    summary = [
        "Mermaid diagram generated successfully!",
        "",
        f"**Tables:** {len(tables)}",
        f"**Relationships:** {len(relationships)}",
        f"**Diagrams:** {total}",
        "**Output:**",
    ]
    summary += [f"- {path}" for path in outputs]
    summary += ["", "Preview:", "", f"```mermaid\n{first_diagram}```"]
    return "\n".join(summary)
