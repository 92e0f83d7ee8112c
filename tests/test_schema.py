"""Tests for schema export and Mermaid diagram generation."""

import json

import pytest

from dataverse_mcp.errors import DataverseApiError, DataverseError
from dataverse_mcp.tools.schema import (
    ExportSchemaParams,
    MermaidDiagramParams,
    export_solution_schema,
    generate_mermaid_diagram,
    render_mermaid_diagram,
)

from tests.conftest import run


def _label(text):
    return {"UserLocalizedLabel": {"Label": text}}


TABLES = [
    {"LogicalName": "test_customer", "DisplayName": _label("Customer"), "OwnershipType": 1, "IsCustomEntity": True},
    {"LogicalName": "test_order", "DisplayName": _label("Order"), "OwnershipType": 4, "IsCustomEntity": True},
    {"LogicalName": "new_legacy", "IsCustomEntity": True},
]
COLUMNS = {
    "test_customer": [
        {"LogicalName": "test_customerid", "AttributeType": "Uniqueidentifier", "IsPrimaryId": True},
        {"LogicalName": "test_name", "AttributeType": "String", "RequiredLevel": {"Value": "ApplicationRequired"}},
        {"LogicalName": "new_extra", "AttributeType": "String"},
    ],
    "test_order": [
        {"LogicalName": "test_orderid", "AttributeType": "Uniqueidentifier", "IsPrimaryId": True},
        {"LogicalName": "test_customerid", "AttributeType": "Lookup", "DisplayName": _label("Customer")},
    ],
    "new_legacy": [],
}
OPTION_SETS = [
    {"Name": "test_priority", "MetadataId": "os-1", "IsCustomOptionSet": True},
    {"Name": "test_broken", "MetadataId": "os-2", "IsCustomOptionSet": True},
    {"Name": "budgetstatus", "MetadataId": "os-3", "IsCustomOptionSet": False},
]
ONE_TO_MANY = [
    {"SchemaName": "test_customer_order", "ReferencedEntity": "test_customer",
     "ReferencingEntity": "test_order", "ReferencingAttribute": "test_customerid"},
    {"SchemaName": "unrelated", "ReferencedEntity": "account", "ReferencingEntity": "contact"},
]
MANY_TO_MANY = [
    {"SchemaName": "test_order_legacy", "Entity1LogicalName": "test_order", "Entity2LogicalName": "new_legacy"},
]


def fake_metadata(endpoint, params=None):
    if endpoint == "EntityDefinitions":
        return {"value": TABLES}
    if endpoint.endswith("/Attributes"):
        table = endpoint.split("'")[1]
        return {"value": COLUMNS[table]}
    if endpoint == "GlobalOptionSetDefinitions":
        if params:
            return {"value": []}
        return {"value": OPTION_SETS}
    if endpoint == "GlobalOptionSetDefinitions(os-1)":
        return {"Name": "test_priority", "IsCustomOptionSet": True,
                "Options": [{"Value": 1, "Label": _label("Low")}, {"Value": 2}]}
    if endpoint == "GlobalOptionSetDefinitions(os-2)":
        raise DataverseApiError("gone", code="0x1", status_code=404)
    if endpoint.endswith("OneToManyRelationshipMetadata"):
        return {"value": ONE_TO_MANY}
    if endpoint.endswith("ManyToManyRelationshipMetadata"):
        return {"value": MANY_TO_MANY}
    raise AssertionError(f"unexpected endpoint {endpoint}")


@pytest.fixture
def schema_service(mock_service):
    mock_service.get_metadata.side_effect = fake_metadata
    return mock_service


class TestExportSolutionSchema:
    """export_solution_schema."""

    def test_full_export(self, schema_service, tmp_path):
        output = tmp_path / "out" / "schema.json"

        text = run(export_solution_schema(schema_service, ExportSchemaParams(output_path=str(output))))

        schema = json.loads(output.read_text())
        assert [t["logicalName"] for t in schema["tables"]] == ["test_customer", "test_order", "new_legacy"]
        assert schema["tables"][0]["ownershipType"] == "UserOwned"
        assert schema["tables"][1]["ownershipType"] == "OrganizationOwned"
        assert schema["tables"][0]["columns"][1]["requiredLevel"] == "ApplicationRequired"
        assert [o["name"] for o in schema["globalOptionSets"]] == ["test_priority"]
        assert schema["globalOptionSets"][0]["options"][1]["label"] == "Option 2"
        assert [r["schemaName"] for r in schema["relationships"]] == ["test_customer_order", "test_order_legacy"]
        assert schema["metadata"]["solutionUniqueName"] == "testsolution"
        assert schema["metadata"]["prefixOnly"] is False

        assert "Schema export completed successfully!" in text
        assert "**Tables:** 3" in text
        assert "**Relationships:** 2" in text
        assert "**Filters:** custom tables only, custom columns only, custom option sets only" in text
        schema_service.get_customization_prefix.assert_not_awaited()

    def test_prefix_only(self, schema_service, tmp_path):
        output = tmp_path / "schema.json"

        text = run(export_solution_schema(
            schema_service, ExportSchemaParams(output_path=str(output), prefix_only=True, prettify=False)
        ))

        raw = output.read_text()
        assert "\n" not in raw
        schema = json.loads(raw)
        assert [t["logicalName"] for t in schema["tables"]] == ["test_customer", "test_order"]
        assert [c["logicalName"] for c in schema["tables"][0]["columns"]] == ["test_customerid", "test_name"]
        assert "names starting with 'test_'" in text

    def test_system_tables_drop_custom_filter(self, schema_service, tmp_path):
        run(export_solution_schema(schema_service, ExportSchemaParams(
            output_path=str(tmp_path / "s.json"), include_system_tables=True)))

        first_call = schema_service.get_metadata.await_args_list[0]
        assert "$filter" not in first_call.args[1]

    def test_without_context(self, schema_service, tmp_path):
        schema_service.get_solution_context.return_value = None
        output = tmp_path / "s.json"

        text = run(export_solution_schema(schema_service, ExportSchemaParams(output_path=str(output))))

        assert "solutionUniqueName" not in json.loads(output.read_text())["metadata"]
        assert "**Solution Context:**" not in text


SCHEMA = {
    "tables": [
        {"logicalName": "test_customer", "columns": [
            {"logicalName": "test_customerid", "attributeType": "Uniqueidentifier", "isPrimaryId": True,
             "displayName": "Customer"},
            {"logicalName": "test_name", "attributeType": "String", "displayName": "Name \"main\""},
        ]},
        {"logicalName": "test_order", "columns": [
            {"logicalName": "test_orderid", "attributeType": "Uniqueidentifier", "isPrimaryId": True},
            {"logicalName": "test_customerid", "attributeType": "Lookup", "displayName": "Customer"},
        ]},
    ],
    "relationships": [
        {"schemaName": "test_customer_order", "relationshipType": "OneToMany",
         "referencedEntity": "test_customer", "referencingEntity": "test_order",
         "referencingAttribute": "test_customerid"},
    ],
}


class TestMermaid:
    """Rendering and the generate_mermaid_diagram tool."""

    def test_render(self):
        diagram = render_mermaid_diagram(SCHEMA["tables"], SCHEMA["relationships"])

        lines = diagram.splitlines()
        assert lines[0] == "erDiagram"
        assert "    test_customer {" in lines
        assert '        Uniqueidentifier test_customerid PK "Customer"' in lines
        assert "        String test_name \"Name 'main'\"" in lines
        assert '        Lookup test_customerid FK "Customer"' in lines
        assert '    test_customer ||--o{ test_order : "test_customer_order"' in lines

    def test_render_many_to_many_without_columns(self):
        rel = {"schemaName": "a_b", "relationshipType": "ManyToMany",
               "entity1LogicalName": "a", "entity2LogicalName": "b"}

        diagram = render_mermaid_diagram([{"logicalName": "a", "columns": []}], [rel], include_columns=False)

        assert diagram == 'erDiagram\n    a\n    a }o--o{ b : "a_b"\n'

    def test_generate_single_file(self, tmp_path):
        schema_path = tmp_path / "schema.json"
        schema_path.write_text(json.dumps(SCHEMA))
        output = tmp_path / "diagram.mmd"

        text = run(generate_mermaid_diagram(None, MermaidDiagramParams(
            schema_path=str(schema_path), output_path=str(output))))

        assert output.read_text().startswith("erDiagram\n")
        assert "Mermaid diagram generated successfully!" in text
        assert "**Diagrams:** 1" in text
        assert "```mermaid\nerDiagram" in text

    def test_generate_splits_into_parts(self, tmp_path):
        schema_path = tmp_path / "schema.json"
        schema_path.write_text(json.dumps(SCHEMA))
        output = tmp_path / "diagram.mmd"

        text = run(generate_mermaid_diagram(None, MermaidDiagramParams(
            schema_path=str(schema_path), output_path=str(output), max_tables_per_diagram=1)))

        part1 = (tmp_path / "diagram-part1.mmd").read_text()
        part2 = (tmp_path / "diagram-part2.mmd").read_text()
        assert not output.exists()
        assert "test_customer {" in part1
        assert "||--o{" not in part1
        assert '    test_customer ||--o{ test_order : "test_customer_order"' in part2
        assert "**Diagrams:** 2" in text

    def test_generate_without_relationships(self, tmp_path):
        schema_path = tmp_path / "schema.json"
        schema_path.write_text(json.dumps(SCHEMA))

        text = run(generate_mermaid_diagram(None, MermaidDiagramParams(
            schema_path=str(schema_path), output_path=str(tmp_path / "d.mmd"), include_relationships=False)))

        assert "**Relationships:** 0" in text
        assert "||--o{" not in (tmp_path / "d.mmd").read_text()

    def test_missing_schema_file(self, tmp_path):
        params = MermaidDiagramParams(schema_path=str(tmp_path / "nope.json"))

        with pytest.raises(DataverseError, match="Schema file not found"):
            run(generate_mermaid_diagram(None, params))

    def test_invalid_schema_file(self, tmp_path):
        schema_path = tmp_path / "bad.json"
        schema_path.write_text("{oops")

        with pytest.raises(DataverseError, match="not valid JSON"):
            run(generate_mermaid_diagram(None, MermaidDiagramParams(schema_path=str(schema_path))))
