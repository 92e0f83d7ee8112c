from typing import Literal, Optional

from pydantic import Field

from dataverse_mcp.dataverse_service import odata_literal
from dataverse_mcp.errors import ToolValidationError
from dataverse_mcp.models import ToolParams
from dataverse_mcp.tools.metadata import localized_label, odata_filter, required_level
from dataverse_mcp.tools.registry import tool, to_json

Cascade = Literal["NoCascade", "Cascade", "Active", "UserOwned", "RemoveLink", "Restrict"]

ONE_TO_MANY_SELECT = (
    "SchemaName,RelationshipType,IsCustomRelationship,IsManaged,IsValidForAdvancedFind,"
    "ReferencedEntity,ReferencingEntity,ReferencingAttribute,IsHierarchical"
)
MANY_TO_MANY_SELECT = (
    "SchemaName,RelationshipType,IsCustomRelationship,IsManaged,IsValidForAdvancedFind,"
    "Entity1LogicalName,Entity2LogicalName,IntersectEntityName"
)


class CreateRelationshipParams(ToolParams):
    relationship_type: Literal["OneToMany", "ManyToMany"] = Field(description="Type of relationship to create")
    schema_name: str = Field(description="Schema name for the relationship (e.g., 'new_account_contact')")

    referenced_entity: Optional[str] = Field(
        None, description="Referenced (parent) entity logical name for One-to-Many relationships"
    )
    referencing_entity: Optional[str] = Field(
        None, description="Referencing (child) entity logical name for One-to-Many relationships"
    )
    referencing_attribute_logical_name: Optional[str] = Field(
        None, description="Logical name for the lookup attribute to be created"
    )
    referencing_attribute_display_name: Optional[str] = Field(
        None, description="Display name for the lookup attribute"
    )

    entity1_logical_name: Optional[str] = Field(
        None, alias="entity1LogicalName", description="First entity logical name for Many-to-Many relationships"
    )
    entity2_logical_name: Optional[str] = Field(
        None, alias="entity2LogicalName", description="Second entity logical name for Many-to-Many relationships"
    )
    intersect_entity_name: Optional[str] = Field(
        None, description="Name for the intersect entity (auto-generated if not provided)"
    )

    cascade_assign: Cascade = Field("NoCascade", description="Cascade behavior for assign operations")
    cascade_delete: Cascade = Field("RemoveLink", description="Cascade behavior for delete operations")
    cascade_merge: Cascade = Field("NoCascade", description="Cascade behavior for merge operations")
    cascade_reparent: Cascade = Field("NoCascade", description="Cascade behavior for reparent operations")
    cascade_share: Cascade = Field("NoCascade", description="Cascade behavior for share operations")
    cascade_unshare: Cascade = Field("NoCascade", description="Cascade behavior for unshare operations")

    menu_behavior: Literal["UseCollectionName", "UseLabel", "DoNotDisplay"] = Field(
        "UseCollectionName", description="How the relationship appears in associated menus"
    )
    menu_group: Literal["Details", "Sales", "Service", "Marketing"] = Field(
        "Details", description="Menu group for the relationship"
    )
    menu_label: Optional[str] = Field(None, description="Custom label for the menu (required if menuBehavior is UseLabel)")
    menu_order: Optional[int] = Field(None, description="Order in the menu")

    is_valid_for_advanced_find: bool = Field(True, description="Whether the relationship is valid for Advanced Find")
    is_hierarchical: bool = Field(False, description="Whether this is a hierarchical relationship (One-to-Many only)")


class RelationshipNameParams(ToolParams):
    schema_name: str = Field(description="Schema name of the relationship")


class ListRelationshipsParams(ToolParams):
    entity_logical_name: Optional[str] = Field(None, description="Filter relationships for a specific entity")
    relationship_type: Literal["OneToMany", "ManyToMany", "All"] = Field(
        "All", description="Type of relationships to list"
    )
    custom_only: bool = Field(False, description="Whether to list only custom relationships")
    include_managed: bool = Field(False, description="Whether to include managed relationships")
    filter: Optional[str] = Field(None, description="OData filter expression")


def menu_configuration(params):
    menu = {"Behavior": params.menu_behavior, "Group": params.menu_group}
    if params.menu_label:
        menu["Label"] = localized_label(params.menu_label)
    if params.menu_order is not None:
        menu["Order"] = params.menu_order
    return menu


def one_to_many_definition(params):
    missing = [
        alias for alias, value in (
            ("referencedEntity", params.referenced_entity),
            ("referencingEntity", params.referencing_entity),
            ("referencingAttributeLogicalName", params.referencing_attribute_logical_name),
            ("referencingAttributeDisplayName", params.referencing_attribute_display_name),
        ) if not value
    ]
    if missing:
        raise ToolValidationError(
            "For One-to-Many relationships, referencedEntity, referencingEntity, "
            "referencingAttributeLogicalName, and referencingAttributeDisplayName are required "
            f"(missing: {', '.join(missing)})"
        )

    lookup_name = params.referencing_attribute_logical_name
    return {
        "@odata.type": "Microsoft.Dynamics.CRM.OneToManyRelationshipMetadata",
        "SchemaName": params.schema_name,
        "ReferencedEntity": params.referenced_entity,
        "ReferencingEntity": params.referencing_entity,
        "CascadeConfiguration": {
            "Assign": params.cascade_assign,
            "Delete": params.cascade_delete,
            "Merge": params.cascade_merge,
            "Reparent": params.cascade_reparent,
            "Share": params.cascade_share,
            "Unshare": params.cascade_unshare,
            "RollupView": "NoCascade",
        },
        "AssociatedMenuConfiguration": menu_configuration(params),
        "IsValidForAdvancedFind": params.is_valid_for_advanced_find,
        "IsHierarchical": params.is_hierarchical,
        "IsCustomRelationship": True,
        "Lookup": {
            "@odata.type": "Microsoft.Dynamics.CRM.LookupAttributeMetadata",
            "LogicalName": lookup_name,
            "SchemaName": lookup_name[:1].upper() + lookup_name[1:],
            "DisplayName": localized_label(params.referencing_attribute_display_name),
            "RequiredLevel": required_level("None"),
            "Targets": [params.referenced_entity],
            "IsCustomAttribute": True,
        },
    }


def many_to_many_definition(params):
    if not params.entity1_logical_name or not params.entity2_logical_name:
        raise ToolValidationError(
            "For Many-to-Many relationships, entity1LogicalName and entity2LogicalName are required"
        )
    intersect = params.intersect_entity_name or f"{params.entity1_logical_name}_{params.entity2_logical_name}"
    return {
        "@odata.type": "Microsoft.Dynamics.CRM.ManyToManyRelationshipMetadata",
        "SchemaName": params.schema_name,
        "Entity1LogicalName": params.entity1_logical_name,
        "Entity1AssociatedMenuConfiguration": menu_configuration(params),
        "Entity2LogicalName": params.entity2_logical_name,
        "Entity2AssociatedMenuConfiguration": menu_configuration(params),
        "IntersectEntityName": intersect,
        "IsValidForAdvancedFind": params.is_valid_for_advanced_find,
        "IsCustomRelationship": True,
    }


@tool(
    "create_dataverse_relationship",
    "Creates a One-to-Many relationship (with its lookup column, cascade and menu configuration) "
    "or a Many-to-Many relationship between two Dataverse tables.",
    CreateRelationshipParams,
    error="creating relationship",
)
async def create_relationship(service, params):
    if params.relationship_type == "OneToMany":
        definition = one_to_many_definition(params)
        between = f"'{params.referenced_entity}' and '{params.referencing_entity}'"
        label = "One-to-Many"
    else:
        definition = many_to_many_definition(params)
        between = f"'{params.entity1_logical_name}' and '{params.entity2_logical_name}'"
        label = "Many-to-Many"

    result = await service.post_metadata("RelationshipDefinitions", definition)
    return (
        f"Successfully created {label} relationship '{params.schema_name}' between {between}.\n\n"
        f"Response: {to_json(result)}"
    )


@tool(
    "get_dataverse_relationship",
    "Retrieves the metadata of a relationship by schema name.",
    RelationshipNameParams,
    error="retrieving relationship",
)
async def get_relationship(service, params):
    result = await service.get_metadata(f"RelationshipDefinitions(SchemaName='{params.schema_name}')")
    return f"Relationship information for '{params.schema_name}':\n\n{to_json(result)}"


@tool(
    "delete_dataverse_relationship",
    "Deletes a custom relationship by schema name.",
    RelationshipNameParams,
    error="deleting relationship",
)
async def delete_relationship(service, params):
    await service.delete_metadata(f"RelationshipDefinitions(SchemaName='{params.schema_name}')")
    return f"Successfully deleted relationship '{params.schema_name}'."


def _relationship_summary(relationship):
    base = {
        "schemaName": relationship.get("SchemaName"),
        "isCustom": relationship.get("IsCustomRelationship"),
        "isManaged": relationship.get("IsManaged"),
        "isValidForAdvancedFind": relationship.get("IsValidForAdvancedFind"),
    }
    # The RelationshipType value is unreliable on cast queries; infer from the shape
    if "ReferencedEntity" in relationship and "ReferencingEntity" in relationship:
        base.update({
            "relationshipType": "OneToMany",
            "referencedEntity": relationship.get("ReferencedEntity"),
            "referencingEntity": relationship.get("ReferencingEntity"),
            "referencingAttribute": relationship.get("ReferencingAttribute"),
            "isHierarchical": relationship.get("IsHierarchical"),
        })
    else:
        base.update({
            "relationshipType": "ManyToMany",
            "entity1LogicalName": relationship.get("Entity1LogicalName"),
            "entity2LogicalName": relationship.get("Entity2LogicalName"),
            "intersectEntityName": relationship.get("IntersectEntityName"),
        })
    return base


@tool(
    "list_dataverse_relationships",
    "Lists One-to-Many and/or Many-to-Many relationships, optionally for a single table.",
    ListRelationshipsParams,
    error="listing relationships",
)
async def list_relationships(service, params):
    base_filters = [
        "IsCustomRelationship eq true" if params.custom_only else None,
        "IsManaged eq false" if not params.include_managed else None,
        params.filter,
    ]
    entity = params.entity_logical_name
    literal = odata_literal(entity) if entity else None
    relationships = []

    if params.relationship_type in ("OneToMany", "All"):
        query = {"$select": ONE_TO_MANY_SELECT}
        filter_expr = odata_filter(
            *base_filters,
            f"(ReferencedEntity eq {literal} or ReferencingEntity eq {literal})" if entity else None,
        )
        if filter_expr:
            query["$filter"] = filter_expr
        result = await service.get_metadata(
            "RelationshipDefinitions/Microsoft.Dynamics.CRM.OneToManyRelationshipMetadata", query
        )
        relationships.extend(result.get("value", []))

    if params.relationship_type in ("ManyToMany", "All"):
        query = {"$select": MANY_TO_MANY_SELECT}
        filter_expr = odata_filter(
            *base_filters,
            f"(Entity1LogicalName eq {literal} or Entity2LogicalName eq {literal})" if entity else None,
        )
        if filter_expr:
            query["$filter"] = filter_expr
        result = await service.get_metadata(
            "RelationshipDefinitions/Microsoft.Dynamics.CRM.ManyToManyRelationshipMetadata", query
        )
        relationships.extend(result.get("value", []))

    summaries = [_relationship_summary(r) for r in relationships]
    scope = f" for entity '{entity}'" if entity else ""
    return f"Found {len(summaries)} relationships{scope}:\n\n{to_json(summaries)}"
