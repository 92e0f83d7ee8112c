from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ToolParams(BaseModel):
    """Base for tool argument models.

    Fields are snake_case in Python and camelCase on the wire, which is the
    naming MCP clients see in each tool's input schema.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EntityInfo(BaseModel):
    """Schema details used to shape generated requests for one table."""

    logical_name: str = ""
    entity_set_name: str = ""
    primary_id_attribute: str = ""
    primary_name_attribute: str | None = None
    attributes: list[dict] = []
    lookup_nav_map: dict[str, str] = {}
