"""Helpers shared by the metadata (schema) tools."""
import re

EMPTY_GUID = "00000000-0000-0000-0000-000000000000"
DEFAULT_LANGUAGE_CODE = 1033


def localized_label(text, language_code=DEFAULT_LANGUAGE_CODE):
    label = {
        "Label": text,
        "LanguageCode": language_code,
        "IsManaged": False,
        "MetadataId": EMPTY_GUID,
    }
    return {"LocalizedLabels": [label], "UserLocalizedLabel": dict(label)}


def label_text(metadata, key, default=None):
    """Read ``metadata[key].UserLocalizedLabel.Label`` if present."""
    label = (metadata.get(key) or {}).get("UserLocalizedLabel") or {}
    return label.get("Label") or default


def managed_property(value):
    return {"Value": value}


def generate_logical_name(display_name, prefix):
    clean = re.sub(r"\s+", "", re.sub(r"[^a-z0-9\s]", "", display_name.lower()))
    return f"{prefix}_{clean}"


def generate_schema_name(display_name, prefix):
    clean = re.sub(r"[^a-zA-Z0-9]", "", re.sub(r"\s+", "", display_name))
    return f"{prefix}_{clean}"


def pluralize(display_name):
    name = display_name.strip()
    if name.endswith(("s", "x", "z", "ch", "sh")):
        return f"{name}es"
    if name.endswith("y") and len(name) > 1 and name[-2] not in "aeiou":
        return f"{name[:-1]}ies"
    return f"{name}s"


def required_level(level):
    return {
        "Value": level,
        "CanBeChanged": True,
        "ManagedPropertyLogicalName": "canmodifyrequirementlevelsettings",
    }


def odata_filter(*clauses):
    """Join the non-empty clauses with ``and``; None when nothing is left."""
    clauses = [c for c in clauses if c]
    return " and ".join(clauses) if clauses else None
