"""JSON Schema documents for the tracker dataset.

Used to check the shape of imported files, of the remote document and of
GitHub API responses before anything is applied.
"""

import logging
from typing import Any

from jsonschema import Draft7Validator

logger = logging.getLogger(__name__)

_STRING_LIST = {"type": "array", "items": {"type": "string"}}
_NULLABLE_STRING = {"type": ["string", "null"]}

CATEGORY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["id", "name"],
    "properties": {
        "id": {"type": "string"},
        "name": {"type": "string"},
        # Optional so data written before sentiments existed still imports
        "sentiment": {"enum": ["positive", "neutral", "limit"]},
    },
}

ITEM_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["id", "name", "categories"],
    "properties": {
        "id": {"type": "string"},
        "name": {"type": "string"},
        "categories": _STRING_LIST,
    },
}

ENTRY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["id", "type", "itemId", "date"],
    "properties": {
        "id": {"type": "string"},
        "type": {"enum": ["activity", "food"]},
        "itemId": {"type": "string"},
        "date": {"type": "string"},
        "time": _NULLABLE_STRING,
        "notes": _NULLABLE_STRING,
        "categoryOverrides": {"type": ["array", "null"], "items": {"type": "string"}},
    },
}

DASHBOARD_CARD_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["categoryId", "baseline", "comparison"],
    "properties": {
        "categoryId": {"type": "string"},
        "baseline": {"const": "rolling_4_week_avg"},
        "comparison": {"const": "last_week"},
    },
}

DATASET_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": [
        "activityItems",
        "foodItems",
        "activityCategories",
        "foodCategories",
        "entries",
    ],
    "properties": {
        "activityItems": {"type": "array", "items": ITEM_SCHEMA},
        "foodItems": {"type": "array", "items": ITEM_SCHEMA},
        "activityCategories": {"type": "array", "items": CATEGORY_SCHEMA},
        "foodCategories": {"type": "array", "items": CATEGORY_SCHEMA},
        "entries": {"type": "array", "items": ENTRY_SCHEMA},
        "dashboardCards": {"type": "array", "items": DASHBOARD_CARD_SCHEMA},
        "dashboardInitialized": {"type": "boolean"},
        "favoriteItems": _STRING_LIST,
        "version": {"type": "integer", "minimum": 1},
    },
}

GIST_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["id", "files"],
    "properties": {
        "id": {"type": "string"},
        "files": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "properties": {
                    "filename": {"type": "string"},
                    "content": {"type": ["string", "null"]},
                    "truncated": {"type": "boolean"},
                },
            },
        },
        "updated_at": {"type": "string"},
    },
}

_ID_FIELDS = {
    "activityItems": "id",
    "foodItems": "id",
    "activityCategories": "id",
    "foodCategories": "id",
    "entries": "id",
    "dashboardCards": "categoryId",
}


def validate_document(
    data: Any, schema: dict[str, Any], label: str = "document"
) -> tuple[bool, str | None]:
    """Validate a decoded JSON value against a schema.

    Args:
        data: Decoded JSON value.
        schema: JSON Schema dict describing the expected structure.
        label: Name used in the error message.

    Returns:
        Tuple of (valid, error_message).
    """
    validator = Draft7Validator(schema)
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.path))
    if not errors:
        return (True, None)

    error_msgs = []
    for error in errors[:10]:
        path = ".".join(str(p) for p in error.path) if error.path else "root"
        error_msgs.append(f"  - {path}: {error.message}")
    if len(errors) > 10:
        error_msgs.append(f"  ... and {len(errors) - 10} more")

    return (False, f"Invalid {label}:\n" + "\n".join(error_msgs))


def validate_dataset(data: Any, label: str = "dataset") -> tuple[bool, str | None]:
    """Validate a dataset document, including id uniqueness per collection."""
    valid, error = validate_document(data, DATASET_SCHEMA, label)
    if not valid:
        return (valid, error)

    for key, id_field in _ID_FIELDS.items():
        seen: set[str] = set()
        for record in data.get(key) or []:
            record_id = record[id_field]
            if record_id in seen:
                return (False, f"Invalid {label}: duplicate id {record_id!r} in {key}")
            seen.add(record_id)

    return (True, None)
