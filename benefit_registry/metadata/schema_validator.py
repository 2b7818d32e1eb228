"""Advisory validation of benefit metadata documents.

Consumers use this to check a fetched document before displaying it. The
registry itself never calls it; a non-conforming document can still be
attached.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

import yaml

from benefit_registry.metadata.schema import get_schema


def load_metadata(path: str | Path) -> Any:
    """Read a metadata document from a ``.json`` or ``.yaml`` file."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix in (".yaml", ".yml"):
        return yaml.safe_load(text)
    return json.loads(text)


def validate_metadata(document: Any) -> list[str]:
    """Validate a parsed metadata document against the JSON Schema.

    Returns:
        List of issue messages. Empty list means the document conforms.
    """
    issues: list[str] = []
    _validate_node(document, get_schema(), "", issues)
    return issues


def _validate_node(data: Any, schema: dict, path: str, issues: list[str]) -> None:
    schema_type = schema.get("type")

    if schema_type and not _type_matches(data, schema_type):
        issues.append(f"{path or '/'}: expected type '{schema_type}', got {type(data).__name__}")
        return

    if "enum" in schema and data not in schema["enum"]:
        issues.append(f"{path or '/'}: value '{data}' not in allowed values {schema['enum']}")

    if schema_type == "string":
        min_len = schema.get("minLength", 0)
        if len(data) < min_len:
            issues.append(f"{path or '/'}: string too short (min {min_len}, got {len(data)})")
        if "pattern" in schema and not re.match(schema["pattern"], data):
            issues.append(f"{path or '/'}: '{data}' does not match pattern '{schema['pattern']}'")

    if schema_type == "object":
        for req in schema.get("required", []):
            if req not in data:
                issues.append(f"{path or '/'}: missing required property '{req}'")
        props = schema.get("properties", {})
        for key, value in data.items():
            if key in props:
                _validate_node(value, props[key], f"{path}.{key}", issues)

    if schema_type == "array":
        items_schema = schema.get("items")
        if items_schema:
            for i, item in enumerate(data):
                _validate_node(item, items_schema, f"{path}[{i}]", issues)


def _type_matches(data: Any, schema_type: str) -> bool:
    type_map = {
        "string": str,
        "integer": int,
        "number": (int, float),
        "boolean": bool,
        "array": list,
        "object": dict,
        "null": type(None),
    }
    expected = type_map.get(schema_type)
    if expected is None:
        return True
    # bool is an int subclass; it is not a number here
    if schema_type in ("integer", "number") and isinstance(data, bool):
        return False
    return isinstance(data, expected)
