"""JSON Schemas for the documents issuetree writes to disk.

The snapshot schema pins the envelope and the per-node keys the loader
relies on; nested values stay open enough for additive evolution.
"""

from __future__ import annotations

from typing import Any

import jsonschema

SCHEMA_KEY = "$schema"
SCHEMA_URL = "http://json-schema.org/draft-07/schema#"
SNAPSHOT_VERSION = 1

_NODE: dict[str, Any] = {
    "type": "object",
    "required": ["title", "identity", "close_reason", "labels", "comments", "children"],
    "properties": {
        "title": {"type": "string"},
        "identity": {"type": ["string", "null"]},
        "close_reason": {"enum": [None, "completed", "not_planned", "duplicate"]},
        "owned": {"type": "boolean"},
        "author": {"type": ["string", "null"]},
        "labels": {"type": "array", "items": {"type": "string"}},
        "comments": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["id", "text"],
                "properties": {
                    "id": {"type": ["string", "integer", "null"]},
                    "author": {"type": ["string", "null"]},
                    "text": {"type": "string"},
                },
            },
        },
        "blockers": {
            "type": "object",
            "properties": {
                "items": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["ordinal", "blocking", "done", "description"],
                        "properties": {
                            "ordinal": {"type": "string", "pattern": r"^\d+(\.[a-z])?$"},
                            "blocking": {"type": "boolean"},
                            "done": {"type": "boolean"},
                            "description": {"type": "string"},
                            "nested": {"type": "array", "items": {"type": "string"}},
                            "prerequisites": {"type": "array", "items": {"type": "string"}},
                        },
                    },
                },
                "warnings": {"type": "array", "items": {"type": "string"}},
            },
        },
        "last_contents_change": {"type": ["string", "null"]},
        "warning": {"type": ["string", "null"]},
        "children": {"type": "array", "items": {"$ref": "#/definitions/node"}},
    },
}


def get_schemas() -> dict[str, Any]:
    """Return a mapping of schema name -> JSON Schema dictionary.

    Keys:
        snapshot: Schema describing a persisted sync snapshot document.
    """
    snapshot_schema: dict[str, Any] = {
        SCHEMA_KEY: SCHEMA_URL,
        "$comment": f"issuetree snapshot schema v{SNAPSHOT_VERSION}",
        "title": "SyncSnapshot",
        "type": "object",
        "required": ["version", "generated_at", "root", "tree", "signature"],
        "properties": {
            "version": {"type": "integer", "const": SNAPSHOT_VERSION},
            "generated_at": {"type": "string"},
            "root": {"type": "string"},
            "tree": {"$ref": "#/definitions/node"},
            "detached": {"type": "array", "items": {"$ref": "#/definitions/node"}},
            "signature": {"type": "string", "pattern": "^[0-9a-f]{64}$"},
        },
        "definitions": {"node": _NODE},
    }
    return {"snapshot": snapshot_schema}


def validate_document(name: str, document: Any) -> list[str]:
    """Validate ``document`` against schema ``name``; returns error messages (empty = valid)."""
    schema = get_schemas()[name]
    validator = jsonschema.Draft7Validator(schema)
    return [
        f"{'/'.join(str(p) for p in err.absolute_path) or '<root>'}: {err.message}"
        for err in sorted(validator.iter_errors(document), key=lambda e: list(e.absolute_path))
    ]


__all__ = ["SNAPSHOT_VERSION", "get_schemas", "validate_document"]
