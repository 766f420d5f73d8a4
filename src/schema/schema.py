"""
Centralized JSON Schema Loading Module.

This module loads the extension payload schema files from disk and exposes
them as module-level constants.

Design Principles:
    1. Load Once: Schemas are loaded at module import time, not on every use
    2. Fail Fast: Missing or invalid schemas cause immediate import failure
    3. Single Source: All schema access goes through this module

File Location:
    Schemas live in the same directory as this module (src/schema/). The
    path is resolved from __file__ so loading works from any working
    directory.

Versioning:
    An extension definition URI is versioned (".../like/1.0/"). A schema
    file backs one or more definition versions and must never be changed
    in a way that rejects payloads a previous version accepted; a breaking
    change gets a new definition URI and a new schema file instead.
"""
import json
from pathlib import Path
from typing import Dict, Any

SCHEMA_DIR = Path(__file__).parent


def _load_schema(schema_filename: str) -> Dict[str, Any]:
    """
    Load a JSON schema file from the schema directory.

    Args:
        schema_filename: Name of the JSON schema file (e.g., "empty_payload_schema.json")

    Returns:
        Parsed JSON schema as a dictionary, ready for use with jsonschema

    Raises:
        FileNotFoundError: If the schema file doesn't exist at the expected location.
        json.JSONDecodeError: If the schema file contains invalid JSON. The
            message names the file and the position of the syntax error.

    Example:
        >>> schema = _load_schema("empty_payload_schema.json")
        >>> schema["$schema"]
        'http://json-schema.org/draft-07/schema#'
    """
    schema_path = SCHEMA_DIR / schema_filename

    if not schema_path.exists():
        raise FileNotFoundError(
            f"Schema file not found: {schema_path}. "
            f"Expected location: {SCHEMA_DIR}"
        )

    try:
        with open(schema_path, "r") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise json.JSONDecodeError(
            f"Invalid JSON in schema file {schema_filename}: {e.msg}",
            e.doc,
            e.pos
        ) from e


# Payload of the like, comment and mention extensions: null or {}
EMPTY_PAYLOAD_SCHEMA = _load_schema("empty_payload_schema.json")


def get_empty_payload_schema() -> Dict[str, Any]:
    """
    Get the empty extension payload JSON schema.

    Returns the same object as the EMPTY_PAYLOAD_SCHEMA constant; useful
    for dynamic schema selection and for mocking in tests.

    Example:
        >>> schema = get_empty_payload_schema()
        >>> [option["type"] for option in schema["oneOf"]]
        ['null', 'object']
    """
    return EMPTY_PAYLOAD_SCHEMA
