"""Schema Package - JSON Schema Loading for Webmention Extensions.

This package provides centralized loading and access to the JSON schemas
that validate webmention extension payloads.

Schemas are stored as JSON files next to this module, loaded once at
import time and exposed as module-level constants.

Available Schemas:
    EMPTY_PAYLOAD_SCHEMA: JSON Schema (Draft 7) for extensions whose payload
        carries no data. Accepts ``null`` or ``{}``. Used by the built-in
        like, comment and mention extensions.

Usage:
    from jsonschema import Draft7Validator
    from schema import EMPTY_PAYLOAD_SCHEMA
    Draft7Validator(EMPTY_PAYLOAD_SCHEMA).is_valid(payload)

Error Handling:
    If a schema file is missing or contains invalid JSON, the import fails
    with a message pointing to the expected file location.
"""
from .schema import EMPTY_PAYLOAD_SCHEMA, get_empty_payload_schema

__all__ = ["EMPTY_PAYLOAD_SCHEMA", "get_empty_payload_schema"]
