"""JSON schema validators for payloads received from the backend."""

import json
import os

import jsonschema

SCHEMA_DIR = os.path.join(os.path.dirname(__file__), "schemas")


def load_validator(name: str) -> jsonschema.Draft202012Validator:
    """Load `schemas/<name>` and return a validator for it."""
    with open(os.path.join(SCHEMA_DIR, name), "r", encoding="utf-8") as f:
        schema = json.load(f)
    return jsonschema.Draft202012Validator(schema)
