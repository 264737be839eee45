"""
Document Flow
Blueprint helpers shared by the HTTP adapter.

Binary payloads travel as base64 strings in JSON; projections never echo
the blob back, only ``has_<field>`` / ``<field>_size``.
"""

import base64
import binascii
from datetime import datetime

from flask import request

from docflow.core.exceptions import ValidationError


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def decode_base64(data: dict, field: str) -> bytes | None:
    """Decode an optional base64 field; ValidationError when malformed."""
    value = data.get(field)
    if value in (None, ""):
        return None
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, TypeError, ValueError) as e:
        raise ValidationError(f"{field} must be base64 encoded", details={field: "invalid"}) from e


def require_int(data: dict, field: str) -> int:
    value = data.get(field)
    if value is None or value == "":
        raise ValidationError(f"{field} is required", details={field: "required"})
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{field} must be an integer", details={field: "invalid"}) from e


def optional_int(data: dict, field: str) -> int | None:
    if data.get(field) in (None, ""):
        return None
    return require_int(data, field)


def project(row: dict | None) -> dict | None:
    """JSON-safe projection of a store row."""
    if row is None:
        return None
    out = {}
    for key, value in row.items():
        if isinstance(value, (bytes, bytearray, memoryview)):
            continue
        if key.endswith("_size"):
            out[f"has_{key[:-5]}"] = bool(value)
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, dict):
            value = project(value)
        out[key] = value
    return out
