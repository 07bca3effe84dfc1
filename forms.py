"""Helpers for multipart forms whose structured fields arrive as JSON strings."""
import json
from typing import Any, Optional

from errors import ValidationError


def json_field(raw: Optional[str], field: str, expect: type = dict) -> Optional[Any]:
    if raw is None or raw == "":
        return None
    try:
        value = json.loads(raw)
    except ValueError:
        raise ValidationError(errors=[{"field": field, "message": "Must be valid JSON"}])
    if not isinstance(value, expect):
        kind = "object" if expect is dict else "array"
        raise ValidationError(errors=[{"field": field, "message": f"Must be a JSON {kind}"}])
    return value
