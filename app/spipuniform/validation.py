from __future__ import annotations

from typing import Any, TypeVar

from flask import request
from pydantic import BaseModel, ConfigDict, ValidationError

from app.spipuniform.errors import ValidationFailed

M = TypeVar("M", bound=BaseModel)


class Payload(BaseModel):
    """Base for request bodies: strips strings, ignores unknown keys."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


def _field_path(loc: tuple[Any, ...]) -> str:
    return ".".join(str(p) for p in loc) or "__root__"


def errors_to_details(e: ValidationError) -> dict[str, str]:
    details: dict[str, str] = {}
    for err in e.errors():
        path = _field_path(tuple(err.get("loc") or ()))
        msg = str(err.get("msg") or "Invalid value")
        # pydantic prefixes custom ValueError messages.
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        details.setdefault(path, msg)
    return details


def parse_payload(model: type[M], data: Any) -> M:
    try:
        return model.model_validate(data if data is not None else {})
    except ValidationError as e:
        raise ValidationFailed("Validation failed", details=errors_to_details(e)) from e


def json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationFailed("Request body must be a JSON object.")
    return data


def parse_json(model: type[M]) -> M:
    return parse_payload(model, json_body())
