"""
Foreign-key reference parsing.

Request payloads point at other records in several shapes: a bare id string,
``{"_ref": "<id>"}`` or ``{"_id": "<id>"}``. Services resolve the shape once,
at the boundary, and only ever pass plain id strings further in.
"""
from dataclasses import dataclass
from typing import Any, Optional, Union


@dataclass(frozen=True)
class IdRef:
    id: str


@dataclass(frozen=True)
class RefObject:
    id: str


@dataclass(frozen=True)
class IdObject:
    id: str


Reference = Union[IdRef, RefObject, IdObject]


def parse_reference(value: Any) -> Optional[Reference]:
    if not value:
        return None
    if isinstance(value, str):
        return IdRef(value)
    if isinstance(value, dict):
        if value.get("_ref"):
            return RefObject(str(value["_ref"]))
        if value.get("_id"):
            return IdObject(str(value["_id"]))
    return None


def resolve_ref(value: Any) -> Optional[str]:
    """Return the referenced id, or None when no usable reference was given."""
    reference = parse_reference(value)
    return reference.id if reference is not None else None
