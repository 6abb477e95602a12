# flowgraph/state.py
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Type

from pydantic import BaseModel, ValidationError

from .errors import InputValidationError

State = Dict[str, Any]


def merge_state(state: Mapping[str, Any], update: Optional[Mapping[str, Any]]) -> State:
    """Shallow merge: each field in `update` wholly replaces the prior value.

    Neither argument is modified; a new dict is returned.
    """
    merged = dict(state)
    if update:
        merged.update(update)
    return merged


def readonly(state: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(state))


def schema_fields(schema: Optional[Type[BaseModel]]) -> Optional[FrozenSet[str]]:
    """Field names a state schema allows, or None when any key is allowed."""
    if schema is None:
        return None
    return frozenset(schema.model_fields)


def unknown_fields(update: Mapping[str, Any], allowed: Optional[FrozenSet[str]]) -> List[str]:
    if allowed is None:
        return []
    return sorted(k for k in update if k not in allowed)


def _format_errors(exc: ValidationError) -> List[Dict[str, Any]]:
    errors = []
    for err in exc.errors():
        errors.append({
            "path": ".".join(str(part) for part in err["loc"]),
            "message": err["msg"],
            "type": err["type"],
            "input": err.get("input"),
        })
    return errors


def validate_input(schema: Type[BaseModel], data: Any, workflow_id: Optional[str] = None) -> State:
    """Validate `data` against `schema` and return the coerced fields, defaults included."""
    try:
        parsed = schema.model_validate(data)
    except ValidationError as e:
        raise InputValidationError(_format_errors(e), workflow_id=workflow_id) from e
    return parsed.model_dump()


def initial_state(data: Mapping[str, Any], allowed: Optional[FrozenSet[str]]) -> State:
    if allowed is None:
        return dict(data)
    return {k: v for k, v in data.items() if k in allowed}
