"""Request validation that returns a result instead of raising.

``validate(CreateLot, body)`` gives either ``Ok(model)`` or ``Err(violations)``
where every violation is a ``{"field", "message"}`` dict. The handler decides
what to do with an ``Err``; most of them call ``unwrap_or_fail``.
"""
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Sequence, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from errors import ValidationFailure

M = TypeVar("M", bound=BaseModel)


@dataclass(frozen=True)
class Ok(Generic[M]):
    value: M


@dataclass(frozen=True)
class Err:
    violations: List[Dict[str, str]]


Result = Union[Ok[M], Err]


def violations_from_errors(errors: Sequence[Dict[str, Any]]) -> List[Dict[str, str]]:
    out = []
    for e in errors:
        # request-level errors are prefixed with body/query
        loc = [str(p) for p in e.get("loc", ()) if p not in ("body", "query")]
        msg = e.get("msg", "Invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        out.append({"field": ".".join(loc) or "body", "message": msg})
    return out


def validate(model: Type[M], data: Any) -> Result:
    if not isinstance(data, dict):
        return Err([{"field": "body", "message": "Expected a JSON object"}])
    try:
        return Ok(model.model_validate(data))
    except ValidationError as exc:
        return Err(violations_from_errors(exc.errors()))


def unwrap_or_fail(result: Result) -> M:
    if isinstance(result, Err):
        raise ValidationFailure(result.violations)
    return result.value
