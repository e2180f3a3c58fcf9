"""The schema validation contract."""

from __future__ import annotations

import inspect
import typing as t
from collections.abc import Mapping

from .errors import ValidationError

if t.TYPE_CHECKING:
    from .types import Schema


def _result_field(result: t.Any, name: str) -> t.Any:
    if isinstance(result, Mapping):
        return result.get(name)
    return getattr(result, name, None)


async def validate(schema: Schema, data: t.Any) -> t.Any:
    """Run ``data`` through ``schema.validate``.

    The result may be a mapping or an object, exposing either ``value`` or
    a non-empty ``issues`` sequence.

    Raises:
        ValidationError: If the schema reported issues.

    """
    result = schema.validate(data)
    if inspect.isawaitable(result):
        result = await result

    issues = _result_field(result, "issues")
    if issues:
        raise ValidationError(issues, data)
    return _result_field(result, "value")
