"""Shared helpers for schema parsing."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, TypeVar

import pydantic
from pydantic import BaseModel

from ..errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_input(model: type[ModelT], data: Any) -> ModelT:
    """Validate caller input, re-raising pydantic errors as ValidationError."""
    if isinstance(data, model):
        data = data.model_dump(exclude_unset=True)
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        loc = ".".join(str(part) for part in first.get("loc", ()))
        message = first.get("msg", "invalid value")
        raise ValidationError(f"{loc}: {message}" if loc else message, field=loc or None) from exc
