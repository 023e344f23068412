"""Shared base for records crossing the backend boundary."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from pydantic import BaseModel, model_validator


class Record(BaseModel):
    """
    Immutable record read from the backend.

    Ids travel as strings on the client side (placeholders are not UUIDs), and
    datetimes coming back from storage without tzinfo are treated as UTC.
    """

    model_config = {"from_attributes": True, "frozen": True}

    @model_validator(mode="before")
    @classmethod
    def _normalize_values(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            data = {
                name: getattr(data, name)
                for name in cls.model_fields
                if hasattr(data, name)
            }
        normalized = {}
        for key, value in data.items():
            if isinstance(value, UUID):
                value = str(value)
            elif isinstance(value, datetime) and value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            normalized[key] = value
        return normalized


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
