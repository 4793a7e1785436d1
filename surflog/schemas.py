from __future__ import annotations

import time
from datetime import datetime
from enum import Enum
from typing import Annotated
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

Rating = Annotated[int, Field(ge=1, le=5)]


class TideState(str, Enum):
    LOW = "Low"
    MID = "Mid"
    HIGH = "High"
    RISING = "Rising"
    FALLING = "Falling"


class EquipmentType(str, Enum):
    LONGBOARD = "Longboard"
    MID_LENGTH = "Mid-length"
    FISH = "Fish"
    SHORTBOARD = "Shortboard"


def _normalise_rating(value: object) -> object:
    # 0 is how forms say "unrated"
    if value in (0, "0", ""):
        return None
    return value


def _blank_to_none(value: object) -> object:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class Entry(BaseModel):
    id: str = Field(min_length=1)
    location: str = Field(min_length=1)
    timestamp: datetime
    tide_state: TideState
    equipment_type: EquipmentType | None = None
    equipment_detail: str | None = None
    conditions_text: str = ""
    notes_text: str = ""
    rating: Rating | None = None
    created_at: int = Field(ge=0)

    @field_validator("location", "conditions_text", "notes_text", mode="before")
    @classmethod
    def _strip_text(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("equipment_detail", mode="before")
    @classmethod
    def _strip_detail(cls, value: object) -> object:
        value = _blank_to_none(value)
        return value.strip() if isinstance(value, str) else value

    @field_validator("rating", mode="before")
    @classmethod
    def _unrated(cls, value: object) -> object:
        return _normalise_rating(value)

    @field_validator("timestamp")
    @classmethod
    def _civil_time(cls, value: datetime) -> datetime:
        # Local civil time; keep the wall-clock reading, drop any offset.
        return value.replace(tzinfo=None)


_REQUIRED_FIELDS = frozenset(
    {"location", "timestamp", "tide_state", "conditions_text", "notes_text"}
)


class EntryUpdate(BaseModel):
    """Partial update for an entry. ``id`` and ``created_at`` are fixed at creation."""

    location: str | None = Field(default=None, min_length=1)
    timestamp: datetime | None = None
    tide_state: TideState | None = None
    equipment_type: EquipmentType | None = None
    equipment_detail: str | None = None
    conditions_text: str | None = None
    notes_text: str | None = None
    rating: Rating | None = None

    @field_validator("location", "conditions_text", "notes_text", mode="before")
    @classmethod
    def _strip_text(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("rating", mode="before")
    @classmethod
    def _unrated(cls, value: object) -> object:
        return _normalise_rating(value)

    @field_validator("equipment_detail", mode="before")
    @classmethod
    def _blank_detail(cls, value: object) -> object:
        value = _blank_to_none(value)
        return value.strip() if isinstance(value, str) else value

    @field_validator("timestamp")
    @classmethod
    def _civil_time(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return value.replace(tzinfo=None)

    def fields(self) -> dict[str, object]:
        """Fields explicitly present in the payload, ready for a merge-write.

        A null for a field every entry must carry is ignored rather than written.
        """
        values = self.model_dump(include=self.model_fields_set)
        return {
            key: value
            for key, value in values.items()
            if value is not None or key not in _REQUIRED_FIELDS
        }


class Profile(BaseModel):
    display_name: str = ""
    avatar_index: int = Field(default=0, ge=0)


class IdentityState(BaseModel):
    identity: str | None = None
    display_name: str | None = None
    photo_url: str | None = None
    loading: bool = False


class SnapshotEvent(BaseModel):
    entries: list[Entry]


class ClearResult(BaseModel):
    deleted: int


_last_created_at = 0


def next_created_at() -> int:
    """Return a millisecond stamp strictly greater than any previously issued."""
    global _last_created_at
    now = int(time.time() * 1000)
    _last_created_at = max(now, _last_created_at + 1)
    return _last_created_at


def new_entry(**fields: object) -> Entry:
    return Entry(id=str(uuid4()), created_at=next_created_at(), **fields)


def entry_update_from(entry: Entry) -> EntryUpdate:
    """Build a merge payload carrying every mutable field of ``entry``."""
    values = entry.model_dump(exclude={"id", "created_at"})
    return EntryUpdate.model_validate(values)
