"""DTOs shared by more than one router."""

from __future__ import annotations

from fastapi import Query
from pydantic import BaseModel, Field

from backend.domain.models import SlotKey, resolve_slot_key
from backend.utils.config import get_settings


settings = get_settings()


class SlotPayload(BaseModel):
    space_id: str = Field(min_length=1)
    date_start: str = Field(pattern=settings.date_regex)
    date_end: str = Field(pattern=settings.date_regex)
    time_start: str = Field(pattern=settings.time_regex)
    time_end: str = Field(pattern=settings.time_regex)

    def to_slot_key(self) -> SlotKey:
        return resolve_slot_key(
            self.space_id,
            self.date_start,
            self.date_end,
            self.time_start,
            self.time_end,
        )

    @classmethod
    def from_slot_key(cls, slot_key: SlotKey) -> "SlotPayload":
        return cls(**slot_key.to_dict())


def slot_from_query(
    space_id: str = Query(min_length=1),
    date_start: str = Query(pattern=settings.date_regex),
    date_end: str = Query(pattern=settings.date_regex),
    time_start: str = Query(pattern=settings.time_regex),
    time_end: str = Query(pattern=settings.time_regex),
) -> SlotKey:
    return resolve_slot_key(space_id, date_start, date_end, time_start, time_end)
