"""Pydantic schemas for the activity log."""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from portal.schemas.listing import ListingBrief

EventKind = Literal["view", "apply"]
ApplyMethod = Literal["external_link", "copied_email"]


class ActivityEventCreate(BaseModel):
    event: EventKind
    internship_id: UUID
    user_id: UUID | None = None
    method: ApplyMethod | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ActivityEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    created_at: datetime
    event: str
    internship_id: UUID
    user_id: UUID | None = None
    method: str | None = None
    metadata: dict[str, Any] | None = None


class ActivityEntry(BaseModel):
    """Event joined with its listing, for activity feeds."""

    id: UUID
    created_at: datetime
    event: str
    method: str | None = None
    user_id: UUID | None = None
    internship: ListingBrief | None = None


class ApplicationLogEntry(ActivityEntry):
    user_name: str | None = None


class ApplicationLogFilters(BaseModel):
    job_title: str | None = None
    username: str | None = None
    start_date: str | None = None  # YYYY-MM-DD, reporting timezone
    end_date: str | None = None


class ApplicationLogs(BaseModel):
    applications: list[ApplicationLogEntry] = Field(default_factory=list)
    total_applies: int = 0
