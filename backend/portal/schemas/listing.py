"""Pydantic schemas for internship listings."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

ApplicationMethod = Literal["external", "email"]


class ListingBase(BaseModel):
    """Fields an admin fills in on the listing form."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=200)
    company: str = Field(min_length=1, max_length=200)
    location: str = Field(min_length=1, max_length=200)
    duration: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=10, max_length=5000)
    major: list[str] = Field(min_length=1)
    industry: list[str] = Field(min_length=1)
    application_method: ApplicationMethod
    application_value: str = Field(min_length=1)
    image_url: str | None = None


class ListingCreate(ListingBase):
    listing_duration: int | None = Field(default=None, ge=1, le=24)


class ListingUpdate(BaseModel):
    """Partial update: only fields that are present are written."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str | None = Field(default=None, min_length=1, max_length=200)
    company: str | None = Field(default=None, min_length=1, max_length=200)
    location: str | None = Field(default=None, min_length=1, max_length=200)
    duration: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, min_length=10, max_length=5000)
    major: list[str] | None = Field(default=None, min_length=1)
    industry: list[str] | None = Field(default=None, min_length=1)
    application_method: ApplicationMethod | None = None
    application_value: str | None = Field(default=None, min_length=1)
    image_url: str | None = None
    listing_duration: int | None = Field(default=None, ge=1, le=24)


class ListingRead(BaseModel):
    """Full listing output."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    company: str
    location: str
    duration: str
    description: str
    major: list[str]
    industry: list[str]
    application_method: str
    application_value: str
    image_url: str | None = None
    expires_at: datetime | None = None
    listing_duration: int | None = None
    views: int = 0
    apply_clicks: int = 0
    created_at: datetime
    deleted_at: datetime | None = None


class ListingCard(ListingRead):
    """Listing as shown to a signed-in student, with their own flags."""

    is_starred: bool = False
    is_viewed: bool = False
    total_applications: int = 0


class ListingBrief(BaseModel):
    """Title/company pair embedded in activity rows."""

    title: str
    company: str


class ListingFilters(BaseModel):
    """Student dashboard search and filter state."""

    search: str | None = None
    majors: list[str] = Field(default_factory=list)
    industries: list[str] = Field(default_factory=list)
    time_posted: Literal["all", "24h", "7d", "30d"] = "all"
    location: str | None = None
    tab: Literal["all", "starred", "viewed"] = "all"


class InteractionRead(BaseModel):
    internship_id: UUID
    is_starred: bool = False
    is_viewed: bool = False


class ApplyRequest(BaseModel):
    method: Literal["external_link", "copied_email"]
