"""Internship listing model: the posting students browse and apply to."""

from sqlalchemy import Column, String, Text, Integer, Uuid, Index

from portal.models.base import Base, JSONType, TimestampMixin, UTCDateTime, UUIDMixin


class Listing(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "internships"

    # Core
    title = Column(String(200), nullable=False)
    company = Column(String(200), nullable=False)
    location = Column(String(200), nullable=False)
    duration = Column(String(100), nullable=False)  # free text, e.g. "3 months"
    description = Column(Text, nullable=False)
    major = Column(JSONType, nullable=False, default=list)
    industry = Column(JSONType, nullable=False, default=list)

    # Application
    application_method = Column(String(20), nullable=False)  # external, email
    application_value = Column(Text, nullable=False)  # URL or email address
    image_url = Column(Text)

    # Lifecycle
    expires_at = Column(UTCDateTime)
    listing_duration = Column(Integer)  # months
    created_by = Column(Uuid(as_uuid=True))
    deleted_at = Column(UTCDateTime)  # soft delete; NULL = active

    # Denormalized counters, only ever changed by atomic increments
    views = Column(Integer, default=0, server_default="0", nullable=False)
    apply_clicks = Column(Integer, default=0, server_default="0", nullable=False)

    __table_args__ = (
        Index("idx_internships_active_created", "deleted_at", "created_at"),
        Index("idx_internships_location", "location"),
    )
