"""Activity log model: append-only record of view/apply actions."""

from sqlalchemy import Column, String, ForeignKey, Index, Uuid

from portal.models.base import Base, JSONType, UTCDateTime, UUIDMixin, utcnow


class ActivityEvent(UUIDMixin, Base):
    __tablename__ = "activity_logs"

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    event = Column(String(20), nullable=False)  # view, apply
    internship_id = Column(Uuid(as_uuid=True), ForeignKey("internships.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Uuid(as_uuid=True))  # NULL for anonymous visitors
    method = Column(String(30))  # external_link, copied_email (apply only)
    # "metadata" is reserved on declarative classes
    event_metadata = Column("metadata", JSONType, default=dict)

    __table_args__ = (
        Index("idx_activity_event_created", "event", "created_at"),
        Index("idx_activity_internship", "internship_id"),
        Index("idx_activity_user", "user_id"),
    )
