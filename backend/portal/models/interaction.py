"""Per-user, per-listing starred/viewed state."""

from sqlalchemy import Boolean, Column, ForeignKey, UniqueConstraint, Uuid

from portal.models.base import Base, TimestampMixin, UUIDMixin


class Interaction(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "user_internship_interactions"

    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    internship_id = Column(Uuid(as_uuid=True), ForeignKey("internships.id", ondelete="CASCADE"), nullable=False, index=True)
    is_starred = Column(Boolean, default=False, nullable=False)
    is_viewed = Column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "internship_id", name="uq_interactions_user_internship"),
    )
