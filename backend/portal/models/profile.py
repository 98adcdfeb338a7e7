"""User profile model. Identity itself lives with the external provider."""

from sqlalchemy import Column, String

from portal.models.base import Base, TimestampMixin, UUIDMixin


class Profile(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "profiles"

    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    role = Column(String(20), default="student", nullable=False, index=True)  # student, admin
