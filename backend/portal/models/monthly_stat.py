"""Materialized monthly apply counter (one row per reporting-timezone month)."""

from sqlalchemy import Column, Integer, UniqueConstraint

from portal.models.base import Base, TimestampMixin, UUIDMixin


class MonthlyApplicationStat(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "monthly_application_stats"

    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)  # 1-12
    count = Column(Integer, default=0, server_default="0", nullable=False)

    __table_args__ = (
        UniqueConstraint("year", "month", name="uq_monthly_stats_year_month"),
    )
