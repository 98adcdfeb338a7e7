"""Import all models so Base.metadata knows every table."""

from portal.models.listing import Listing  # noqa: F401
from portal.models.activity_event import ActivityEvent  # noqa: F401
from portal.models.interaction import Interaction  # noqa: F401
from portal.models.monthly_stat import MonthlyApplicationStat  # noqa: F401
from portal.models.profile import Profile  # noqa: F401
