# wartracker/models/__init__.py
# Central import surface for SQLModel table registration.
# Keeping these imports ensures init_schema() sees all models and creates tables.

from .leader_lease import LEADER_ROW_ID, LeaderLease
from .member import DEFAULT_AVAILABILITY, Member

__all__ = [
    "LEADER_ROW_ID",
    "LeaderLease",
    "DEFAULT_AVAILABILITY",
    "Member",
]
