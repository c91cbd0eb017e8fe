"""
Services layer.

- leader:  lease-based leader election (acquire / renew / release)
- renewal: background lease renewal thread
- roster:  member CRUD used once leadership is confirmed
"""

from .leader import LeaderElection, LeaseState, make_instance_id
from .renewal import RenewalLoop
from .roster import MemberNotRegistered, RosterStore

__all__ = [
    "LeaderElection",
    "LeaseState",
    "make_instance_id",
    "RenewalLoop",
    "MemberNotRegistered",
    "RosterStore",
]
