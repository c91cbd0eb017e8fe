from __future__ import annotations

from sqlalchemy import CheckConstraint
from sqlmodel import Field, SQLModel

# The lease table models a mutex as a row: the CHECK pins the key to one value.
LEADER_ROW_ID = 1


class LeaderLease(SQLModel, table=True):
    """
    Current owner of the "active" role.

    Notes:
    - owner is an opaque instance token ("<hostname>-<pid>").
    - updated_at is epoch seconds of the last acquire/renew by owner.
    - Only the leader election service writes this table.
    """

    __tablename__ = "leader"
    __table_args__ = (CheckConstraint(f"id = {LEADER_ROW_ID}", name="ck_leader_singleton"),)

    id: int = Field(default=LEADER_ROW_ID, primary_key=True)
    owner: str = Field(nullable=False)
    updated_at: int = Field(nullable=False)

    def age(self, now: float) -> float:
        return float(now) - float(self.updated_at)

    def is_stale(self, now: float, lease_duration: float) -> bool:
        return is_stale(self.updated_at, now, lease_duration)


def is_stale(updated_at: int, now: float, lease_duration: float) -> bool:
    return float(now) - float(updated_at) >= float(lease_duration)
