from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import collate, delete, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from ..database import StorageEngine
from ..models.member import DEFAULT_AVAILABILITY, Member

logger = logging.getLogger(__name__)

_MEMBER_COLUMNS = (
    Member.discord_id,
    Member.in_game_name,
    Member.war_orders,
    Member.lumber,
    Member.availability,
    Member.guild_role_id,
)


class MemberNotRegistered(LookupError):
    def __init__(self, discord_id: str) -> None:
        super().__init__(f"member not registered: {discord_id}")
        self.discord_id = discord_id


def _clean_name(raw: str) -> str:
    s = (raw or "").strip()
    if not s:
        raise ValueError("in_game_name must not be empty")
    return s


def _require_non_negative(value: int, field: str) -> int:
    i = int(value)
    if i < 0:
        raise ValueError(f"{field} must be >= 0")
    return i


class RosterStore:
    """
    Member CRUD on top of the shared StorageEngine.

    Each method is one atomic storage call. Updates to unknown members raise
    MemberNotRegistered instead of silently affecting zero rows.
    """

    def __init__(self, storage: StorageEngine, *, timeout: Optional[float] = None) -> None:
        self.storage = storage
        self.timeout = timeout

    # -------------------------
    # Writes
    # -------------------------

    def upsert_member(self, discord_id: str, in_game_name: str) -> bool:
        """Insert or rename a member. Returns True if the member is new."""
        name = _clean_name(in_game_name)
        with self.storage.transaction(timeout=self.timeout) as conn:
            existed = conn.execute(
                select(Member.discord_id).where(Member.discord_id == discord_id)
            ).first() is not None
            stmt = sqlite_insert(Member).values(discord_id=discord_id, in_game_name=name)
            stmt = stmt.on_conflict_do_update(
                index_elements=["discord_id"],
                set_={"in_game_name": stmt.excluded.in_game_name},
            )
            conn.execute(stmt)
        return not existed

    def insert_member_if_missing(self, discord_id: str, in_game_name: str) -> bool:
        """Insert a placeholder record; existing records are left unchanged."""
        name = _clean_name(in_game_name)
        stmt = sqlite_insert(Member).values(discord_id=discord_id, in_game_name=name).on_conflict_do_nothing(
            index_elements=["discord_id"]
        )
        return self.storage.execute(stmt, timeout=self.timeout) > 0

    def update_orders(self, discord_id: str, amount: int) -> None:
        self._update(discord_id, war_orders=_require_non_negative(amount, "war_orders"))

    def update_lumber(self, discord_id: str, amount: int) -> None:
        self._update(discord_id, lumber=_require_non_negative(amount, "lumber"))

    def update_availability(self, discord_id: str, slot: Optional[str]) -> None:
        self._update(discord_id, availability=(slot or "").strip() or DEFAULT_AVAILABILITY)

    def update_member_role(self, discord_id: str, role_id: str) -> None:
        self._update(discord_id, guild_role_id=(role_id or "").strip())

    def delete_member(self, discord_id: str) -> bool:
        stmt = delete(Member).where(Member.discord_id == discord_id)
        return self.storage.execute(stmt, timeout=self.timeout) > 0

    # -------------------------
    # Reads
    # -------------------------

    def get_all_members(self) -> List[Member]:
        """All members ordered by in-game name, case-insensitively."""
        rows = self.storage.query(
            select(*_MEMBER_COLUMNS).order_by(collate(Member.in_game_name, "NOCASE")),
            timeout=self.timeout,
        )
        return [Member(**r._mapping) for r in rows]

    def get_member(self, discord_id: str) -> Optional[Member]:
        rows = self.storage.query(
            select(*_MEMBER_COLUMNS).where(Member.discord_id == discord_id),
            timeout=self.timeout,
        )
        return Member(**rows[0]._mapping) if rows else None

    # -------------------------
    # Internals
    # -------------------------

    def _update(self, discord_id: str, **values: object) -> None:
        stmt = update(Member).where(Member.discord_id == discord_id).values(**values)
        if self.storage.execute(stmt, timeout=self.timeout) == 0:
            raise MemberNotRegistered(discord_id)
        logger.debug("member %s updated: %s", discord_id, ", ".join(sorted(values)))


__all__ = ["MemberNotRegistered", "RosterStore"]
