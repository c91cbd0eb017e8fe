from __future__ import annotations

from sqlmodel import Field, SQLModel

DEFAULT_AVAILABILITY = "Not Set"


class Member(SQLModel, table=True):
    """
    A guild member on the roster.

    Notes:
    - discord_id is stored as a string because Discord snowflake IDs can exceed 32-bit ints.
    - guild_role_id is the last-known role snapshot written by role resync.
    - server defaults keep partial inserts (register / role resync) valid.
    """

    __tablename__ = "members"

    discord_id: str = Field(primary_key=True)
    in_game_name: str = Field(nullable=False)

    war_orders: int = Field(default=0, sa_column_kwargs={"server_default": "0"})
    lumber: int = Field(default=0, sa_column_kwargs={"server_default": "0"})

    availability: str = Field(default=DEFAULT_AVAILABILITY, sa_column_kwargs={"server_default": DEFAULT_AVAILABILITY})
    guild_role_id: str = Field(default="", sa_column_kwargs={"server_default": ""})
