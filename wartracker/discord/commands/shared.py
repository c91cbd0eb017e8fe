from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable, Iterable, List, Optional, Sequence, TypeVar

from ...config import Settings
from ...models.member import Member

if TYPE_CHECKING:
    import discord

logger = logging.getLogger(__name__)

T = TypeVar("T")

# NOTE:
# Keep this module dependency-light (no runtime discord import) so the
# formatting and permission helpers are testable without a client.

AVAILABILITY_SELECT_ID = "availability_select_menu"

AVAILABILITY_OPTIONS: Sequence[str] = (
    "16:00-18:00 GMT",
    "18:00-20:00 GMT",
    "20:00-22:00 GMT",
    "22:00-00:00 GMT",
    "Not Available",
)

EMPTY_ROSTER = "(no members)"

# Discord embed description hard limit
EMBED_DESCRIPTION_LIMIT = 4096

NOT_REGISTERED_MSG = "You must /register first."
NO_PERMISSION_MSG = "You do not have permission to use this command."
STANDBY_MSG = "⏸️ This bot instance is on standby while another instance takes over. Try again in a few seconds."


# -----------------------------
# Small primitives
# -----------------------------

def truncate(s: str, limit: int = EMBED_DESCRIPTION_LIMIT) -> str:
    if not s:
        return ""
    if len(s) <= limit:
        return s
    return s[: max(0, limit - 3)] + "..."


def format_number(n: int) -> str:
    """1234567 -> "1,234,567"."""
    return f"{int(n):,}"


def format_members(members: Iterable[Member], formatter: Callable[[Member], str]) -> str:
    out = "\n".join(formatter(m) for m in members)
    return out or EMPTY_ROSTER


def availability_line(m: Member) -> str:
    return f"{m.in_game_name} - {m.availability}"


def resources_line(m: Member) -> str:
    return f"{m.in_game_name} - Orders: {m.war_orders}, Lumber: {format_number(m.lumber)}"


# -----------------------------
# Permissions
# -----------------------------

def _member_role_ids(member: Any) -> List[str]:
    return [str(r.id) for r in (getattr(member, "roles", None) or []) if getattr(r, "id", None) is not None]


def is_guild_leader(settings: Settings, guild_id: Optional[int], member: Any) -> bool:
    """
    Leaders are members holding one of the guild's configured leader roles,
    or listed by user id. Falls back to the legacy single LeaderRoleID.
    """
    if member is None:
        return False

    user_id = str(getattr(member, "id", ""))
    role_ids = set(_member_role_ids(member))

    gc = settings.guild_config_for(str(guild_id) if guild_id else None)
    if gc is not None:
        if user_id and user_id in gc.leader_user_ids:
            return True
        if role_ids.intersection(gc.leader_role_ids):
            return True
        return False

    return bool(settings.leader_role_id) and settings.leader_role_id in role_ids


def role_snapshot(settings: Settings, guild_id: Optional[int], member: Any) -> str:
    """
    Role id recorded on the roster for a member.

    Prefers the first configured leader role the member holds; otherwise the
    member's highest role other than @everyone. Empty when the member has none.
    """
    role_ids = _member_role_ids(member)
    gc = settings.guild_config_for(str(guild_id) if guild_id else None)
    if gc is not None:
        for rid in gc.leader_role_ids:
            if rid in role_ids:
                return rid

    roles = [r for r in (getattr(member, "roles", None) or []) if not _is_default_role(r, guild_id)]
    if not roles:
        return ""
    top = max(roles, key=lambda r: getattr(r, "position", 0))
    return str(top.id)


def _is_default_role(role: Any, guild_id: Optional[int]) -> bool:
    # @everyone has the same id as the guild
    if guild_id is not None and getattr(role, "id", None) == guild_id:
        return True
    is_default = getattr(role, "is_default", None)
    return bool(is_default()) if callable(is_default) else False


# -----------------------------
# Interaction helpers
# -----------------------------

async def run_storage(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking storage call off the event loop."""
    return await asyncio.to_thread(func, *args, **kwargs)


async def reply(interaction: "discord.Interaction", content: Optional[str] = None, *, ephemeral: bool = True, **kwargs: Any) -> None:
    """Respond once; later calls on the same interaction go to the followup webhook."""
    if interaction.response.is_done():
        await interaction.followup.send(content, ephemeral=ephemeral, **kwargs)
        return
    await interaction.response.send_message(content, ephemeral=ephemeral, **kwargs)


__all__ = [
    "AVAILABILITY_SELECT_ID",
    "AVAILABILITY_OPTIONS",
    "EMPTY_ROSTER",
    "NOT_REGISTERED_MSG",
    "NO_PERMISSION_MSG",
    "STANDBY_MSG",
    "truncate",
    "format_number",
    "format_members",
    "availability_line",
    "resources_line",
    "is_guild_leader",
    "role_snapshot",
    "run_storage",
    "reply",
]
