from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import discord
from discord import app_commands

from ...database import StorageError
from ...services.roster import MemberNotRegistered
from .shared import NO_PERMISSION_MSG, is_guild_leader, role_snapshot, run_storage

if TYPE_CHECKING:
    from discord import Interaction
    from ..bot import WartrackerBot

logger = logging.getLogger(__name__)


@dataclass
class RoleSyncResult:
    scanned: int = 0
    inserted: int = 0
    updated: int = 0
    failed: int = 0

    def merge(self, other: "RoleSyncResult") -> None:
        self.scanned += other.scanned
        self.inserted += other.inserted
        self.updated += other.updated
        self.failed += other.failed


def _has_role(member: discord.Member, role_id: str) -> bool:
    return any(str(r.id) == role_id for r in (member.roles or []))


async def sync_guild_roles(
    bot: "WartrackerBot",
    guild: discord.Guild,
    *,
    only_role_id: Optional[str] = None,
) -> RoleSyncResult:
    """
    Snapshot guild roles onto the roster.

    Members missing from the roster get a placeholder record named after their
    Discord username. Existing names are never overwritten. Members with no
    role to record keep their stored role untouched.
    """
    result = RoleSyncResult()

    async for member in guild.fetch_members(limit=None):
        if member.bot:
            continue
        if only_role_id and not _has_role(member, only_role_id):
            continue

        result.scanned += 1
        discord_id = str(member.id)
        role_id = only_role_id or role_snapshot(bot.settings, guild.id, member)

        try:
            if await run_storage(bot.roster.insert_member_if_missing, discord_id, member.name):
                result.inserted += 1
            if role_id:
                await run_storage(bot.roster.update_member_role, discord_id, role_id)
                result.updated += 1
        except (StorageError, MemberNotRegistered) as exc:
            result.failed += 1
            logger.warning("role sync failed for member %s in guild %s: %s", discord_id, guild.id, exc)

    return result


async def resync_all_guild_roles(bot: "WartrackerBot") -> RoleSyncResult:
    """Run a role snapshot for every configured guild the bot can see."""
    total = RoleSyncResult()
    for gc in bot.settings.guild_list():
        if not gc.guild_id:
            continue
        guild = bot.get_guild(int(gc.guild_id))
        if guild is None:
            logger.info("role resync: guild %s not in cache; skipped", gc.guild_id)
            continue
        try:
            total.merge(await sync_guild_roles(bot, guild))
        except discord.HTTPException as exc:
            logger.warning("role resync: listing members of guild %s failed: %s", gc.guild_id, exc)

    logger.info(
        "role resync complete (scanned=%s, inserted=%s, updated=%s, failed=%s)",
        total.scanned,
        total.inserted,
        total.updated,
        total.failed,
    )
    return total


def register(bot: "WartrackerBot", tree: app_commands.CommandTree) -> None:
    """
    /syncroles: leader-triggered role snapshot.

    Behavior:
    - Walks every guild member (requires the members intent).
    - Inserts missing members with their username as a placeholder name.
    - Records one role id per member (see role_snapshot), or the given role-id.

    Permissions:
    - Guild leaders only.
    """

    @tree.command(name="syncroles", description="Sync stored roles from guild members (optional: filter by role id)")
    @app_commands.guild_only()
    @app_commands.rename(role_id="role-id")
    @app_commands.describe(role_id="Only sync members who have this role")
    async def syncroles(interaction: Interaction, role_id: Optional[str] = None) -> None:
        if not interaction.guild:
            await interaction.response.send_message("❌ This command can only be used inside a server.", ephemeral=True)
            return

        if not is_guild_leader(bot.settings, interaction.guild_id, interaction.user):
            await interaction.response.send_message(NO_PERMISSION_MSG, ephemeral=True)
            return

        # Acknowledge early (member listing can take a while)
        await interaction.response.defer(ephemeral=True)

        wanted = (role_id or "").strip() or None
        try:
            result = await sync_guild_roles(bot, interaction.guild, only_role_id=wanted)
        except discord.HTTPException as exc:
            logger.warning("syncroles: member listing failed in guild %s: %s", interaction.guild_id, exc)
            await interaction.followup.send(
                "❌ Could not list guild members. Is the Server Members intent enabled?",
                ephemeral=True,
            )
            return

        lines = [
            "🔄 **Role sync complete**",
            f"Members scanned: {result.scanned}",
            f"Added to roster: {result.inserted}",
            f"Roles recorded: {result.updated}",
        ]
        if result.failed:
            lines.append(f"⚠️ Failed: {result.failed} (see logs)")
        await interaction.followup.send("\n".join(lines), ephemeral=True)
