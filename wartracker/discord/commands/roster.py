from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands

from ...database import StorageError
from .shared import (
    NO_PERMISSION_MSG,
    availability_line,
    format_members,
    is_guild_leader,
    reply,
    resources_line,
    run_storage,
    truncate,
)

if TYPE_CHECKING:
    from ..bot import WartrackerBot

logger = logging.getLogger(__name__)

AVAILABILITY_COLOR = 0x00AAFF
RESOURCES_COLOR = 0x00CC66


def register(bot: "WartrackerBot", tree: app_commands.CommandTree) -> None:
    """
    Leader-only roster management.

    Provides:
      - /roster add|remove      manage members
      - /list availability      availability per member
      - /list current           War Orders + Lumber per member

    Permissions:
    - Guild leader roles / users from settings (legacy LeaderRoleID fallback).
    """

    async def _leader_guard(interaction: discord.Interaction) -> bool:
        if is_guild_leader(bot.settings, interaction.guild_id, interaction.user):
            return True
        await reply(interaction, NO_PERMISSION_MSG)
        return False

    roster = app_commands.Group(name="roster", description="Manage roster", guild_only=True)
    listing = app_commands.Group(name="list", description="List guild data", guild_only=True)

    @roster.command(name="add", description="Add or update a member")
    @app_commands.rename(in_game_name="in-game-name")
    @app_commands.describe(user="Discord user", in_game_name="In-game name")
    async def roster_add(interaction: discord.Interaction, user: discord.User, in_game_name: str) -> None:
        if not await _leader_guard(interaction):
            return
        name = in_game_name.strip()
        if not name:
            await reply(interaction, "❌ In-game name must not be empty.")
            return
        try:
            await run_storage(bot.roster.upsert_member, str(user.id), name)
        except StorageError as exc:
            logger.warning("roster add failed for %s: %s", user.id, exc)
            await reply(interaction, f"❌ Could not update the roster: {exc}")
            return
        await reply(interaction, f"{user.mention} has been added to the roster as {name}.", ephemeral=False)

    @roster.command(name="remove", description="Remove a member")
    @app_commands.describe(user="Discord user")
    async def roster_remove(interaction: discord.Interaction, user: discord.User) -> None:
        if not await _leader_guard(interaction):
            return
        try:
            removed = await run_storage(bot.roster.delete_member, str(user.id))
        except StorageError as exc:
            logger.warning("roster remove failed for %s: %s", user.id, exc)
            await reply(interaction, f"❌ Could not update the roster: {exc}")
            return
        if not removed:
            logger.info("roster remove: %s was not on the roster", user.id)
        await reply(interaction, f"{user.mention} has been removed from the roster.", ephemeral=False)

    async def _send_listing(interaction: discord.Interaction, title: str, color: int, line) -> None:  # noqa: ANN001
        if not await _leader_guard(interaction):
            return
        try:
            members = await run_storage(bot.roster.get_all_members)
        except StorageError as exc:
            logger.warning("roster listing failed: %s", exc)
            await reply(interaction, f"❌ Could not read the roster: {exc}")
            return
        embed = discord.Embed(title=title, description=truncate(format_members(members, line)), color=color)
        await reply(interaction, embed=embed, ephemeral=False)

    @listing.command(name="availability", description="Show availability list")
    async def list_availability(interaction: discord.Interaction) -> None:
        await _send_listing(interaction, "Guild Availability", AVAILABILITY_COLOR, availability_line)

    @listing.command(name="current", description="Show current orders and lumber")
    async def list_current(interaction: discord.Interaction) -> None:
        await _send_listing(interaction, "Current Guild Resources", RESOURCES_COLOR, resources_line)

    tree.add_command(roster)
    tree.add_command(listing)
