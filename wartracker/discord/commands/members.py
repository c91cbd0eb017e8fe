from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands

from ...database import StorageError
from ...services.roster import MemberNotRegistered
from .shared import (
    AVAILABILITY_OPTIONS,
    AVAILABILITY_SELECT_ID,
    NOT_REGISTERED_MSG,
    STANDBY_MSG,
    reply,
    run_storage,
)

if TYPE_CHECKING:
    from ..bot import WartrackerBot

logger = logging.getLogger(__name__)

STORAGE_BUSY_MSG = "⚠️ The roster is busy right now. Please try again in a moment."


class AvailabilitySelect(discord.ui.Select):
    def __init__(self, bot: "WartrackerBot") -> None:
        super().__init__(
            custom_id=AVAILABILITY_SELECT_ID,
            placeholder="Choose time slot",
            min_values=1,
            max_values=1,
            options=[discord.SelectOption(label=o, value=o) for o in AVAILABILITY_OPTIONS],
        )
        self.bot = bot

    async def callback(self, interaction: discord.Interaction) -> None:
        slot = self.values[0] if self.values else None
        try:
            await run_storage(self.bot.roster.update_availability, str(interaction.user.id), slot)
        except MemberNotRegistered:
            await reply(interaction, NOT_REGISTERED_MSG)
            return
        except StorageError as exc:
            logger.warning("availability update failed for %s: %s", interaction.user.id, exc)
            await reply(interaction, f"Failed to set availability: {exc}")
            return
        await reply(interaction, f"Your availability has been set to {slot or 'Not Set'}")


class AvailabilityView(discord.ui.View):
    """
    Persistent view for the availability select menu.

    Registered once with bot.add_view() so selections made on menus sent by an
    earlier process (before a rolling restart) still reach this handler.
    """

    def __init__(self, bot: "WartrackerBot") -> None:
        super().__init__(timeout=None)
        self.bot = bot
        self.add_item(AvailabilitySelect(bot))

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if self.bot.election.is_active:
            return True
        await reply(interaction, STANDBY_MSG)
        return False


def register(bot: "WartrackerBot", tree: app_commands.CommandTree) -> None:
    """
    Member self-service commands.

    Provides:
      - /register     register or update your in-game name
      - /order        set your War Orders count
      - /lumber       set your Lumber count
      - /availability pick a 2-hour GMT window from a dropdown
    """

    bot.add_view(AvailabilityView(bot))

    @tree.command(name="register", description="Register or update your in-game name")
    @app_commands.rename(in_game_name="in-game-name")
    @app_commands.describe(in_game_name="Your in-game name")
    async def register_cmd(interaction: discord.Interaction, in_game_name: str) -> None:
        name = in_game_name.strip()
        if not name:
            await reply(interaction, "❌ In-game name must not be empty.")
            return
        try:
            created = await run_storage(bot.roster.upsert_member, str(interaction.user.id), name)
        except StorageError as exc:
            logger.warning("register failed for %s: %s", interaction.user.id, exc)
            await reply(interaction, STORAGE_BUSY_MSG)
            return

        if created:
            await reply(interaction, f"You have been registered as {name}.")
        else:
            await reply(interaction, f"Your in-game name has been updated to {name}.")

    @tree.command(name="order", description="Set your current War Orders count")
    @app_commands.describe(amount="Number of War Orders")
    async def order_cmd(interaction: discord.Interaction, amount: app_commands.Range[int, 0]) -> None:
        try:
            await run_storage(bot.roster.update_orders, str(interaction.user.id), amount)
        except MemberNotRegistered:
            await reply(interaction, NOT_REGISTERED_MSG)
            return
        except StorageError as exc:
            logger.warning("order update failed for %s: %s", interaction.user.id, exc)
            await reply(interaction, STORAGE_BUSY_MSG)
            return
        await reply(interaction, f"Your War Orders have been set to {amount}.")

    @tree.command(name="lumber", description="Set your current Lumber count")
    @app_commands.describe(amount="Amount of Lumber")
    async def lumber_cmd(interaction: discord.Interaction, amount: app_commands.Range[int, 0]) -> None:
        try:
            await run_storage(bot.roster.update_lumber, str(interaction.user.id), amount)
        except MemberNotRegistered:
            await reply(interaction, NOT_REGISTERED_MSG)
            return
        except StorageError as exc:
            logger.warning("lumber update failed for %s: %s", interaction.user.id, exc)
            await reply(interaction, STORAGE_BUSY_MSG)
            return
        await reply(interaction, f"Your Lumbers have been set to {amount}.")

    @tree.command(name="availability", description="Set your availability time slot")
    async def availability_cmd(interaction: discord.Interaction) -> None:
        await reply(interaction, "Select your availability:", view=AvailabilityView(bot))
