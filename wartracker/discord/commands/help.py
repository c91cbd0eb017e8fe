from __future__ import annotations

from typing import TYPE_CHECKING

import discord
from discord import app_commands

from .shared import reply

if TYPE_CHECKING:
    from ..bot import WartrackerBot

HELP_COLOR = 0x7289DA
TUTORIAL_COLOR = 0x00CC99

COMMAND_MAP = (
    ("/register in-game-name", "Register or update your in-game name."),
    ("/order amount", "Set your current War Orders."),
    ("/lumber amount", "Set your current Lumber."),
    ("/availability", "Pick your 2-hour GMT window via a dropdown."),
    ("/roster add/remove", "Leaders: manage members."),
    ("/list availability|current", "Leaders: show availability or current resources."),
    ("/syncroles", "Leaders: snapshot guild roles onto the roster."),
    ("/tutorial", "Quick start walkthrough."),
)

TUTORIAL_STEPS = (
    "1) Use /register to set your in-game name.",
    "2) Use /order and /lumber to set your current resources.",
    "3) Use /availability to choose your usual 2-hour GMT time slot.",
    "4) Leaders can manage with /roster and share lists via /list.",
)


def help_embed() -> discord.Embed:
    embed = discord.Embed(title="Wartracker Bot Help", description="Slash commands overview", color=HELP_COLOR)
    for name, value in COMMAND_MAP:
        embed.add_field(name=name, value=value, inline=False)
    embed.set_footer(text="All user commands reply ephemerally.")
    return embed


def tutorial_embed() -> discord.Embed:
    return discord.Embed(title="Getting Started", description="\n".join(TUTORIAL_STEPS), color=TUTORIAL_COLOR)


def register(bot: "WartrackerBot", tree: app_commands.CommandTree) -> None:
    """
    Help / docs.

    Provides:
      - /help      command map
      - /tutorial  short getting-started guide
    """

    @tree.command(name="help", description="Show bot commands and usage")
    async def help_cmd(interaction: discord.Interaction) -> None:
        await reply(interaction, embed=help_embed())

    @tree.command(name="tutorial", description="Show a short getting-started tutorial")
    async def tutorial_cmd(interaction: discord.Interaction) -> None:
        await reply(interaction, embed=tutorial_embed())
