"""
Discord integration package.

Design goals:
- Keep wartracker.discord.bot as the stable entrypoint (WartrackerBot + run_bot).
- Commands live in wartracker.discord.commands.* and register onto one tree.
"""

from .bot import WartrackerBot, run_bot, serve  # re-export for convenience

__all__ = [
    "WartrackerBot",
    "run_bot",
    "serve",
]
