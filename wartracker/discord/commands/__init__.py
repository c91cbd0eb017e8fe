from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple

if TYPE_CHECKING:
    from discord import app_commands

    from ..bot import WartrackerBot

logger = logging.getLogger(__name__)

# Single registry of command modules for the bot.
#
# - Deterministic module ordering
# - Clear logging of what loaded/registered/failed
# - Fail-closed for required modules (so the bot doesn't come up "half working")
MODULES: Sequence[str] = (
    "help",       # /help, /tutorial
    "members",    # /register, /order, /lumber, /availability
    "roster",     # /roster add|remove, /list availability|current
    "role_sync",  # /syncroles (optional, needs members intent)
)

# Modules that must be present and successfully register for the bot to be considered healthy.
REQUIRED_MODULES: Sequence[str] = (
    "help",
    "members",
    "roster",
)

__all__ = ["register_all", "should_register", "MODULES", "REQUIRED_MODULES"]


def should_register(module_name: str, allow: Optional[Sequence[str]], deny: Optional[Sequence[str]]) -> bool:
    """
    Apply allow/deny lists if present (allow wins).
    Defaults to register all MODULES.

    Examples (env):
      WARTRACKER_COMMANDS_ALLOW=help,members,roster
      WARTRACKER_COMMANDS_DENY=role_sync
    """
    if allow:
        return module_name in set(allow)
    if deny:
        return module_name not in set(deny)
    return True


def _import_module(mod_path: str) -> Tuple[Optional[object], Optional[str]]:
    """
    Import a command module.

    Returns: (module_or_none, error_string_or_none)
    """
    try:
        return importlib.import_module(mod_path), None
    except ModuleNotFoundError as e:
        missing_name = getattr(e, "name", "") or ""
        if missing_name and (missing_name == mod_path or missing_name.startswith(mod_path + ".")):
            return None, f"missing module: {missing_name}"
        return None, f"import error (dependency missing): {missing_name or str(e)}"
    except Exception as e:
        return None, f"import error: {e}"


def register_all(bot: "WartrackerBot", tree: "app_commands.CommandTree") -> Dict[str, str]:
    """
    Register all command modules with the shared CommandTree.

    Each module must expose:
        def register(bot, tree) -> None

    Raises RuntimeError if any REQUIRED_MODULE fails to import/register.
    Returns the per-module outcome for logging/tests.
    """
    pkg = __name__
    allow = bot.settings.commands_allow
    deny = bot.settings.commands_deny
    results: Dict[str, str] = {}
    fatal: List[str] = []

    for name in MODULES:
        if not should_register(name, allow, deny):
            results[name] = "skipped (allow/deny)"
            if name in REQUIRED_MODULES:
                logger.warning("required commands module %s disabled by allow/deny lists", name)
            continue

        mod_path = f"{pkg}.{name}"
        mod, err = _import_module(mod_path)
        if mod is None:
            results[name] = f"not loaded ({err})"
            if name in REQUIRED_MODULES:
                fatal.append(f"{name}: {err}")
            continue

        reg = getattr(mod, "register", None)
        if not callable(reg):
            results[name] = "loaded but missing register()"
            if name in REQUIRED_MODULES:
                fatal.append(f"{name}: missing register()")
            continue

        try:
            reg(bot, tree)
            results[name] = "registered"
        except Exception as e:
            logger.exception("commands module register failed: %s", mod_path)
            results[name] = f"register failed: {e}"
            if name in REQUIRED_MODULES:
                fatal.append(f"{name}: register failed")

    summary = ", ".join([f"{k}={results.get(k, 'unknown')}" for k in MODULES])
    logger.info("discord commands registration summary: %s", summary)

    if fatal:
        msg = "Required command modules failed to load/register: " + "; ".join(fatal)
        logger.error(msg)
        raise RuntimeError(msg)

    return results
