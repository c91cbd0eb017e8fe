from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import ssl
import threading
from typing import Optional

import aiohttp
import discord
from discord import app_commands

from ..config import PLACEHOLDER_GUILD_ID, Settings, load_settings
from ..database import StorageEngine, StorageError
from ..services.leader import LeaderElection, make_instance_id
from ..services.renewal import RenewalLoop
from ..services.roster import RosterStore
from .commands import register_all
from .commands.role_sync import resync_all_guild_roles
from .commands.shared import STANDBY_MSG, reply

logger = logging.getLogger(__name__)

# Permissions the invite hint asks for (send messages, embed links, read history)
INVITE_PERMISSIONS = discord.Permissions(send_messages=True, embed_links=True, read_message_history=True)


class LeaderGatedTree(app_commands.CommandTree):
    """CommandTree that refuses interactions while this instance is not the leader."""

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        election = getattr(self.client, "election", None)
        if election is None or election.is_active:
            return True
        await reply(interaction, STANDBY_MSG)
        return False

    async def on_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError) -> None:
        if isinstance(error, app_commands.CheckFailure):
            return
        command = interaction.command.qualified_name if interaction.command else "?"
        logger.error("app command /%s failed", command, exc_info=error)
        with contextlib.suppress(discord.HTTPException):
            await reply(interaction, "❌ Something went wrong handling that command.")


class WartrackerBot(discord.Client):
    """
    Discord front end for the guild roster.

    Notes:
    - Storage calls are blocking; handlers run them via commands.shared.run_storage.
    - The bot only runs while this process holds the leader lease. Interactions
      arriving after leadership is lost get the standby message.
    """

    def __init__(
        self,
        settings: Settings,
        storage: StorageEngine,
        election: LeaderElection,
        *,
        connector: Optional[aiohttp.BaseConnector] = None,
    ) -> None:
        intents = discord.Intents.default()
        intents.guilds = True

        # Needed for /syncroles and the background role resync
        if settings.enable_guild_members_intent:
            intents.members = True

        super().__init__(intents=intents, connector=connector)

        self.settings = settings
        self.storage = storage
        self.election = election
        self.roster = RosterStore(storage, timeout=settings.storage_timeout_s)
        self.tree = LeaderGatedTree(self)

        self._role_resync_task: Optional[asyncio.Task] = None

    async def setup_hook(self) -> None:
        # Register slash commands from modular command files
        register_all(self, self.tree)

        await self.sync_commands()

        if self.settings.enable_guild_members_intent:
            self._role_resync_task = asyncio.create_task(self._role_resync_loop(), name="role-resync")
        else:
            logger.info("Members intent disabled; background role resync is off")

    async def sync_commands(self) -> None:
        """
        Sync slash commands to each configured guild (instant), falling back to
        a global sync when no guild accepts them.
        """
        synced_any = False
        for gc in self.settings.guild_list():
            gid = gc.guild_id
            if not gid or gid == PLACEHOLDER_GUILD_ID:
                continue
            try:
                guild = discord.Object(id=int(gid))
            except ValueError:
                logger.warning("Skipping command sync for invalid guild id %r", gid)
                continue

            try:
                self.tree.copy_global_to(guild=guild)
                cmds = await self.tree.sync(guild=guild)
                synced_any = True
                logger.info("Slash commands synced to guild=%s (%d commands)", gid, len(cmds))
            except discord.Forbidden:
                logger.warning(
                    "Missing access to sync commands in guild=%s; invite the bot with the "
                    "applications.commands scope: %s",
                    gid,
                    self.invite_url(),
                )
            except discord.HTTPException:
                logger.exception("Slash command sync failed for guild=%s", gid)

        if synced_any:
            return

        try:
            cmds = await self.tree.sync()
            logger.info("Slash commands synced globally (%d commands)", len(cmds))
        except discord.HTTPException:
            logger.exception("Global slash command sync failed")

    def invite_url(self) -> str:
        app_id = self.application_id or (self.user.id if self.user else None)
        if app_id is None:
            return "(application id unknown)"
        return discord.utils.oauth_url(
            app_id,
            permissions=INVITE_PERMISSIONS,
            scopes=("bot", "applications.commands"),
        )

    async def _role_resync_loop(self) -> None:
        await asyncio.sleep(self.settings.role_resync_delay_s)
        await self.wait_until_ready()
        while not self.is_closed():
            if self.election.is_active:
                try:
                    await resync_all_guild_roles(self)
                except Exception:
                    logger.exception("Background role resync failed")
            await asyncio.sleep(self.settings.role_resync_interval_s)

    async def close(self) -> None:
        task, self._role_resync_task = self._role_resync_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await super().close()

    async def on_ready(self) -> None:
        logger.info(
            "WartrackerBot ready as %s (instance=%s, guilds=%s, members_intent=%s)",
            str(self.user),
            self.election.instance_id,
            ",".join(g.guild_id for g in self.settings.guild_list()) or "global",
            "ON" if self.settings.enable_guild_members_intent else "OFF",
        )


# ---------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------

def build_ssl_context(settings: Settings) -> Optional[ssl.SSLContext]:
    """
    TLS context for the Discord HTTP/gateway connections, or None for defaults.

    A custom root CA is trusted in addition to the system store.
    """
    if not settings.custom_root_ca_path and not settings.tls_insecure_skip_verify:
        return None

    ctx = ssl.create_default_context()
    if settings.custom_root_ca_path:
        ctx.load_verify_locations(cafile=settings.custom_root_ca_path)
        logger.info("Trusting additional root CA from %s", settings.custom_root_ca_path)
    if settings.tls_insecure_skip_verify:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        logger.warning("TLS certificate verification is DISABLED (TLSInsecureSkipVerify)")
    return ctx


def build_connector(settings: Settings) -> Optional[aiohttp.TCPConnector]:
    # Must be called with a running event loop
    ctx = build_ssl_context(settings)
    if ctx is None:
        return None
    return aiohttp.TCPConnector(ssl=ctx)


async def serve(settings: Settings, storage: StorageEngine, election: LeaderElection) -> None:
    """
    Run the Discord session until SIGINT/SIGTERM, leadership loss, or the
    session ends on its own.
    """
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()

    def _on_lost() -> None:
        # Called from the renewal thread
        loop.call_soon_threadsafe(stop.set)

    election.add_lost_callback(_on_lost)
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop.set)

    bot = WartrackerBot(settings, storage, election, connector=build_connector(settings))
    try:
        async with bot:
            runner = asyncio.create_task(bot.start(settings.discord_bot_token), name="discord-session")
            stopper = asyncio.create_task(stop.wait(), name="stop-signal")
            done, _ = await asyncio.wait({runner, stopper}, return_when=asyncio.FIRST_COMPLETED)
            stopper.cancel()

            if runner in done:
                # Surface login/connection failures to the caller
                runner.result()
                return

            logger.info("Termination requested. Closing Discord session...")
            await bot.close()
            await asyncio.gather(runner, return_exceptions=True)
    finally:
        election.remove_lost_callback(_on_lost)
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(sig)


def _acquire_leadership(election: LeaderElection, settings: Settings) -> bool:
    """Block until leader; SIGTERM while waiting aborts cleanly."""
    stop = threading.Event()
    previous = signal.getsignal(signal.SIGTERM)
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    try:
        return election.acquire(
            backoff=settings.leader_retry_s,
            stop_event=stop,
            timeout=settings.storage_timeout_s,
        )
    finally:
        signal.signal(signal.SIGTERM, previous)


def run_bot(config_path: Optional[str] = None) -> None:
    settings = load_settings(config_path)
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings.validate_runtime()

    storage = StorageEngine.from_settings(settings)
    renewal: Optional[RenewalLoop] = None
    election: Optional[LeaderElection] = None
    try:
        # The lease table must exist before anyone can contend for it
        storage.init_schema(timeout=settings.storage_timeout_s)

        election = LeaderElection(
            storage,
            make_instance_id(),
            lease_duration=settings.lease_duration_s,
            takeover_if_stale=settings.leader_takeover_if_stale,
            step_down_on_loss=settings.leader_step_down_on_loss,
        )
        logger.info("Instance %s waiting for leadership (lease=%ss)", election.instance_id, settings.lease_duration_s)
        if not _acquire_leadership(election, settings):
            logger.info("Stopped before acquiring leadership")
            return

        added = storage.migrate(timeout=settings.storage_timeout_s)
        if added:
            logger.info("Schema migrated; added columns: %s", ", ".join(added))

        renewal = RenewalLoop(election, interval=settings.renew_interval_s, timeout=settings.storage_timeout_s)
        renewal.start()

        asyncio.run(serve(settings, storage, election))
    finally:
        if renewal is not None:
            renewal.stop()
            renewal.join(timeout=settings.storage_timeout_s + settings.renew_interval_s)
        if election is not None:
            try:
                election.release(timeout=settings.storage_timeout_s)
            except StorageError as exc:
                logger.warning("Could not release leadership on shutdown: %s", exc)
        storage.close()
        logger.info("Shutdown complete.")


if __name__ == "__main__":
    run_bot()
