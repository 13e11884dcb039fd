"""discord.py bot: gateway events, slash commands and background jobs.

Gateway events are mapped to core models and handed to the dispatcher; the
slash commands live in ``BridgeCommands``. Long-running jobs (the Telegram
session loop, maintenance, the Redis listener) are started from
``setup_hook`` and cancelled on close.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import discord
from discord import app_commands
from discord.ext import commands

from adapters.discord_mapper import build_group_message, build_reaction_event
from adapters.notification_formatting import format_digest_reply, format_status_report
from adapters.redis_bus import RedisInvalidationBus
from core.digest import DigestService
from core.dispatcher import GROUP_MESSAGE, GROUP_REACTION_ADDED, GROUP_REACTION_REMOVED, EventDispatcher
from core.session import SessionLifecycleManager
from core.status import StatusReporter

LOGGER = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[None]]
ShutdownHook = Callable[[], Awaitable[None]]


def build_intents() -> discord.Intents:
    intents = discord.Intents.default()
    intents.message_content = True
    intents.reactions = True  # guild and DM reactions
    intents.members = True  # permission checks for digests and deletions
    return intents


class BridgeCommands(commands.Cog):
    """/unread for everyone, /telegram_auth and /status in the admin channel."""

    def __init__(
        self,
        digest: DigestService,
        reporter: StatusReporter,
        session: Optional[SessionLifecycleManager] = None,
        admin_channel_id: Optional[int] = None,
        redis_bus: Optional[RedisInvalidationBus] = None,
    ) -> None:
        self._digest = digest
        self._reporter = reporter
        self._session = session
        self._admin_channel_id = admin_channel_id
        self._redis_bus = redis_bus

    def _in_admin_channel(self, interaction: discord.Interaction) -> bool:
        return self._admin_channel_id is not None and interaction.channel_id == self._admin_channel_id

    @app_commands.command(name="unread", description="Get a DM listing the links you have not read yet")
    async def unread(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        guild_id = str(interaction.guild_id) if interaction.guild_id is not None else None
        try:
            result = await self._digest.send_digest(str(interaction.user.id), guild_id)
        except Exception:
            LOGGER.exception("Failed to build unread digest for %s", interaction.user.id)
            await interaction.followup.send("Something went wrong while building your digest.", ephemeral=True)
            return
        await interaction.followup.send(format_digest_reply(result), ephemeral=True)

    @app_commands.command(name="telegram_auth", description="Post a fresh Telegram login QR code")
    async def telegram_auth(self, interaction: discord.Interaction) -> None:
        if not self._in_admin_channel(interaction):
            await interaction.response.send_message("This command only works in the admin channel.", ephemeral=True)
            return
        if self._session is None:
            await interaction.response.send_message("The Telegram bridge is disabled.", ephemeral=True)
            return
        await interaction.response.defer(thinking=True)
        try:
            _, message = await self._session.request_fresh_login()
        except Exception:
            LOGGER.exception("On-demand login failed")
            message = "Could not start a new login. Check the logs."
        await interaction.followup.send(message)

    @app_commands.command(name="status", description="Show bridge health")
    async def status(self, interaction: discord.Interaction) -> None:
        if not self._in_admin_channel(interaction):
            await interaction.response.send_message("This command only works in the admin channel.", ephemeral=True)
            return
        await interaction.response.defer(thinking=True)
        health = await asyncio.to_thread(self._reporter.health)
        tables = health.get("checks", {}).get("database", {}).get("tables") or {}
        redis_connected = self._redis_bus.is_connected if self._redis_bus is not None else None
        report = format_status_report(
            health,
            mapping_count=tables.get("chat_mappings", 0),
            monitored_count=tables.get("monitored_channels", 0),
            redis_connected=redis_connected,
        )
        await interaction.followup.send(report)


class LinkBridgeBot(commands.Bot):
    def __init__(self, dispatcher: EventDispatcher) -> None:
        # commands.Bot requires a prefix even though only slash commands are used
        super().__init__(command_prefix="!", intents=build_intents())
        self.dispatcher = dispatcher
        self._cogs_to_load: list[commands.Cog] = []
        self._jobs: list[tuple[str, JobFactory, bool]] = []
        self._shutdown_hooks: list[ShutdownHook] = []
        self._tasks: list[asyncio.Task] = []

    def attach_cog(self, cog: commands.Cog) -> None:
        self._cogs_to_load.append(cog)

    def add_background_job(self, name: str, factory: JobFactory, wait_until_ready: bool = False) -> None:
        self._jobs.append((name, factory, wait_until_ready))

    def add_shutdown_hook(self, hook: ShutdownHook) -> None:
        self._shutdown_hooks.append(hook)

    async def setup_hook(self) -> None:
        for cog in self._cogs_to_load:
            await self.add_cog(cog)
        await self.tree.sync()
        LOGGER.info("Slash commands synced")

        for name, factory, wait_until_ready in self._jobs:
            self._tasks.append(asyncio.create_task(self._run_job(name, factory, wait_until_ready), name=name))
            LOGGER.info("Background job %s started", name)

    async def _run_job(self, name: str, factory: JobFactory, wait_until_ready: bool) -> None:
        try:
            if wait_until_ready:
                await self.wait_until_ready()
            await factory()
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception("Background job %s crashed", name)

    async def close(self) -> None:
        for hook in self._shutdown_hooks:
            try:
                await hook()
            except Exception:
                LOGGER.exception("Error during shutdown")
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        await super().close()

    async def on_ready(self) -> None:
        LOGGER.info("Discord connected as %s (%s guild(s))", self.user, len(self.guilds))

    async def on_disconnect(self) -> None:
        # discord.py reconnects on its own
        LOGGER.warning("Discord gateway disconnected")

    async def on_resumed(self) -> None:
        LOGGER.info("Discord gateway resumed")

    async def on_message(self, message: discord.Message) -> None:
        try:
            event = build_group_message(message)
        except Exception:
            LOGGER.exception("Could not map Discord message %s", message.id)
            return
        await self.dispatcher.dispatch(GROUP_MESSAGE, event)

    async def _dispatch_reaction(self, event_type: str, payload: discord.RawReactionActionEvent) -> None:
        try:
            event = build_reaction_event(payload, self.user.id if self.user else None)
        except Exception:
            LOGGER.exception("Could not map reaction on message %s", payload.message_id)
            return
        await self.dispatcher.dispatch(event_type, event)

    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent) -> None:
        await self._dispatch_reaction(GROUP_REACTION_ADDED, payload)

    async def on_raw_reaction_remove(self, payload: discord.RawReactionActionEvent) -> None:
        await self._dispatch_reaction(GROUP_REACTION_REMOVED, payload)
