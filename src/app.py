"""Application entry point for the linkbridge Discord/Telegram bridge."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

from art import tprint
from dotenv import load_dotenv

import settings
from adapters.discord_bot import BridgeCommands, LinkBridgeBot
from adapters.discord_gateway import DiscordGateway
from adapters.health_server import HealthServer
from adapters.qr_rendering import render_png
from adapters.redis_bus import RedisInvalidationBus
from adapters.session_files import SessionFileStore
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_messenger import TelegramMessenger
from client import build_client
from core.channels import MonitoredChannels
from core.digest import DigestService
from core.dispatcher import (
    GROUP_MESSAGE,
    GROUP_REACTION_ADDED,
    GROUP_REACTION_REMOVED,
    MESSENGER_MESSAGE,
    EventDispatcher,
)
from core.forwarding import ForwardingPipeline
from core.links import LinkTracker
from core.maintenance import MaintenanceLoop
from core.models import ChatChannelMapping, InboundMessage
from core.rate_limit import RateLimiter
from core.reactions import ReactionBridge
from core.read_state import LinkReadStateMachine
from core.session import SessionLifecycleManager
from core.status import StatusReporter
from get_session import login

NAME = "LINKBRIDGE"
FONT = "tarty-1"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", True):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/linkbridge.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)
    # discord.py is verbose at INFO about gateway internals.
    logging.getLogger("discord.gateway").setLevel(max(level, logging.WARNING))


def _open_storage() -> SQLiteStorage:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    return storage


def _session_files() -> SessionFileStore:
    files = SessionFileStore(settings.SESSION_DIR, settings.SESSION_NAME)
    files.ensure_directory()
    return files


def _seed_from_config(storage: SQLiteStorage) -> None:
    """Copy chat mappings and monitored channels from config.json into the database."""

    for entry in settings.CHAT_MAPPINGS:
        storage.upsert_chat_mapping(
            ChatChannelMapping(
                external_chat_id=str(entry["chat_id"]),
                group_channel_id=str(entry["channel_id"]),
                active=bool(entry.get("enabled", True)),
            )
        )
    for guild_id, channel_ids in settings.MONITORED_CHANNELS.items():
        for channel_id in channel_ids:
            storage.set_monitored_channel(guild_id, channel_id, active=True)


def _run() -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)

    load_dotenv()
    token = os.getenv("DISCORD_BOT_TOKEN")
    if not token:
        raise RuntimeError("Missing DISCORD_BOT_TOKEN in environment")

    logger.info("Starting linkbridge")

    storage = _open_storage()
    _seed_from_config(storage)
    logger.info("%s chat mapping(s) loaded", len(storage.list_chat_mappings()))

    dispatcher = EventDispatcher()
    bot = LinkBridgeBot(dispatcher)
    gateway = DiscordGateway(bot, settings.ADMIN_CHANNEL_ID, settings.TIMEZONE)
    channels = MonitoredChannels(storage, ttl_seconds=settings.CACHE_TTL_SECONDS)

    tracker = LinkTracker(storage, gateway, channels, settings.LINK_TRACKER)
    read_state = LinkReadStateMachine(storage, storage, gateway, channels, settings.LINK_TRACKER)
    digest = DigestService(storage, storage, gateway, settings.DIGEST, RateLimiter(settings.RATE_LIMIT))

    # Link capture runs before forwarding so a posted URL is tracked even if
    # the Telegram side is down.
    dispatcher.register(GROUP_MESSAGE, tracker.on_message, name="link-capture")
    dispatcher.register(GROUP_REACTION_ADDED, read_state.on_reaction_added, name="read-state")
    dispatcher.register(GROUP_REACTION_REMOVED, read_state.on_reaction_removed, name="read-state")

    session: Optional[SessionLifecycleManager] = None
    if settings.BRIDGE.enabled:
        files = _session_files()
        messenger = TelegramMessenger(
            lambda: build_client(files.session_path),
            password=os.getenv("TELEGRAM_2FA"),
            qr_rounds=settings.QR_ROUNDS,
        )
        session = SessionLifecycleManager(
            messenger, files, storage, gateway, settings.SESSION, qr_renderer=render_png, mappings=storage
        )
        pipeline = ForwardingPipeline(storage, storage, messenger, gateway, session, settings.BRIDGE)
        reaction_bridge = ReactionBridge(storage, messenger, gateway, session)

        dispatcher.register(GROUP_MESSAGE, pipeline.forward_to_messenger, name="forward-to-telegram")
        dispatcher.register(GROUP_REACTION_ADDED, reaction_bridge.on_reaction_added, name="reaction-bridge")
        dispatcher.register(GROUP_REACTION_REMOVED, reaction_bridge.on_reaction_removed, name="reaction-bridge")
        dispatcher.register(MESSENGER_MESSAGE, pipeline.forward_to_group, name="forward-to-discord")

        async def on_telegram_message(message: InboundMessage) -> None:
            await dispatcher.dispatch(MESSENGER_MESSAGE, message)

        messenger.add_message_handler(on_telegram_message)
        # The admin channel must be resolvable before the first QR prompt.
        bot.add_background_job("telegram-session", session.run, wait_until_ready=True)
        bot.add_shutdown_hook(session.stop)
    else:
        logger.info("Telegram bridge disabled; running link tracking only")

    reporter = StatusReporter(storage, session)

    redis_url = os.getenv("REDIS_URL")
    redis_bus = RedisInvalidationBus(redis_url) if redis_url else None
    if redis_bus is not None:

        async def start_invalidation_listener() -> None:
            redis_bus.start(channels.invalidate)

        bot.add_background_job("redis-invalidation", start_invalidation_listener)
        bot.add_shutdown_hook(redis_bus.close)

    if settings.HEALTH_ENABLED:
        health = HealthServer(reporter, settings.HEALTH_HOST, settings.HEALTH_PORT)
        bot.add_background_job("health-server", health.start)
        bot.add_shutdown_hook(health.stop)

    bot.add_background_job("maintenance", MaintenanceLoop(storage, settings.MAINTENANCE).run)
    bot.attach_cog(BridgeCommands(digest, reporter, session, settings.ADMIN_CHANNEL_ID, redis_bus))

    # log_handler=None keeps discord.py on the handlers configured above.
    bot.run(token, log_handler=None)


def _login() -> None:
    _print_banner()
    _configure_logging()
    files = _session_files()

    async def _run_login() -> str:
        return await login(build_client(files.session_path))

    print(f"Logged in as {asyncio.run(_run_login())}")


def _dialog_type(dialog: Any) -> str:
    if getattr(dialog, "is_channel", False):
        entity = getattr(dialog, "entity", None)
        if getattr(entity, "megagroup", False):
            return "group"
        return "channel"
    if getattr(dialog, "is_group", False):
        return "group"
    if getattr(dialog, "is_user", False):
        return "user"
    return "chat"


def _dialog_title(dialog: Any) -> str:
    entity = getattr(dialog, "entity", None)
    title = getattr(entity, "title", None)
    if title:
        return str(title)
    name = getattr(dialog, "name", None)
    if name:
        return str(name)
    first = getattr(entity, "first_name", None)
    last = getattr(entity, "last_name", None)
    if first or last:
        return " ".join(part for part in [first, last] if part)
    entity_id = getattr(entity, "id", None)
    return str(entity_id or "unknown")


def _format_dialog_line(index: int, dialog: Any, mapped: set[str]) -> str:
    chat_id = str(getattr(dialog, "id", ""))
    marker = " (mapped)" if chat_id in mapped else ""
    return f"{index}. {_dialog_type(dialog)} | {_dialog_title(dialog)} | {chat_id}{marker}"


def _discover(limit: int) -> None:
    _print_banner()
    files = _session_files()
    mapped = {mapping.external_chat_id for mapping in _open_storage().list_chat_mappings()}

    async def _run_discover() -> None:
        client = build_client(files.session_path)
        await client.connect()
        try:
            if not await client.is_user_authorized():
                print("Authorization required. Run `linkbridge login` first.")
                return
            index = 0
            async for dialog in client.iter_dialogs(limit=limit):
                index += 1
                print(_format_dialog_line(index, dialog, mapped))
            if not index:
                print("No dialogs found.")
        finally:
            await client.disconnect()

    asyncio.run(_run_discover())


def _map_chat(chat_id: str, channel_id: str, inactive: bool) -> None:
    storage = _open_storage()
    storage.upsert_chat_mapping(ChatChannelMapping(chat_id, channel_id, active=not inactive))
    state = "inactive" if inactive else "active"
    print(f"Chat {chat_id} -> channel {channel_id} ({state})")


def _monitor(guild_id: str, channel_id: str, remove: bool) -> None:
    storage = _open_storage()
    storage.set_monitored_channel(guild_id, channel_id, active=not remove)
    print(f"Channel {channel_id} in guild {guild_id} {'removed from' if remove else 'added to'} monitoring")

    load_dotenv()
    redis_url = os.getenv("REDIS_URL")
    if not redis_url:
        print("REDIS_URL not set; the running bot picks this up when its cache expires.")
        return

    async def _publish() -> bool:
        bus = RedisInvalidationBus(redis_url)
        try:
            return await bus.publish(guild_id)
        finally:
            await bus.close()

    if not asyncio.run(_publish()):
        print("Could not reach Redis; the running bot picks this up when its cache expires.")


def _clear_session() -> None:
    _configure_logging()
    files = _session_files()
    asyncio.run(files.force_clear())
    cleared = _open_storage().clear_sessions()
    print(f"Local session removed ({cleared} session record(s) cleared)")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="linkbridge")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the bridge")
    subparsers.add_parser("login", help="Log in to Telegram from the terminal")
    discover = subparsers.add_parser("discover", help="List Telegram dialogs and their chat ids")
    discover.add_argument("--limit", type=int, default=100)

    map_chat = subparsers.add_parser("map-chat", help="Map a Telegram chat to a Discord channel")
    map_chat.add_argument("chat_id")
    map_chat.add_argument("channel_id")
    map_chat.add_argument("--inactive", action="store_true", help="Store the mapping disabled")

    monitor = subparsers.add_parser("monitor", help="Track links posted in a Discord channel")
    monitor.add_argument("guild_id")
    monitor.add_argument("channel_id")
    monitor.add_argument("--remove", action="store_true", help="Stop tracking the channel")

    subparsers.add_parser("clear-session", help="Delete the local Telegram session")

    args = parser.parse_args(argv)
    if args.command == "login":
        _login()
        return
    if args.command == "discover":
        _discover(args.limit)
        return
    if args.command == "map-chat":
        _map_chat(args.chat_id, args.channel_id, args.inactive)
        return
    if args.command == "monitor":
        _monitor(args.guild_id, args.channel_id, args.remove)
        return
    if args.command == "clear-session":
        _clear_session()
        return
    _run()


if __name__ == "__main__":
    main()
