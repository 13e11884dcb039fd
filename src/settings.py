"""Static configuration for linkbridge.

All user-editable settings (channels, chat mappings, session behaviour,
logging) live in a single JSON file for quick edits without touching Python.
Secrets stay in the environment (.env).
"""

import json
import os

from core.config import (
    BridgeConfig,
    DigestConfig,
    LinkTrackerConfig,
    MaintenanceConfig,
    RateLimitConfig,
    SessionConfig,
)

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# Where to store the SQLite database.
DB_PATH = os.path.join(os.path.dirname(__file__), "linkbridge.db")

CONFIG_PATH = os.path.join(PROJECT_ROOT, "config.json")


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _optional_int(value) -> "int | None":
    if value in (None, ""):
        return None
    return int(value)


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Discord: the admin channel receives QR prompts and alerts.
_discord = _CONFIG.get("discord", {})
ADMIN_CHANNEL_ID = _optional_int(_discord.get("admin_channel_id"))
# guild_id -> [channel_id, ...], seeded into the database on startup.
MONITORED_CHANNELS = {
    str(guild_id): [str(channel_id) for channel_id in channels]
    for guild_id, channels in _discord.get("monitored_channels", {}).items()
}

_tracker = _CONFIG.get("link_tracker", {})
LINK_TRACKER = LinkTrackerConfig(
    enabled=bool(_tracker.get("enabled", True)),
    done_emoji=_tracker.get("done_emoji", "✅"),
    delete_emojis=tuple(_tracker.get("delete_emojis", ["❌", "🗑️"])),
    admin_role_patterns=tuple(_tracker.get("admin_role_patterns", ["admin", "moderator"])),
    admin_role_names=tuple(_tracker.get("admin_role_names", ["mod"])),
)

# Bridge: chats[] maps Telegram chat ids to Discord channel ids.
_bridge = _CONFIG.get("bridge", {})
BRIDGE = BridgeConfig(
    enabled=bool(_bridge.get("enabled", True)),
    archive_messages=bool(_bridge.get("archive_messages", True)),
    max_attachment_bytes=int(float(_bridge.get("max_attachment_mb", 64)) * 1024 * 1024),
    max_concurrent_downloads=int(_bridge.get("max_concurrent_downloads", 3)),
    forwarded_emoji=_bridge.get("forwarded_emoji", "✅"),
)
TIMEZONE = _bridge.get("timezone", "UTC")
CHAT_MAPPINGS = [
    entry for entry in _bridge.get("chats", []) if entry.get("chat_id") and entry.get("channel_id")
]

_session = _CONFIG.get("session", {})
SESSION_DIR = _resolve_path(_session.get("directory", "sessions"))
SESSION_NAME = _session.get("name", "linkbridge")
QR_ROUNDS = int(_session.get("qr_rounds", 5))
SESSION = SessionConfig(
    max_auth_failures=int(_session.get("max_auth_failures", 3)),
    max_restart_attempts=int(_session.get("max_restart_attempts", 10)),
    qr_grace_seconds=float(_session.get("qr_grace_seconds", 10)),
    teardown_delay=float(_session.get("teardown_delay_seconds", 3)),
    restart_delay=float(_session.get("restart_delay_seconds", 5)),
    reconnect_delay=float(_session.get("reconnect_delay_seconds", 3)),
    startup_notice_delay=float(_session.get("startup_notice_delay_seconds", 20)),
    reminder_interval=float(_session.get("reminder_interval_seconds", 3600)),
)

_digest = _CONFIG.get("digest", {})
DIGEST = DigestConfig(
    max_entries=int(_digest.get("max_entries", 25)),
    mapping_ttl_hours=int(_digest.get("mapping_ttl_hours", 24)),
)

_rate_limit = _CONFIG.get("rate_limit", {})
RATE_LIMIT = RateLimitConfig(
    enabled=bool(_rate_limit.get("enabled", True)),
    window_seconds=float(_rate_limit.get("window_seconds", 60)),
    max_requests=int(_rate_limit.get("max_requests", 5)),
)

# Monitored-channel cache lifetime; Redis invalidation shortens it when available.
CACHE_TTL_SECONDS = float(_CONFIG.get("cache", {}).get("ttl_seconds", 60))

_health = _CONFIG.get("health", {})
HEALTH_ENABLED = bool(_health.get("enabled", True))
HEALTH_HOST = _health.get("host", "0.0.0.0")
HEALTH_PORT = int(_health.get("port", 8080))

_maintenance = _CONFIG.get("maintenance", {})
MAINTENANCE = MaintenanceConfig(
    sweep_interval_seconds=float(_maintenance.get("sweep_interval_minutes", 60)) * 60,
    forwarded_retention_days=int(_maintenance.get("forwarded_retention_days", 90)),
)

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
