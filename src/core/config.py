"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class LinkTrackerConfig:
    """Link capture and read-state settings."""

    enabled: bool = True
    done_emoji: str = "✅"
    delete_emojis: tuple[str, ...] = ("❌", "🗑️")
    admin_role_patterns: tuple[str, ...] = ("admin", "moderator")
    admin_role_names: tuple[str, ...] = ("mod",)


@dataclass(frozen=True)
class BridgeConfig:
    """Forwarding settings for both directions."""

    enabled: bool = True
    archive_messages: bool = True
    max_attachment_bytes: int = 64 * 1024 * 1024
    max_concurrent_downloads: int = 3
    forwarded_emoji: str = "✅"
    media_retry_delay: float = 2.0


@dataclass(frozen=True)
class SessionConfig:
    """Session lifecycle ceilings and delays (seconds)."""

    max_auth_failures: int = 3
    max_restart_attempts: int = 10
    qr_grace_seconds: float = 10.0
    teardown_delay: float = 3.0
    restart_delay: float = 5.0
    reconnect_delay: float = 3.0
    alert_cooldown: float = 60.0
    on_demand_quiet_seconds: float = 25.0
    connect_attempts: int = 3
    startup_notice_delay: float = 20.0
    reminder_interval: float = 3600.0


@dataclass(frozen=True)
class DigestConfig:
    max_entries: int = 25
    mapping_ttl_hours: int = 24


@dataclass(frozen=True)
class RateLimitConfig:
    enabled: bool = True
    window_seconds: float = 60.0
    max_requests: int = 5


@dataclass(frozen=True)
class MaintenanceConfig:
    sweep_interval_seconds: float = 3600.0
    forwarded_retention_days: int = 90
    retention_interval_seconds: float = 86400.0
