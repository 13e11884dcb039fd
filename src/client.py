"""Telegram client factory for linkbridge.

The session lifecycle manager owns connect/teardown, so the factory only
builds a client bound to the session file; a fresh client is built after
every teardown because the old one holds the session file open.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from telethon import TelegramClient

# Telethon retries dropped connections itself before reporting a disconnect.
CONNECTION_RETRIES = 5
RETRY_DELAY_SECONDS = 5


def build_client(session_path: str) -> TelegramClient:
    """Create a Telethon client from environment variables.

    API_ID/API_HASH are read via python-dotenv to keep secrets out of the repo.
    """

    load_dotenv()

    api_id = os.getenv("API_ID")
    api_hash = os.getenv("API_HASH")

    # Fail fast on missing credentials to avoid an ambiguous login prompt.
    if not api_id or not api_hash:
        raise RuntimeError("Missing API_ID or API_HASH in environment")

    logging.getLogger(__name__).info("Initializing Telegram client (%s)", session_path)

    return TelegramClient(
        session_path,
        int(api_id),
        api_hash,
        connection_retries=CONNECTION_RETRIES,
        retry_delay=RETRY_DELAY_SECONDS,
        auto_reconnect=True,
    )
