"""Interactive terminal login for the Telegram session (``linkbridge login``).

The bridge can also log in from Discord via /telegram_auth; this path is for
first-time setup on the host.
"""

import logging
import os
from getpass import getpass

from dotenv import load_dotenv
from telethon import TelegramClient, errors

from adapters.qr_rendering import print_ascii

load_dotenv()

QR_TIMEOUT_SECONDS = 120


def _resolve_2fa_password() -> str:
    password = os.getenv("TELEGRAM_2FA")
    if password:
        return password
    return getpass("2FA password: ")


async def _authorize_with_qr(client: TelegramClient) -> None:
    qr = await client.qr_login()
    print("Scan with Telegram: Settings > Devices > Link Desktop Device")
    print_ascii(qr.url)
    await qr.wait(timeout=QR_TIMEOUT_SECONDS)


async def _authorize_with_phone(client: TelegramClient) -> None:
    phone = os.getenv("PHONE") or input("Phone number (international format): ").strip()
    await client.send_code_request(phone)
    code = input("Login code: ").strip()
    try:
        await client.sign_in(phone=phone, code=code)
    except errors.SessionPasswordNeededError:
        await client.sign_in(password=_resolve_2fa_password())


def _pick_login_method() -> str:
    method = (os.getenv("LOGIN_METHOD") or "").strip().lower()
    if method in {"qr", "phone"}:
        return method
    while True:
        print("")
        print("Login methods:")
        print("[1] QR code")
        print("[2] Phone code")
        print("[3] Exit")
        print("Select a login method: \n")
        choice = input("linkbridge > ").strip()
        if choice == "1":
            return "qr"
        elif choice == "2":
            return "phone"
        elif choice == "3":
            raise SystemExit(0)
        else:
            print("Invalid option. Please choose 1, 2, or 3.")


async def authorize(client: TelegramClient) -> None:
    if await client.is_user_authorized():
        return

    try:
        method = _pick_login_method()
        if method == "phone":
            await _authorize_with_phone(client)
        else:
            await _authorize_with_qr(client)
    except errors.SessionPasswordNeededError:
        await client.sign_in(password=_resolve_2fa_password())


async def login(client: TelegramClient) -> str:
    """Connect, authorize if needed and return a short account description."""

    await client.connect()
    try:
        await authorize(client)
        me = await client.get_me()
        logging.getLogger(__name__).info("Logged in as: %s", me.first_name)
        return f"{me.first_name} (id {me.id})"
    finally:
        await client.disconnect()
