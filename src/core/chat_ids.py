"""Helpers for matching personal-chat ids across their equivalent forms.

Telegram reports the same group as a bare id, a negative chat id, or a
``-100`` prefixed channel peer id depending on where it was copied from.
Mappings are matched on any of these forms.
"""

from __future__ import annotations


def _expand_numeric_variants(raw_chat_id: int) -> list[int]:
    variants = [raw_chat_id]
    if raw_chat_id < 0:
        raw_text = str(raw_chat_id)
        if raw_text.startswith("-100"):
            # Channel/supergroup peer id: -100<channel_id>
            channel_part = raw_text[4:]
            if channel_part.isdigit():
                variants.append(int(channel_part))
        else:
            variants.append(abs(raw_chat_id))
        return variants

    # Positive id: add PeerChat and PeerChannel-style ids.
    variants.append(-raw_chat_id)
    variants.append(-1000000000000 - raw_chat_id)
    return variants


def chat_id_variants(chat_id: str) -> list[str]:
    """Return ``chat_id`` first, followed by its equivalent peer-id forms.

    Non-numeric ids (usernames, ``123@personal`` style ids) only match
    themselves.
    """

    text = str(chat_id).strip()
    try:
        raw = int(text)
    except ValueError:
        return [text]
    ordered: list[str] = []
    for variant in _expand_numeric_variants(raw):
        value = str(variant)
        if value not in ordered:
            ordered.append(value)
    return ordered
