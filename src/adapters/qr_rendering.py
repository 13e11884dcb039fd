"""QR code rendering for login tokens."""

from __future__ import annotations

import io

import qrcode


def render_png(token: str, box_size: int = 16, border: int = 2) -> bytes:
    """Render ``token`` as a PNG (about 512px for a login URL)."""

    qr = qrcode.QRCode(box_size=box_size, border=border)
    qr.add_data(token)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def print_ascii(token: str) -> None:
    qr = qrcode.QRCode(border=1)
    qr.add_data(token)
    qr.make(fit=True)
    qr.print_ascii(invert=True)
