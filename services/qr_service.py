"""QR code images for restaurant check-in codes."""

from __future__ import annotations

import io
import re
from urllib.parse import urlencode

import qrcode
from qrcode.constants import ERROR_CORRECT_M


def qr_payload(code, base_url=None):
    """What the QR encodes: the bare code, or a check-in URL when a public base URL is configured."""
    if not base_url:
        return code
    return f"{base_url.rstrip('/')}/check-in?{urlencode({'code': code})}"


def generate_qr_png(data: str, box_size: int = 10, border: int = 2) -> bytes:
    qr = qrcode.QRCode(
        version=None,
        error_correction=ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color='black', back_color='white')
    buf = io.BytesIO()
    img.save(buf, format='PNG')
    return buf.getvalue()


def qr_filename(name: str) -> str:
    return f"{re.sub(r'[^a-z0-9]', '-', (name or '').lower())}-qr.png"
