"""Rendering of QR payloads into displayable images."""

import base64
import io

import qrcode
from qrcode.constants import ERROR_CORRECT_M


def render_qr_data_url(payload: str) -> str:
    """Render a QR payload as a PNG data URL."""
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=8, border=4)
    qr.add_data(payload)
    qr.make(fit=True)
    image = qr.make_image(fill_color="#000000", back_color="#FFFFFF")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"
