"""
QR codes pointing at the public verification endpoint.
"""

from io import BytesIO

import qrcode
from qrcode.exceptions import DataOverflowError

from .exceptions import RenderError

VERIFY_PATH = "/api/v1/verify"


def build_verification_url(app_url: str, token: str) -> str:
    """Returns the fully qualified verification URL for a token."""
    return f"{app_url.rstrip('/')}{VERIFY_PATH}/{token}"


def generate_qr_png(content: str, box_size: int = 6, border: int = 2) -> bytes:
    """
    Encodes content as a PNG QR code with medium error correction.

    Raises:
        RenderError: If the payload cannot be encoded
    """
    if not content:
        raise RenderError("QR payload is empty")

    try:
        qr = qrcode.QRCode(
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=box_size,
            border=border,
        )
        qr.add_data(content)
        qr.make(fit=True)
        image = qr.make_image(fill_color="black", back_color="white")
        buffer = BytesIO()
        image.save(buffer, format="PNG")
    except (DataOverflowError, ValueError, OSError) as e:
        raise RenderError(f"Failed to generate QR code: {e}") from e

    return buffer.getvalue()
