# Overview: Renders a code string into a scannable PNG, returned as a data URL.

from __future__ import annotations

import base64
import io

import qrcode
from qrcode.constants import ERROR_CORRECT_M


DATA_URL_PREFIX = "data:image/png;base64,"


class ImageRenderError(Exception):
    """Raised when a QR image cannot be produced."""
    pass


class QRImageRenderer:
    """
    Callable renderer: renderer("25071F111B0001") -> "data:image/png;base64,...".

    Error correction M; box_size and border come from config
    (QR_IMAGE_BOX_SIZE, QR_IMAGE_BORDER).
    """

    def __init__(self, *, box_size: int = 8, border: int = 2,
                 fill_color: str = "black", back_color: str = "white"):
        self.box_size = box_size
        self.border = border
        self.fill_color = fill_color
        self.back_color = back_color

    def __call__(self, data: str) -> str:
        try:
            qr = qrcode.QRCode(
                version=None,
                error_correction=ERROR_CORRECT_M,
                box_size=self.box_size,
                border=self.border,
            )
            qr.add_data(data)
            qr.make(fit=True)
            img = qr.make_image(fill_color=self.fill_color, back_color=self.back_color)

            buf = io.BytesIO()
            img.save(buf, format="PNG")
        except Exception as exc:
            raise ImageRenderError(f"Failed to generate QR code image: {exc}") from exc

        return DATA_URL_PREFIX + base64.b64encode(buf.getvalue()).decode("ascii")


def decode_data_url(data_url: str) -> bytes:
    """PNG bytes from a data URL produced by QRImageRenderer."""
    if not data_url or not data_url.startswith(DATA_URL_PREFIX):
        raise ValueError("Not a PNG data URL")
    return base64.b64decode(data_url[len(DATA_URL_PREFIX):])
