# Overview: Pytest coverage for QR image rendering.

import io

import pytest
from PIL import Image

from pestcode.services.qr_image import (
    DATA_URL_PREFIX,
    ImageRenderError,
    QRImageRenderer,
    decode_data_url,
)


PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


class TestQRImageRenderer:
    def test_renders_png_data_url(self):
        data_url = QRImageRenderer()("25071F111B0001")
        assert data_url.startswith(DATA_URL_PREFIX)
        assert decode_data_url(data_url).startswith(PNG_SIGNATURE)

    def test_box_size_changes_image(self):
        small = decode_data_url(QRImageRenderer(box_size=2)("25071F111B-K0001"))
        large = decode_data_url(QRImageRenderer(box_size=10)("25071F111B-K0001"))
        assert Image.open(io.BytesIO(large)).size[0] == 5 * Image.open(io.BytesIO(small)).size[0]

    def test_oversized_payload_raises_render_error(self):
        with pytest.raises(ImageRenderError):
            QRImageRenderer()("x" * 5000)

    def test_decode_rejects_other_data(self):
        with pytest.raises(ValueError):
            decode_data_url("data:image/jpeg;base64,AAAA")
        with pytest.raises(ValueError):
            decode_data_url(None)
