import base64
from io import BytesIO

import qrcode
from qrcode.constants import ERROR_CORRECT_M


def render_png(short_url: str, box_size: int = 10) -> bytes:
    qr = qrcode.QRCode(
        version=None, box_size=box_size, border=4,
        error_correction=ERROR_CORRECT_M
    )
    qr.add_data(short_url)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()

def render_base64(short_url: str, box_size: int = 10) -> str:
    return base64.b64encode(render_png(short_url, box_size)).decode()
