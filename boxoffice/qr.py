import base64
import io

import segno


def qr_png(text: str, scale: int = 10, border: int = 2) -> bytes:
    buf = io.BytesIO()
    # full-size QR only, never Micro QR
    segno.make_qr(text, error="m").save(
        buf, kind="png", scale=scale, border=border
    )
    return buf.getvalue()


def png_data_uri(png: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png).decode()
