"""
QR code rendering – JSON payloads encoded as PNG data URLs.
"""
import base64
import io
import json

import qrcode


def qr_data_url(payload) -> str:
    """Render ``payload`` (dict or str) as a ``data:image/png;base64,...`` URL."""
    data = payload if isinstance(payload, str) else json.dumps(payload, separators=(',', ':'))

    qr = qrcode.QRCode(
        version=None,  # auto
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=8,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color='black', back_color='white')

    buf = io.BytesIO()
    img.save(buf, format='PNG')
    return 'data:image/png;base64,' + base64.b64encode(buf.getvalue()).decode('ascii')
