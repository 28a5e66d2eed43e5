import os
import uuid

import qrcode
from app.core.config import settings


QR_CODE_DIR = settings.static_dir / "qrcodes"
STATIC_URL_PREFIX = "/static/qrcodes"


def passport_url(product_id: uuid.UUID) -> str:
    """Public page a scanned passport label resolves to."""
    return f"{settings.public_url}/passport/{product_id}"


def generate_passport_qr(product_id: uuid.UUID) -> str:
    """
    Renders the label QR code for a published passport into the static
    directory and returns its public URL. Re-publishing overwrites the file.
    """
    os.makedirs(QR_CODE_DIR, exist_ok=True)

    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=8,
        border=4,
    )
    qr.add_data(passport_url(product_id))
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    filename = f"passport-{product_id}.png"
    img.save(QR_CODE_DIR / filename)

    return f"{settings.public_url}{STATIC_URL_PREFIX}/{filename}"
