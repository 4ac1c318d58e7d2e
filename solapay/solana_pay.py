import base64
import io
from decimal import Decimal
from urllib.parse import quote, urlencode

import qrcode
from qrcode.image.svg import SvgPathImage


def format_amount(amount) -> str:
    return format(Decimal(amount).normalize(), "f")


def encode_transfer_url(recipient, amount, spl_token=None, reference=None, label=None, message=None, memo=None) -> str:
    """Build a Solana Pay transfer request URL (``solana:<recipient>?...``)."""
    params = [("amount", format_amount(amount))]
    if spl_token is not None:
        params.append(("spl-token", str(spl_token)))
    if reference is not None:
        params.append(("reference", str(reference)))
    if label:
        params.append(("label", label))
    if message:
        params.append(("message", message))
    if memo:
        params.append(("memo", memo))
    return f"solana:{recipient}?{urlencode(params, quote_via=quote)}"


def qr_data_url(url: str) -> str:
    """Render ``url`` as an SVG QR code and return it as a data URL."""
    image = qrcode.make(url, image_factory=SvgPathImage, border=2)
    buffer = io.BytesIO()
    image.save(buffer)
    return "data:image/svg+xml;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")
