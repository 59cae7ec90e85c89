# digistore/services/payments.py
# UPI: номер заказа, deep link upi://pay и QR-код для оплаты.
# Функции чистые: запрос на оплату можно пересоздавать при каждом просмотре заказа.
import asyncio
import base64
import io
import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from urllib.parse import urlencode

import qrcode
from PIL import Image
from qrcode.image.pil import PilImage

from digistore.core.config import settings
from digistore.core.errors import DependencyUnavailable

logger = logging.getLogger(__name__)

BASE36 = string.digits + string.ascii_uppercase

QR_WIDTH = 300
QR_MARGIN = 2


@dataclass
class PaymentRequest:
    upi_id: str
    amount: str
    note: str
    link: str
    qr_code: str


def generate_order_number(now: datetime | None = None) -> str:
    """ORD-YYYYMM-XXXXXX; уникальность вероятностная, её гарантирует индекс в БД."""
    now = now or datetime.utcnow()
    suffix = "".join(secrets.choice(BASE36) for _ in range(6))
    return f"ORD-{now:%Y%m}-{suffix}"


def format_amount(amount) -> str:
    return str(Decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def build_upi_link(upi_id: str, name: str, amount, order_number: str, note: str | None = None) -> str:
    params = {
        "pa": upi_id,  # VPA получателя
        "pn": name,
        "am": format_amount(amount),
        "tn": note or f"Order: {order_number}",
        "tr": order_number,
        "cu": settings.UPI_CURRENCY,
    }
    return f"upi://pay?{urlencode(params)}"


def render_qr_png(text: str) -> bytes:
    """QR с уровнем коррекции M, рамкой 2 модуля, 300px, чёрное на белом."""
    qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_M, border=QR_MARGIN)
    qr.add_data(text)
    qr.make(fit=True)
    img = qr.make_image(image_factory=PilImage, fill_color="black", back_color="white")
    pil = img.get_image().convert("RGB").resize((QR_WIDTH, QR_WIDTH), Image.NEAREST)
    buf = io.BytesIO()
    pil.save(buf, format="PNG")
    return buf.getvalue()


async def render_qr_data_uri(text: str) -> str:
    try:
        png = await asyncio.to_thread(render_qr_png, text)
    except Exception as e:
        logger.error(f"QR rendering failed: {e}", exc_info=True)
        raise DependencyUnavailable("Failed to generate payment QR code") from e
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


async def build_payment_request(
    amount,
    order_number: str,
    payee_identity: str | None = None,
    payee_name: str | None = None,
    note: str | None = None,
) -> PaymentRequest:
    upi_id = payee_identity or settings.UPI_ID
    name = payee_name or settings.UPI_NAME
    link = build_upi_link(upi_id, name, amount, order_number, note)
    return PaymentRequest(
        upi_id=upi_id,
        amount=format_amount(amount),
        note=note or f"Order: {order_number}",
        link=link,
        qr_code=await render_qr_data_uri(link),
    )
