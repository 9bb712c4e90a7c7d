import base64
import re
from io import BytesIO
from urllib.parse import quote

import qrcode


def whatsapp_digits(number) -> str:
    return re.sub(r'\D+', '', str(number or ''))


def build_whatsapp_url(number, text: str = '') -> str:
    digits = whatsapp_digits(number)
    msg = (text or '').strip()
    if msg:
        return f"https://wa.me/{digits}?text={quote(msg)}"
    return f"https://wa.me/{digits}"


def build_order_message(store_name: str, short_id: str, customer: dict, items: list, total: float) -> str:
    """Arabic order summary sent to the shop owner."""
    lines = '\n'.join(
        f"  • {item['name']} x{item['qty']} — €{item['price'] * item['qty']:.2f}"
        for item in items
    )
    msg = (
        f"🌿 *طلب جديد — {store_name}*\n"
        f"رقم الطلب: #{short_id}\n\n"
        f"👤 *الاسم:* {customer.get('name', '')}\n"
        f"📞 *الهاتف:* {customer.get('phone', '')}\n"
        f"📍 *العنوان:* {customer.get('address', '')}\n"
    )
    if customer.get('notes'):
        msg += f"📝 *ملاحظات:* {customer['notes']}\n"
    msg += (
        f"\n*المنتجات:*\n{lines}\n\n"
        f"💰 *المجموع: €{total:.2f}*\n"
        f"💳 *الدفع: عند الاستلام*"
    )
    return msg


def whatsapp_qr_data_uri(url: str) -> str:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(url)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = BytesIO()
    img.save(buffer, format='PNG')
    img_str = base64.b64encode(buffer.getvalue()).decode()
    return f'data:image/png;base64,{img_str}'
