from datetime import datetime

from markupsafe import escape

STATUS_ARABIC = {
    'new': 'جديد',
    'confirmed': 'مؤكد',
    'preparing': 'قيد التحضير',
    'delivered': 'تم التسليم',
    'cancelled': 'ملغي',
}


def render_invoice_html(order: dict, store_name: str) -> str:
    """Printable right-to-left Arabic invoice for one normalized order."""
    customer = order['customer']
    invoice_number = order['shortId']
    created = order.get('createdAt')
    order_date = datetime.fromisoformat(created).strftime('%Y-%m-%d') if created else '-'
    status = STATUS_ARABIC.get(order['status'], STATUS_ARABIC['new'])

    rows = ''.join(
        f"""
        <tr>
            <td class="item-name">{escape(item['name'])}</td>
            <td>{item['qty']}</td>
            <td>{item['price']:.2f} €</td>
            <td class="item-total">{item['price'] * item['qty']:.2f} €</td>
        </tr>"""
        for item in order['items']
    )

    notes_row = ''
    if customer.get('notes'):
        notes_row = f"""
            <div class="customer-row"><span>ملاحظات:</span> {escape(customer['notes'])}</div>"""

    return f"""<!DOCTYPE html>
<html lang="ar" dir="rtl">
<head>
<meta charset="UTF-8">
<title>فاتورة {escape(invoice_number)}</title>
<style>
    body {{ font-family: Arial, sans-serif; direction: rtl; padding: 20mm; }}
    .header {{ border-bottom: 3px solid #2A6041; margin-bottom: 20px; }}
    .invoice-number {{ color: #2A6041; font-weight: bold; }}
    table {{ width: 100%; border-collapse: collapse; margin-top: 20px; }}
    th, td {{ border: 1px solid #ddd; padding: 8px; text-align: right; }}
    .total {{ font-size: 20px; font-weight: bold; margin-top: 20px; }}
    @media print {{ body {{ padding: 0; }} }}
</style>
</head>
<body>
<div class="invoice">
    <div class="header">
        <h1>{escape(store_name)}</h1>
    </div>
    <div class="invoice-info">
        <div>فاتورة</div>
        <div class="invoice-number">#{escape(invoice_number)}</div>
        <div>التاريخ: {order_date}</div>
        <div>الحالة: {status}</div>
    </div>
    <div class="customer">
        <div class="customer-row"><span>الاسم:</span> {escape(customer['name'])}</div>
        <div class="customer-row"><span>الهاتف:</span> {escape(customer['phone'] or '-')}</div>
        <div class="customer-row"><span>العنوان:</span> {escape(customer['address'] or '-')}</div>{notes_row}
    </div>
    <table>
        <thead>
            <tr><th>المنتج</th><th>الكمية</th><th>السعر</th><th>المجموع</th></tr>
        </thead>
        <tbody>{rows}
        </tbody>
    </table>
    <div class="total">المجموع الكلي: <span class="total-value">{order['total']:.2f} €</span></div>
    <div class="payment">الدفع: عند الاستلام</div>
</div>
</body>
</html>"""
