import base64
from urllib.parse import unquote

from whatsapp import build_order_message, build_whatsapp_url, whatsapp_digits, whatsapp_qr_data_uri


def test_whatsapp_digits_strips_formatting():
    assert whatsapp_digits('+49 (170) 123-456') == '49170123456'


def test_url_without_text():
    assert build_whatsapp_url('+49 170 123456') == 'https://wa.me/49170123456'


def test_url_encodes_text():
    url = build_whatsapp_url('49170123456', 'طلب #1 & more')
    assert url.startswith('https://wa.me/49170123456?text=')
    assert ' ' not in url
    assert unquote(url.split('?text=', 1)[1]) == 'طلب #1 & more'


def test_order_message_lists_items_and_total():
    customer = {'name': 'Aya', 'phone': '+49 170 1234567', 'address': 'Main St 1', 'notes': 'ring twice'}
    items = [{'name': 'Olive Oil', 'price': 9.5, 'qty': 2}]
    msg = build_order_message('Shop', 'ABC123', customer, items, 19.0)

    assert '#ABC123' in msg
    assert 'Olive Oil x2 — €19.00' in msg
    assert '€19.00*' in msg
    assert 'ring twice' in msg


def test_order_message_omits_empty_notes():
    customer = {'name': 'Aya', 'phone': '123456', 'address': 'x', 'notes': ''}
    msg = build_order_message('Shop', 'ABC123', customer, [], 0)
    assert 'ملاحظات' not in msg


def test_qr_code_is_png_data_uri():
    uri = whatsapp_qr_data_uri('https://wa.me/49170123456')
    prefix = 'data:image/png;base64,'
    assert uri.startswith(prefix)
    assert base64.b64decode(uri[len(prefix):])[:8] == b'\x89PNG\r\n\x1a\n'


def test_link_endpoint_reprices_from_catalog(client, valid_order):
    valid_order['orderId'] = 'abc123'
    valid_order['items'][0]['price'] = 0.01
    res = client.post('/api/whatsapp/link', json=valid_order)

    assert res.status_code == 200
    data = res.get_json()
    text = unquote(data['url'].split('?text=', 1)[1])
    assert data['url'].startswith('https://wa.me/49170123456?text=')
    assert '#ABC123' in text
    assert '€19.00' in text
    assert data['qrCode'].startswith('data:image/png;base64,')


def test_link_endpoint_requires_order_id(client, valid_order):
    res = client.post('/api/whatsapp/link', json=valid_order)
    assert res.status_code == 422


def test_link_endpoint_is_rate_limited_apart_from_orders(client, valid_order):
    valid_order['orderId'] = 'abc123'
    for _ in range(5):
        assert client.post('/api/whatsapp/link', json=valid_order).status_code == 200

    res = client.post('/api/whatsapp/link', json=valid_order)
    assert res.status_code == 429
    assert 'qrCode' not in res.get_json()

    assert client.post('/api/order', json=valid_order).status_code == 200
