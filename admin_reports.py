"""Read-side helpers for the admin dashboard: order listing, customers and sales analytics."""
from datetime import datetime, timedelta, timezone
from typing import Optional

from order_intake import round_money, short_order_id
from order_store import to_iso


def _qty(item: dict) -> int:
    return item.get('qty') or item.get('quantity') or 1


def _price(item: dict) -> float:
    return item.get('price') or item.get('priceEach') or 0


def normalize_order(doc: dict) -> dict:
    """Flatten a stored order into the dashboard shape.

    Older documents kept customer fields at the top level
    (``customerName``, ``customerPhone``, ...); both layouts are accepted.
    """
    customer = doc.get('customer') or {}
    items = [
        {
            'id': item.get('id'),
            'name': item.get('name') or item.get('productName') or '?',
            'price': _price(item),
            'qty': _qty(item),
            'category': item.get('category', ''),
        }
        for item in (doc.get('items') or [])
    ]
    created = doc.get('createdAt') or doc.get('timestamp')
    return {
        'id': doc['id'],
        'shortId': short_order_id(doc['id']),
        'customer': {
            'name': doc.get('customerName') or customer.get('name') or 'Unknown',
            'phone': doc.get('customerPhone') or customer.get('phone') or '',
            'address': doc.get('customerAddress') or customer.get('address') or '',
            'notes': doc.get('note') or doc.get('notes') or customer.get('notes') or '',
        },
        'items': items,
        'total': doc.get('total') or 0,
        'status': (doc.get('status') or 'new').lower(),
        'paymentMethod': doc.get('paymentMethod'),
        'createdAt': to_iso(created),
    }


def sort_newest_first(orders: list) -> list:
    dated = sorted((o for o in orders if o['createdAt']), key=lambda o: o['createdAt'], reverse=True)
    return dated + [o for o in orders if not o['createdAt']]


def items_total(order: dict) -> float:
    return sum(i['price'] * i['qty'] for i in order['items'])


def _parse(iso: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(iso) if iso else None


def group_customers(orders: list) -> list:
    """Group orders by phone (falling back to name), biggest spenders first."""
    customers = {}
    for order in orders:
        c = order['customer']
        key = c['phone'] or c['name']
        entry = customers.setdefault(key, {
            'name': c['name'],
            'phone': c['phone'],
            'address': c['address'],
            'whatsapp': c['phone'],
            'orderCount': 0,
            'totalSpent': 0,
            'orders': [],
            'lastOrderDate': None,
        })
        entry['orderCount'] += 1
        entry['totalSpent'] += order['total']
        entry['orders'].append({
            'id': order['id'],
            'shortId': order['shortId'],
            'total': order['total'],
            'status': order['status'],
            'date': order['createdAt'],
        })
        created = _parse(order['createdAt'])
        last = _parse(entry['lastOrderDate'])
        if created and (last is None or created > last):
            entry['lastOrderDate'] = order['createdAt']

    result = list(customers.values())
    for entry in result:
        entry['totalSpent'] = round_money(entry['totalSpent'])
    result.sort(key=lambda c: c['totalSpent'], reverse=True)
    return result


def filter_by_period(orders: list, days=None, now: Optional[datetime] = None) -> list:
    if not days:
        return list(orders)
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=days)
    return [o for o in orders if o['createdAt'] and _parse(o['createdAt']) >= cutoff]


def _bucket_key(iso: str, bucket: str) -> str:
    if bucket == 'day':
        return iso[:10]
    if bucket == 'month':
        return iso[:7]
    return iso[:4]


def sales_analytics(orders: list, days=None, bucket: str = 'month', now: Optional[datetime] = None) -> dict:
    selected = filter_by_period(orders, days, now)

    revenue = sum(items_total(o) for o in selected)
    count = len(selected)
    delivered = sum(1 for o in selected if o['status'] == 'delivered')

    products = {}
    buckets = {}
    for order in selected:
        for item in order['items']:
            p = products.setdefault(item['name'], {
                'name': item['name'], 'qty': 0, 'revenue': 0, 'category': item.get('category', ''),
            })
            p['qty'] += item['qty']
            p['revenue'] += item['price'] * item['qty']
        if order['createdAt']:
            key = _bucket_key(order['createdAt'], bucket)
            buckets[key] = buckets.get(key, 0) + items_total(order)

    top_products = sorted(products.values(), key=lambda p: p['revenue'], reverse=True)
    for p in top_products:
        p['revenue'] = round_money(p['revenue'])
        p['share'] = round(p['revenue'] / revenue * 100) if revenue else 0

    top_by_qty = max(products.values(), key=lambda p: p['qty'], default=None)

    # top customers are ranked over the whole history, not the selected period
    spenders = {}
    for order in orders:
        c = order['customer']
        s = spenders.setdefault(c['name'], {'name': c['name'], 'phone': c['phone'], 'total': 0, 'count': 0})
        s['total'] += items_total(order)
        s['count'] += 1
    top_customers = sorted(spenders.values(), key=lambda s: s['total'], reverse=True)
    for s in top_customers:
        s['total'] = round_money(s['total'])

    return {
        'revenue': round_money(revenue),
        'orders': count,
        'averageOrder': round_money(revenue / count) if count else 0,
        'deliveryRate': round(delivered / count * 100) if count else 0,
        'itemsSold': sum(i['qty'] for o in selected for i in o['items']),
        'customers': len({o['customer']['name'] for o in selected if o['customer']['name'] != 'Unknown'}),
        'topProduct': top_by_qty['name'] if top_by_qty else None,
        'revenueByPeriod': [
            {'period': k, 'revenue': round_money(v)} for k, v in sorted(buckets.items())
        ],
        'topProducts': top_products,
        'topCustomers': top_customers,
    }
