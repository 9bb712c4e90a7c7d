"""
Order intake: turns an untrusted order submission into a priced, sanitized
order record ready for the orders collection.

Gates run in order and the first failure wins:

    rate limit -> body shape -> customer fields -> cart size -> items
    -> total -> sanitize -> persist

Prices and product names always come from the catalog. Nothing is written
before the final ``store.add_order`` call, so a failed submission can be
retried as a whole.
"""
import math
import re
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional

ORDER_STATUSES = ('new', 'confirmed', 'preparing', 'delivered', 'cancelled')
INITIAL_STATUS = 'new'
PAYMENT_METHOD = 'cash_on_delivery'

NAME_MAX = 100
ADDRESS_MAX = 300
NOTES_MAX = 500
MAX_CART_ITEMS = 50
MIN_QTY = 1
MAX_QTY = 99
USER_AGENT_MAX = 200
SHORT_ID_LENGTH = 6

PHONE_PATTERN = re.compile(r'^[0-9\s+\-()]{6,20}$')

_TAG_RE = re.compile(r'<[^>]*>')
_JS_URI_RE = re.compile(r'javascript\s*:', re.IGNORECASE)
# attribute position only: after whitespace, a slash or a quote
_EVENT_HANDLER_RE = re.compile(r'(?<=[\s/"\'])on\w+\s*=', re.IGNORECASE)
_UNSAFE_CHARS_RE = re.compile(r'[<>"\'`]')


class OrderErrorKind(Enum):
    RATE_LIMITED = 'rate_limited'
    INVALID_INPUT = 'invalid_input'
    UNKNOWN_PRODUCT = 'unknown_product'
    STORAGE_FAILURE = 'storage_failure'
    FORBIDDEN = 'forbidden'


class OrderIntakeError(Exception):
    def __init__(self, kind: OrderErrorKind, message: str, fields: Optional[dict] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.fields = fields

    def to_payload(self) -> dict:
        if self.fields:
            return {'error': self.message, 'fields': dict(self.fields)}
        return {'error': self.message}


def sanitize_text(value) -> str:
    """Strip HTML tags and script-injection patterns from free text.

    Removal repeats until nothing changes, so sanitizing twice gives the
    same result as sanitizing once.
    """
    if value is None:
        return ''
    text = str(value)
    while True:
        cleaned = _TAG_RE.sub('', text)
        cleaned = _JS_URI_RE.sub('', cleaned)
        cleaned = _EVENT_HANDLER_RE.sub('', cleaned)
        cleaned = _UNSAFE_CHARS_RE.sub('', cleaned)
        cleaned = cleaned.strip()
        if cleaned == text:
            return cleaned
        text = cleaned


def _text(value) -> str:
    return value.strip() if isinstance(value, str) else ''


def validate_customer(data) -> tuple:
    """Check every customer field and return ``(customer, errors)``.

    All problems are collected so a client can flag every bad field at once.
    ``customer`` holds trimmed but not yet sanitized values.
    """
    if not isinstance(data, dict):
        data = {}
    errors = {}

    # a value that is nothing but markup would be stored empty
    name = _text(data.get('name'))
    if not sanitize_text(name):
        errors['name'] = 'Name is required'
    elif len(name) > NAME_MAX:
        errors['name'] = f'Name must be at most {NAME_MAX} characters'

    phone = _text(data.get('phone'))
    if not phone:
        errors['phone'] = 'Phone is required'
    elif not PHONE_PATTERN.match(phone):
        errors['phone'] = 'Invalid phone number'

    address = _text(data.get('address'))
    if not sanitize_text(address):
        errors['address'] = 'Address is required'
    elif len(address) > ADDRESS_MAX:
        errors['address'] = f'Address must be at most {ADDRESS_MAX} characters'

    raw_notes = data.get('notes')
    notes = ''
    if raw_notes is not None:
        if not isinstance(raw_notes, str):
            errors['notes'] = 'Notes must be text'
        elif len(raw_notes.strip()) > NOTES_MAX:
            errors['notes'] = f'Notes must be at most {NOTES_MAX} characters'
        else:
            notes = raw_notes.strip()

    customer = {'name': name, 'phone': phone, 'address': address, 'notes': notes}
    return customer, errors


def _is_number(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def validate_items(items, catalog) -> list:
    """Resolve each cart line against the catalog.

    Client-sent ``price`` and ``name`` are ignored; the returned items carry
    the catalog values.
    """
    if not isinstance(items, list) or not items:
        raise OrderIntakeError(OrderErrorKind.INVALID_INPUT, 'Cart is empty')
    if len(items) > MAX_CART_ITEMS:
        raise OrderIntakeError(OrderErrorKind.INVALID_INPUT, 'Too many items')

    validated = []
    for item in items:
        if not isinstance(item, dict) or not item.get('id') or not _is_number(item.get('qty')):
            raise OrderIntakeError(OrderErrorKind.INVALID_INPUT, 'Invalid item')

        product_id = item['id']
        product = catalog.get(product_id)
        if product is None:
            raise OrderIntakeError(OrderErrorKind.UNKNOWN_PRODUCT, f'Unknown product: {product_id}')

        qty = math.floor(item['qty'])
        if qty < MIN_QTY or qty > MAX_QTY:
            raise OrderIntakeError(OrderErrorKind.INVALID_INPUT, f'Invalid quantity for {product_id}')

        validated.append({
            'id': product['id'],
            'name': product['name'],
            'price': product['price'],
            'qty': qty,
        })
    return validated


def round_money(value) -> float:
    """Round half up to cents."""
    return float(Decimal(str(value)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


def compute_total(items: list) -> float:
    total = sum((Decimal(str(i['price'])) * i['qty'] for i in items), Decimal('0'))
    return float(total.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


def build_order_record(customer: dict, items: list, total: float, ip=None, user_agent=None) -> dict:
    """Assemble the stored order. ``createdAt`` is left to the store's server clock."""
    return {
        'customer': {
            'name': sanitize_text(customer.get('name')),
            'phone': (customer.get('phone') or '').strip(),
            'address': sanitize_text(customer.get('address')),
            'notes': sanitize_text(customer.get('notes')),
        },
        'items': items,
        'total': total,
        'status': INITIAL_STATUS,
        'paymentMethod': PAYMENT_METHOD,
        'meta': {
            'ip': ip or 'unknown',
            'userAgent': (user_agent or '')[:USER_AGENT_MAX],
        },
    }


def short_order_id(doc_id: str) -> str:
    return (doc_id or '')[-SHORT_ID_LENGTH:].upper()


def validate_order(body, catalog) -> tuple:
    """Pure validation of a submission body: returns ``(customer, items, total)``."""
    if not isinstance(body, dict):
        raise OrderIntakeError(OrderErrorKind.INVALID_INPUT, 'Invalid request body')

    customer, errors = validate_customer(body.get('customer'))
    if errors:
        raise OrderIntakeError(OrderErrorKind.INVALID_INPUT, 'Validation failed', fields=errors)

    items = validate_items(body.get('items'), catalog)
    return customer, items, compute_total(items)


def submit_order(body, *, ip, user_agent, catalog, limiter, store) -> dict:
    """Run every intake gate and persist the order.

    Returns ``{'id', 'orderId', 'total', 'order'}`` where ``orderId`` is the
    short human-facing id. Raises ``OrderIntakeError`` on any rejection.
    """
    if not limiter.check_and_increment(ip or 'unknown'):
        raise OrderIntakeError(
            OrderErrorKind.RATE_LIMITED, 'Too many orders. Please try again later.'
        )

    customer, items, total = validate_order(body, catalog)
    record = build_order_record(customer, items, total, ip=ip, user_agent=user_agent)

    try:
        doc_id = store.add_order(record)
    except Exception as e:
        print(f"[ERROR] Failed to save order: {e}")
        raise OrderIntakeError(
            OrderErrorKind.STORAGE_FAILURE, 'Failed to save order. Please try again.'
        ) from e

    short_id = short_order_id(doc_id)
    print(f"[SUCCESS] Order #{short_id} saved ({len(items)} items, total {total:.2f})")
    return {'id': doc_id, 'orderId': short_id, 'total': total, 'order': record}
