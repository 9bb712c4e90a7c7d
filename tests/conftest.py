import itertools

import pytest

from app import app as flask_app
from catalog import Catalog
from rate_limit import InMemoryRateLimiter

ADMIN_SECRET = 'test-admin-secret'

TEST_PRODUCTS = [
    {'id': 'olive-oil-1L', 'name': 'Extra Virgin Olive Oil 1L', 'price': 9.50, 'category': 'Olive Oil', 'origin': 'Syria'},
    {'id': 'honey-sidr-250g', 'name': 'Sidr Honey 250g', 'price': 18.50, 'category': 'Honey', 'origin': 'Yemen'},
    {'id': 'sesame-oil-500ml', 'name': 'Sesame Oil 500ml', 'price': 6.95, 'category': 'Oils', 'origin': 'Syria'},
    {'id': 'cheap-thing', 'name': 'Cheap Thing', 'price': 0.105, 'category': 'Oils', 'origin': 'Egypt'},
]


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeOrderStore:
    """In-memory stand-in for the Firestore orders collection."""

    def __init__(self):
        self.orders = {}
        self.fail_writes = False
        self._ids = itertools.count(1)

    def add_order(self, record):
        if self.fail_writes:
            raise RuntimeError('deadline exceeded')
        doc_id = f"fakeDocId{next(self._ids):05d}abc"
        self.orders[doc_id] = dict(record, createdAt='2026-10-01T12:00:00+00:00')
        return doc_id

    def get_order(self, order_id):
        data = self.orders.get(order_id)
        return None if data is None else {'id': order_id, **data}

    def list_orders(self, limit=None):
        docs = [{'id': k, **v} for k, v in self.orders.items()]
        return docs[:limit] if limit else docs

    def update_status(self, order_id, status):
        if order_id not in self.orders:
            return False
        self.orders[order_id]['status'] = status
        return True

    def ping(self):
        return min(len(self.orders), 1)


@pytest.fixture
def catalog():
    return Catalog(TEST_PRODUCTS)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return InMemoryRateLimiter(max_requests=5, window_seconds=600, clock=clock)


@pytest.fixture
def store():
    return FakeOrderStore()


@pytest.fixture
def app(catalog, limiter, store):
    saved = dict(flask_app.config)
    flask_app.config.update(
        TESTING=True,
        CATALOG=catalog,
        RATE_LIMITER=limiter,
        ORDER_STORE=store,
        ADMIN_SECRET=ADMIN_SECRET,
        API_SECRET=None,
        ALLOWED_ORIGINS=['https://shop.example.com'],
        LOCAL_DEV=False,
        WHATSAPP_NUMBER='+49 170 123456',
        STORE_NAME='Test Store',
    )
    yield flask_app
    flask_app.config.clear()
    flask_app.config.update(saved)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers():
    return {'x-admin-secret': ADMIN_SECRET}


@pytest.fixture
def valid_order():
    return {
        'customer': {'name': 'Aya', 'phone': '+49 170 1234567', 'address': 'Main St 1'},
        'items': [{'id': 'olive-oil-1L', 'qty': 2}],
    }
