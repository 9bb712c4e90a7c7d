import os
from datetime import datetime, timezone
from typing import Optional

import firebase_admin
from firebase_admin import credentials, firestore

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DEFAULT_FIREBASE_CONFIG_PATH = os.path.join(BASE_DIR, 'firebase_config.json')

ORDERS_COLLECTION = 'orders'

_firestore_client = None


def load_firebase_credentials():
    """Service-account file first, then the three FIREBASE_* env vars."""
    config_path = os.getenv('FIREBASE_CONFIG_PATH', DEFAULT_FIREBASE_CONFIG_PATH)
    if os.path.exists(config_path):
        return credentials.Certificate(config_path)

    project_id = os.getenv('FIREBASE_PROJECT_ID')
    client_email = os.getenv('FIREBASE_CLIENT_EMAIL')
    private_key = os.getenv('FIREBASE_PRIVATE_KEY')
    if not (project_id and client_email and private_key):
        raise RuntimeError('Firebase credentials are not configured')

    return credentials.Certificate({
        'type': 'service_account',
        'project_id': project_id,
        'client_email': client_email,
        # hosting dashboards store multi-line secrets with literal \n
        'private_key': private_key.replace('\\n', '\n'),
        'token_uri': 'https://oauth2.googleapis.com/token',
    })


def get_firestore_client():
    global _firestore_client
    if _firestore_client is None:
        if not firebase_admin._apps:
            firebase_admin.initialize_app(load_firebase_credentials())
        _firestore_client = firestore.client()
        print("[INFO] Firestore client initialised")
    return _firestore_client


def to_iso(value) -> Optional[str]:
    """Render a stored timestamp (Firestore datetime, epoch millis or ISO text) as ISO-8601."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return None
    if isinstance(value, datetime):
        # naive values are UTC so every result compares with every other
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc).isoformat()
    return None


class FirestoreOrderStore:
    def __init__(self, client=None, collection: str = ORDERS_COLLECTION):
        self._client = client
        self.collection = collection

    @property
    def client(self):
        if self._client is None:
            self._client = get_firestore_client()
        return self._client

    def _orders(self):
        return self.client.collection(self.collection)

    def add_order(self, record: dict) -> str:
        """Append an order; ``createdAt`` comes from the server clock. Returns the document id."""
        data = dict(record)
        data['createdAt'] = firestore.SERVER_TIMESTAMP
        _, doc_ref = self._orders().add(data)
        return doc_ref.id

    def get_order(self, order_id: str) -> Optional[dict]:
        doc = self._orders().document(order_id).get()
        if not doc.exists:
            return None
        return {'id': doc.id, **(doc.to_dict() or {})}

    def list_orders(self, limit: Optional[int] = None) -> list:
        query = self._orders()
        if limit:
            query = query.limit(limit)
        return [{'id': doc.id, **(doc.to_dict() or {})} for doc in query.stream()]

    def update_status(self, order_id: str, status: str) -> bool:
        doc_ref = self._orders().document(order_id)
        if not doc_ref.get().exists:
            return False
        doc_ref.update({
            'status': status,
            'updatedAt': firestore.SERVER_TIMESTAMP,
        })
        return True

    def ping(self) -> int:
        return len(list(self._orders().limit(1).stream()))
