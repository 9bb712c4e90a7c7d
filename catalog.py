import json
import os
from typing import Optional

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DEFAULT_CATALOG_PATH = os.path.join(BASE_DIR, 'products.json')


class Catalog:
    """Read-only product list with authoritative prices, indexed by id."""

    def __init__(self, products: list):
        self._products = [dict(p) for p in products]
        self._by_id = {p['id']: p for p in self._products}

    def get(self, product_id) -> Optional[dict]:
        if not isinstance(product_id, str):
            return None
        return self._by_id.get(product_id)

    def products(self, category: Optional[str] = None, query: Optional[str] = None) -> list:
        items = self._products
        if category and category.lower() != 'all':
            items = [p for p in items if p.get('category', '').lower() == category.lower()]
        if query and query.strip():
            q = query.strip().lower()
            items = [
                p for p in items
                if q in p.get('name', '').lower() or q in p.get('origin', '').lower()
            ]
        return [dict(p) for p in items]

    def categories(self) -> list:
        seen = []
        for p in self._products:
            cat = p.get('category')
            if cat and cat not in seen:
                seen.append(cat)
        return seen

    def __len__(self) -> int:
        return len(self._products)


def load_catalog(path: Optional[str] = None) -> Catalog:
    path = path or DEFAULT_CATALOG_PATH
    with open(path, 'r', encoding='utf-8') as f:
        products = json.load(f)

    for p in products:
        if not p.get('id') or p.get('price') is None:
            raise ValueError(f"Catalog entry missing id or price: {p!r}")
        p['price'] = float(p['price'])

    print(f"[INFO] Loaded {len(products)} products from {path}")
    return Catalog(products)
