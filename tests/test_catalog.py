import json

import pytest

from catalog import load_catalog


def test_bundled_catalog_has_authoritative_prices():
    catalog = load_catalog()
    olive_oil = catalog.get('olive-oil-1L')
    assert olive_oil['price'] == 9.50
    assert olive_oil['category'] == 'Olive Oil'
    assert len(catalog) == len({p['id'] for p in catalog.products()})


def test_lookup_of_unknown_or_non_string_id(catalog):
    assert catalog.get('nope') is None
    assert catalog.get(None) is None
    assert catalog.get(['olive-oil-1L']) is None


def test_filter_by_category_and_search(catalog):
    assert [p['id'] for p in catalog.products(category='honey')] == ['honey-sidr-250g']
    assert len(catalog.products(category='all')) == 4
    assert {p['id'] for p in catalog.products(query='yemen')} == {'honey-sidr-250g'}
    assert catalog.categories() == ['Olive Oil', 'Honey', 'Oils']


def test_products_returns_copies(catalog):
    catalog.products()[0]['price'] = 0
    assert catalog.get('olive-oil-1L')['price'] == 9.50


def test_entry_without_price_is_refused(tmp_path):
    path = tmp_path / 'products.json'
    path.write_text(json.dumps([{'id': 'x', 'name': 'X'}]), encoding='utf-8')
    with pytest.raises(ValueError):
        load_catalog(str(path))
