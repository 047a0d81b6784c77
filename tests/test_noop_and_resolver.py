from catalog_agent.catalog import JsonCatalogStore
from catalog_agent.errors import AmbiguousError, NotFoundError
from catalog_agent.noop import filter_noop_changes, values_equal
from catalog_agent.parsers import Selector
from catalog_agent.target_resolver import TargetResolver

import pytest


def test_price_compares_at_two_decimals(catalog):
    result = filter_noop_changes(catalog, 12, {"regular_price": "2500"})
    assert result.noop
    assert result.dropped == ["regular_price"]


def test_price_change_is_normalized(catalog):
    result = filter_noop_changes(catalog, 12, {"regular_price": "2600"})
    assert not result.noop
    assert result.changes == {"regular_price": "2600.00"}


def test_stock_noop_needs_managed_stock():
    store = JsonCatalogStore(
        products=[
            {"id": 1, "title": "Managed", "manage_stock": True, "stock_quantity": 5},
            {"id": 2, "title": "Unmanaged", "manage_stock": False, "stock_quantity": 5},
        ]
    )
    assert filter_noop_changes(store, 1, {"manage_stock": True, "stock_quantity": 5}).noop
    unmanaged = filter_noop_changes(store, 2, {"manage_stock": True, "stock_quantity": 5})
    assert not unmanaged.noop
    assert unmanaged.changes["stock_quantity"] == 5


def test_categories_compare_as_sets():
    assert values_equal("categories", ["Remeras", "Verano"], ["verano", "remeras"])
    assert not values_equal("categories", ["Remeras"], ["Remeras", "Verano"])


def test_last_is_highest_id(catalog):
    resolver = TargetResolver(catalog)
    assert resolver.resolve_one(Selector(kind="last", index=1)).id == 1000
    assert resolver.resolve_one(Selector(kind="first", index=2)).id == 12


def test_name_resolution_is_ambiguous(catalog):
    resolver = TargetResolver(catalog)
    with pytest.raises(AmbiguousError) as excinfo:
        resolver.resolve_one(Selector(kind="name", value="remera"))
    assert excinfo.value.total == 3
    with pytest.raises(NotFoundError):
        resolver.resolve_one(Selector(kind="name", value="zapatilla"))
    assert resolver.resolve_one(Selector(kind="name", value="Remera Azul")).id == 12


def test_contextual_uses_last_target(catalog):
    resolver = TargetResolver(catalog)
    assert resolver.resolve_one(Selector(kind="contextual"), {"last_target_product_id": 15}).id == 15
    with pytest.raises(NotFoundError):
        resolver.resolve_one(Selector(kind="contextual"), {})


def _open(resolver, query):
    try:
        resolver.resolve_one(Selector(kind="name", value=query))
    except AmbiguousError as exc:
        return resolver.open_selection(exc, {"kind": "price", "value": 10})
    raise AssertionError("expected an ambiguous selector")


def test_pick_reads_index_ordinal_id_sku_and_title(catalog):
    resolver = TargetResolver(catalog)
    selection = _open(resolver, "remera")
    assert [item["id"] for item in selection["candidates"]] == [21, 15, 12]
    assert resolver.pick(selection, "2") == 15
    assert resolver.pick(selection, "el tercero") == 12
    assert resolver.pick(selection, "#21") == 21
    assert resolver.pick(selection, "sku REM-RO") == 15
    assert resolver.pick(selection, "Remera Azul") == 12
    assert resolver.pick(selection, "9") is None


def test_load_more_pages_and_keeps_total():
    products = [{"id": n, "title": f"Remera {n}"} for n in range(1, 26)]
    resolver = TargetResolver(JsonCatalogStore(products=products), page_size=20, cache_limit=50)
    selection = _open(resolver, "remera")
    assert selection["total"] == 25
    assert len(resolver.page(selection)) == 20

    second = resolver.load_more(selection)
    assert second["offset"] == 20
    assert len(resolver.page(second)) == 5
    assert resolver.load_more(second)["offset"] == 20

    inflated = dict(second, total=30)
    assert resolver.load_more(inflated)["total"] == 30
