import dataclasses

import pytest

from catalog_sync.config import ImportMode
from catalog_sync.exceptions import InputError
from catalog_sync.sync.components.categories import CategoryResolver
from catalog_sync.sync.components.category_grammar import DEFAULT_ROOT_PATH_KEY, parse_path
from catalog_sync.sync.components.rewrites import RewriteResolver
from catalog_sync.sync.components.values import decode_record
from catalog_sync.sync.session import ImportSession


def _resolver(session):
    return CategoryResolver(session, RewriteResolver(session))


def _category(store, category_id):
    return store.fetch_row("SELECT * FROM catalog_category_entity WHERE entity_id = :c", {"c": category_id})


def _varchar(store, attribute_id, category_id, store_id=0):
    return store.select_one(
        "SELECT value FROM catalog_category_entity_varchar WHERE attribute_id = :a AND entity_id = :c AND store_id = :s",
        {"a": attribute_id, "c": category_id, "s": store_id},
        "value",
    )


def _linked(store, product_id):
    rows = store.select("SELECT category_id, position FROM catalog_category_product WHERE product_id = :p", {"p": product_id})
    return {int(r["category_id"]): int(r["position"]) for r in rows}


def test_load_roots(session):
    roots = _resolver(session).load_roots()
    assert sorted(roots) == [1, 2, 3]
    assert roots[1]["path"] == "1/2"
    assert roots[3]["name"] == "Second Root"
    assert session.category_root_websites == {1: [1, 2], 2: [3]}


def test_creates_missing_levels_under_existing(session, store, make_product):
    product_id = make_product("boot-1")
    linked = _resolver(session).assign_categories(
        decode_record({"sku": "boot-1", "categories": "Home|Shoes::1::1::0::4"}), "boot-1", product_id
    )

    assert 3 in linked
    new_id = [c for c in linked if c != 3][0]
    row = _category(store, new_id)
    assert row["parent_id"] == 3
    assert row["path"] == f"1/2/3/{new_id}"
    assert row["level"] == 3
    assert row["position"] == 1
    assert _varchar(store, 45, new_id) == "Shoes"
    assert _varchar(store, 52, new_id) == "shoes"
    assert _varchar(store, 118, new_id) == "home/shoes"
    assert store.select_one(
        "SELECT value FROM catalog_category_entity_int WHERE attribute_id = 67 AND entity_id = :c", {"c": new_id}, "value"
    ) == 0
    assert _linked(store, product_id) == {3: 0, new_id: 4}


def test_resolution_is_idempotent(session, store, make_product):
    first = make_product("boot-2")
    second = make_product("boot-3")
    resolver = _resolver(session)
    a = resolver.assign_categories(decode_record({"sku": "boot-2", "categories": "Home|Boots"}), "boot-2", first)
    b = resolver.assign_categories(decode_record({"sku": "boot-3", "categories": "Home|Boots"}), "boot-3", second)

    assert a == b
    assert store.select_one(
        "SELECT COUNT(*) AS cnt FROM catalog_category_entity WHERE parent_id = 3", column="cnt"
    ) == 1


def test_category_rewrites_created_for_linked_categories(session, store, make_product):
    product_id = make_product("boot-4")
    linked = _resolver(session).assign_categories(
        decode_record({"sku": "boot-4", "categories": "Home|Sandals"}), "boot-4", product_id
    )
    sandals = [c for c in linked if c != 3][0]
    rows = store.select("SELECT request_path, target_path FROM url_rewrite WHERE entity_type = 'category' ORDER BY entity_id")
    assert {r["request_path"]: r["target_path"] for r in rows} == {
        "home.html": "catalog/category/view/id/3",
        "home/sandals.html": f"catalog/category/view/id/{sandals}",
    }


def test_explicit_store_root_and_translation(session, store, make_product):
    product_id = make_product("boot-5")
    linked = _resolver(session).assign_categories(
        decode_record({"sku": "boot-5", "store": "second_en", "categories": "[Second Root]|Stiefel::[Boots]"}),
        "boot-5",
        product_id,
    )

    boots = [c for c in linked if c != 4][0]
    assert 4 in linked
    assert _category(store, boots)["path"] == f"1/4/{boots}"
    assert _varchar(store, 45, boots, 0) == "Boots"
    assert _varchar(store, 45, boots, 3) == "Stiefel"
    assert _varchar(store, 52, boots, 3) == "stiefel"


def test_unknown_explicit_root_raises(session, make_product):
    product_id = make_product("boot-6")
    with pytest.raises(InputError, match=r"Cannot find site root with names \[Nowhere\]"):
        _resolver(session).assign_categories(
            decode_record({"sku": "boot-6", "categories": "[Nowhere]|Boots"}), "boot-6", product_id
        )


def test_last_only_links_leaf(store, config, make_product):
    session = ImportSession(store, dataclasses.replace(config, category_last_only=True))
    product_id = make_product("boot-7")
    linked = _resolver(session).assign_categories(
        decode_record({"sku": "boot-7", "categories": "Home|Clogs"}), "boot-7", product_id
    )
    assert len(linked) == 1 and linked[0] != 3


def test_category_ids_and_replacement_mode(store, config, make_product):
    product_id = make_product("boot-8")
    store.insert("INSERT INTO catalog_category_product (category_id, product_id, position) VALUES (4, :p, 0)", {"p": product_id})

    session = ImportSession(store, dataclasses.replace(config, category_mode=ImportMode.REPLACEMENT))
    linked = _resolver(session).assign_categories(
        decode_record({"sku": "boot-8", "category_ids": "3::5, 2, 999"}), "boot-8", product_id
    )
    assert linked == [3]
    assert _linked(store, product_id) == {3: 5}


def test_addition_mode_keeps_existing_links(session, store, make_product):
    product_id = make_product("boot-9")
    store.insert("INSERT INTO catalog_category_product (category_id, product_id, position) VALUES (4, :p, 0)", {"p": product_id})
    _resolver(session).assign_categories(decode_record({"sku": "boot-9", "category_ids": "3"}), "boot-9", product_id)
    assert _linked(store, product_id) == {3: 0, 4: 0}


def test_versioned_category_creation_uses_sequence(versioned_store, config):
    session = ImportSession(versioned_store, config)
    assert session.link_column == "row_id"
    resolver = _resolver(session)
    path = ["1", "2", "3"]
    level = parse_path("Belts", "|", [DEFAULT_ROOT_PATH_KEY]).levels[0]
    row_id = resolver.create_category(path, level)
    row = versioned_store.fetch_row("SELECT entity_id, path FROM catalog_category_entity WHERE row_id = :r", {"r": row_id})
    assert row["entity_id"] == 5
    assert row["path"] == f"1/2/3/{row_id}"
