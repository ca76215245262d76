import dataclasses

import pytest

from catalog_sync.exceptions import InputError, StorageError
from catalog_sync.sync.components.rewrites import RewriteResolver, category_metadata
from catalog_sync.sync.components.values import decode_record
from catalog_sync.sync.session import ImportSession


def _rewrites(store, entity_type="product"):
    rows = store.select(
        "SELECT request_path, target_path, metadata, store_id FROM url_rewrite WHERE entity_type = :t ORDER BY url_rewrite_id",
        {"t": entity_type},
    )
    return {r["request_path"]: r["target_path"] for r in rows}


def _link(store, category_id, product_id):
    store.insert(
        "INSERT INTO catalog_category_product (category_id, product_id, position) VALUES (:c, :p, 0)",
        {"c": category_id, "p": product_id},
    )


def test_insert_then_update_same_target(session, store):
    rewrites = RewriteResolver(session)
    rewrites.upsert_url_rewrite("product", 7, "blue-shirt", "catalog/product/view/id/7")
    rewrites.upsert_url_rewrite("product", 7, "blue-shirt-v2", "catalog/product/view/id/7")
    assert _rewrites(store) == {"blue-shirt-v2.html": "catalog/product/view/id/7"}


def test_request_path_owned_by_other_entity_raises(session, store):
    rewrites = RewriteResolver(session)
    rewrites.upsert_url_rewrite("product", 7, "shirt", "catalog/product/view/id/7")
    owner = store.select_one("SELECT url_rewrite_id FROM url_rewrite", column="url_rewrite_id")

    with pytest.raises(InputError) as exc:
        rewrites.upsert_url_rewrite("product", 8, "shirt", "catalog/product/view/id/8")
    assert str(exc.value) == (
        f"Unable to create url rewrite - RequestPath [shirt.html] is already in use by Url Rewrite [{owner}]"
    )


def test_update_into_taken_path_raises(session, store):
    rewrites = RewriteResolver(session)
    rewrites.upsert_url_rewrite("product", 7, "shirt", "catalog/product/view/id/7")
    rewrites.upsert_url_rewrite("product", 8, "pants", "catalog/product/view/id/8")
    with pytest.raises(InputError, match=r"Unable to update url rewrite - RequestPath \[shirt.html\]"):
        rewrites.upsert_url_rewrite("product", 8, "shirt", "catalog/product/view/id/8")
    assert _rewrites(store) == {
        "shirt.html": "catalog/product/view/id/7",
        "pants.html": "catalog/product/view/id/8",
    }


def test_same_path_on_other_store_is_free(session, store):
    rewrites = RewriteResolver(session)
    rewrites.upsert_url_rewrite("product", 7, "shirt", "catalog/product/view/id/7", store_id=1)
    rewrites.upsert_url_rewrite("product", 8, "shirt", "catalog/product/view/id/8", store_id=3)
    assert store.select_one("SELECT COUNT(*) AS cnt FROM url_rewrite", column="cnt") == 2


def test_product_rewrites_with_categories(session, store, make_product):
    product_id = make_product("shirt-1")
    _link(store, 3, product_id)
    RewriteResolver(session).assign_product_rewrite(
        decode_record({"sku": "shirt-1", "url_key": "Blue Shirt"}), "shirt-1", product_id
    )

    assert _rewrites(store) == {
        "blue-shirt.html": f"catalog/product/view/id/{product_id}",
        "home/blue-shirt.html": f"catalog/product/view/id/{product_id}/category/3",
    }
    metadata = store.select_one(
        "SELECT metadata FROM url_rewrite WHERE request_path = 'home/blue-shirt.html'", column="metadata"
    )
    assert metadata == category_metadata(3) == '{"category_id":"3"}'


def test_product_rewrite_rerun_replaces_category_rewrites(session, store, make_product):
    product_id = make_product("shirt-2")
    _link(store, 3, product_id)
    rewrites = RewriteResolver(session)
    rewrites.assign_product_rewrite(decode_record({"sku": "shirt-2", "url_key": "shirt-two"}), "shirt-2", product_id)
    rewrites.assign_product_rewrite(decode_record({"sku": "shirt-2", "url_key": "shirt-2b"}), "shirt-2", product_id)

    assert _rewrites(store) == {
        "shirt-2b.html": f"catalog/product/view/id/{product_id}",
        "home/shirt-2b.html": f"catalog/product/view/id/{product_id}/category/3",
    }


def test_category_product_rewrites_can_be_disabled(store, config, make_product):
    session = ImportSession(store, dataclasses.replace(config, generate_category_product_rewrites=False, url_suffix=""))
    product_id = make_product("shirt-3")
    _link(store, 3, product_id)
    RewriteResolver(session).assign_product_rewrite(
        decode_record({"sku": "shirt-3", "url_key": "shirt-three"}), "shirt-3", product_id
    )
    assert _rewrites(store) == {"shirt-three": f"catalog/product/view/id/{product_id}"}


def test_no_url_key_leaves_rewrites_alone(session, store, make_product):
    product_id = make_product("shirt-4")
    RewriteResolver(session).assign_product_rewrite(decode_record({"sku": "shirt-4"}), "shirt-4", product_id)
    assert _rewrites(store) == {}


def test_storage_failure_is_recorded_as_soft_failure(session, store, monkeypatch):
    rewrites = RewriteResolver(session)

    def _fail(query, params=None):
        raise StorageError("disk full")

    monkeypatch.setattr(store, "insert", _fail)
    rewrites.upsert_url_rewrite("product", 7, "shirt", "catalog/product/view/id/7")

    assert len(session.soft_failures) == 1
    assert session.soft_failures[0].component == "rewrite"
    assert "shirt.html" in session.soft_failures[0].message
