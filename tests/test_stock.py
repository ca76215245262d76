import dataclasses

import pytest

from catalog_sync.sync.components.stock import StockResolver
from catalog_sync.sync.components.values import decode_record
from catalog_sync.sync.session import ImportSession


def _item(store, product_id):
    return store.fetch_row("SELECT * FROM cataloginventory_stock_item WHERE product_id = :p", {"p": product_id})


def _status(store, product_id):
    return store.select("SELECT * FROM cataloginventory_stock_status WHERE product_id = :p", {"p": product_id})


def test_qty_derives_manage_stock_and_in_stock(session, store, make_product):
    product_id = make_product("sock-1")
    StockResolver(session).process_product(decode_record({"sku": "sock-1", "qty": "5"}), "sock-1", product_id)

    item = _item(store, product_id)
    assert float(item["qty"]) == 5
    assert item["manage_stock"] == 1
    assert item["use_config_manage_stock"] == 0
    assert item["is_in_stock"] == 1

    status = _status(store, product_id)
    assert len(status) == 1
    assert status[0]["stock_status"] == 1
    assert status[0]["website_id"] == 0

    source = store.fetch_row("SELECT quantity, status FROM inventory_source_item WHERE sku = 'sock-1'")
    assert float(source["quantity"]) == 5


def test_zero_qty_is_out_of_stock_and_rerun_replaces_status(session, store, make_product):
    product_id = make_product("sock-2")
    stock = StockResolver(session)
    stock.process_product(decode_record({"sku": "sock-2", "qty": 3}), "sock-2", product_id)
    stock.process_product(decode_record({"sku": "sock-2", "qty": 0}), "sock-2", product_id)

    assert _item(store, product_id)["is_in_stock"] == 0
    status = _status(store, product_id)
    assert len(status) == 1 and status[0]["stock_status"] == 0
    assert store.select_one("SELECT COUNT(*) AS cnt FROM inventory_source_item WHERE sku = 'sock-2'", column="cnt") == 1


def test_explicit_flags_win(session, store, make_product):
    product_id = make_product("sock-3")
    StockResolver(session).process_product(
        decode_record({"sku": "sock-3", "qty": "10", "is_in_stock": "0", "manage_stock": "0"}), "sock-3", product_id
    )
    item = _item(store, product_id)
    assert item["is_in_stock"] == 0
    assert item["manage_stock"] == 0


def test_auto_flags_can_be_disabled(store, config, make_product):
    session = ImportSession(store, dataclasses.replace(config, auto_set_manage_stock=False, auto_set_is_in_stock=False))
    product_id = make_product("sock-4")
    StockResolver(session).process_product(decode_record({"sku": "sock-4", "qty": "10"}), "sock-4", product_id)
    item = _item(store, product_id)
    assert item["use_config_manage_stock"] == 1
    assert item["is_in_stock"] == 0


def test_record_without_stock_fields_is_untouched(session, store, make_product):
    product_id = make_product("sock-5")
    StockResolver(session).process_product(decode_record({"sku": "sock-5", "name": "Sock"}), "sock-5", product_id)
    assert _item(store, product_id) is None
    assert _status(store, product_id) == []


@pytest.mark.parametrize("qty", ["lots", None])
def test_source_item_needs_numeric_qty(session, store, make_product, qty):
    product_id = make_product("sock-6")
    StockResolver(session).process_product(
        decode_record({"sku": "sock-6", "qty": qty, "is_in_stock": "1"}), "sock-6", product_id
    )
    assert store.select_one("SELECT COUNT(*) AS cnt FROM inventory_source_item", column="cnt") == 0
