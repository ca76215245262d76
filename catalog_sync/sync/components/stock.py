# catalog_sync/sync/components/stock.py
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from catalog_sync.sync.components.util import is_numeric
from catalog_sync.sync.components.values import ProductRecord, db_value

if TYPE_CHECKING:
    from catalog_sync.sync.session import ImportSession

logger = logging.getLogger("uvicorn.error")

DEFAULT_STOCK_ID = 1
DEFAULT_STOCK_STATUS = 1
DEFAULT_STOCK_QTY = 0
DEFAULT_SOURCE_CODE = "default"

STOCK_ITEM_COLUMNS = (
    "qty", "min_qty", "use_config_min_qty", "is_qty_decimal", "backorders", "use_config_backorders",
    "min_sale_qty", "use_config_min_sale_qty", "max_sale_qty", "use_config_max_sale_qty", "is_in_stock",
    "low_stock_date", "notify_stock_qty", "use_config_notify_stock_qty", "manage_stock",
    "use_config_manage_stock", "stock_status_changed_auto", "use_config_qty_increments", "qty_increments",
    "use_config_enable_qty_inc", "enable_qty_increments", "is_decimal_divided",
)


def _number(v: Any, default: float = 0) -> float:
    return float(v) if is_numeric(v) else default


class StockResolver:
    """cataloginventory stock item + website stock status, and the MSI source item when present."""

    def __init__(self, session: "ImportSession"):
        self.session = session
        self.db = session.store
        self.item_table = self.db.table_name("cataloginventory_stock_item")
        self.status_table = self.db.table_name("cataloginventory_stock_status")

    def stock_columns(self, record: ProductRecord) -> List[str]:
        present = set(self.db.table_columns("cataloginventory_stock_item"))
        return [c for c in STOCK_ITEM_COLUMNS if c in record and c in present]

    def derive_stock_fields(self, record: ProductRecord) -> Dict[str, Any]:
        """manage_stock / is_in_stock derived from qty when not given."""
        derived: Dict[str, Any] = {}
        if record.text("qty") is None:
            return derived
        config = self.session.config
        if config.auto_set_manage_stock and "manage_stock" not in record:
            derived["manage_stock"] = 1
            derived["use_config_manage_stock"] = 0
        if config.auto_set_is_in_stock and "is_in_stock" not in record:
            min_qty = _number(record.get("min_qty"), 0)
            derived["is_in_stock"] = 1 if _number(record.get("qty")) > min_qty else 0
        return derived

    def ensure_stock_item(self, product_id: int, stock_id: int = DEFAULT_STOCK_ID) -> None:
        count = self.db.select_one(
            f"SELECT COUNT(*) AS cnt FROM {self.item_table} WHERE product_id = :p AND stock_id = :s",
            {"p": product_id, "s": stock_id},
            "cnt",
        )
        if not int(count or 0):
            self.db.insert(
                f"INSERT INTO {self.item_table} (product_id, stock_id) VALUES (:p, :s)",
                {"p": product_id, "s": stock_id},
            )

    def update_stock_item(self, product_id: int, values: Dict[str, Any]) -> None:
        if not values:
            return
        assignments = ", ".join(f"{col} = :v_{col}" for col in values)
        params = {f"v_{col}": db_value(v) for col, v in values.items()}
        params.update(p=product_id, s=DEFAULT_STOCK_ID)
        self.db.update(
            f"UPDATE {self.item_table} SET {assignments} WHERE product_id = :p AND stock_id = :s",
            params,
        )

    def stock_website_id(self, stock_id: int) -> Optional[int]:
        table = self.db.table_name("cataloginventory_stock")
        value = self.db.select_one(
            f"SELECT website_id FROM {table} WHERE stock_id = :s", {"s": stock_id}, "website_id"
        )
        return int(value) if value is not None else None

    def refresh_stock_status(self, product_id: int, values: Dict[str, Any], record: ProductRecord) -> None:
        self.db.delete(f"DELETE FROM {self.status_table} WHERE product_id = :p", {"p": product_id})

        stock_id = int(_number(record.get("stock_id"), DEFAULT_STOCK_ID))
        if is_numeric(record.get("stock_status")):
            stock_status = int(_number(record.get("stock_status")))
        else:
            stock_status = int(_number(values.get("is_in_stock"), DEFAULT_STOCK_STATUS))
        qty = _number(values.get("qty"), DEFAULT_STOCK_QTY)

        website_id = self.stock_website_id(stock_id)
        if website_id is None:
            logger.info("[STOCK] no website for stock %s; status row skipped", stock_id)
            return
        self.db.insert(
            f"""
            INSERT INTO {self.status_table} (product_id, website_id, stock_id, qty, stock_status)
            VALUES (:p, :w, :s, :q, :st)
            """,
            {"p": product_id, "w": website_id, "s": stock_id, "q": qty, "st": stock_status},
        )

    def upsert_source_item(self, sku: str, record: ProductRecord, stock_status: int = DEFAULT_STOCK_STATUS) -> None:
        qty = record.get("qty")
        if not is_numeric(qty):
            logger.info("[STOCK] %s: qty is not numeric, source item skipped", sku)
            return
        if not self.db.table_exists("inventory_source_item"):
            return
        table = self.db.table_name("inventory_source_item")
        params = {"code": record.text("source_code") or DEFAULT_SOURCE_CODE, "sku": sku, "q": _number(qty), "st": stock_status}
        count = self.db.select_one(
            f"SELECT COUNT(*) AS cnt FROM {table} WHERE source_code = :code AND sku = :sku", params, "cnt"
        )
        if int(count or 0):
            self.db.update(
                f"UPDATE {table} SET quantity = :q, status = :st WHERE source_code = :code AND sku = :sku", params
            )
        else:
            self.db.insert(
                f"INSERT INTO {table} (source_code, sku, quantity, status) VALUES (:code, :sku, :q, :st)", params
            )

    def process_product(self, record: ProductRecord, sku: str, product_id: int) -> None:
        columns = self.stock_columns(record)
        if not columns:
            return

        values: Dict[str, Any] = {c: record.get(c) for c in columns}
        present = set(self.db.table_columns("cataloginventory_stock_item"))
        for col, v in self.derive_stock_fields(record).items():
            if col in present:
                values[col] = v

        self.ensure_stock_item(product_id)
        self.update_stock_item(product_id, values)
        self.refresh_stock_status(product_id, values, record)
        self.upsert_source_item(sku, record)
        logger.info("[STOCK] %s: %s", sku, {k: db_value(v) for k, v in values.items()})
