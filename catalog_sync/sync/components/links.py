# catalog_sync/sync/components/links.py
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List

from catalog_sync.config import ImportMode
from catalog_sync.sync.components.util import comma_list, unique
from catalog_sync.sync.components.values import ProductRecord

if TYPE_CHECKING:
    from catalog_sync.sync.session import ImportSession

logger = logging.getLogger("uvicorn.error")

KEY_RELATED = "related_products"
LINK_TYPE_RELATED = 1


class LinkResolver:
    """Related product links (catalog_product_link) from a comma separated SKU list."""

    def __init__(self, session: "ImportSession"):
        self.session = session
        self.db = session.store
        self.table = self.db.table_name("catalog_product_link")

    def product_ids(self, skus: str) -> List[int]:
        ids = []
        for sku in comma_list(skus):
            product_id = self.session.product_id_for_sku(sku)
            if product_id is None:
                logger.info("[LINK] unknown sku '%s' skipped", sku)
                continue
            ids.append(product_id)
        return unique(ids)

    def linked_product_ids(self, product_id: int, link_type_id: int = LINK_TYPE_RELATED) -> List[int]:
        rows = self.db.select(
            f"SELECT linked_product_id FROM {self.table} WHERE product_id = :p AND link_type_id = :t",
            {"p": product_id, "t": link_type_id},
        )
        return [int(r["linked_product_id"]) for r in rows]

    def related_product_skus(self, product_id: int) -> List[str]:
        skus = []
        for linked_id in self.linked_product_ids(product_id):
            sku = self.db.get_product_sku(linked_id, self.session.link_column)
            if sku:
                skus.append(sku)
        return skus

    def add_link(self, product_id: int, linked_product_id: int, link_type_id: int = LINK_TYPE_RELATED) -> None:
        params = {"p": product_id, "l": linked_product_id, "t": link_type_id}
        count = self.db.select_one(
            f"""
            SELECT COUNT(*) AS cnt FROM {self.table}
            WHERE product_id = :p AND linked_product_id = :l AND link_type_id = :t
            """,
            params,
            "cnt",
        )
        if not int(count or 0):
            self.db.insert(
                f"INSERT INTO {self.table} (product_id, linked_product_id, link_type_id) VALUES (:p, :l, :t)",
                params,
            )

    def delete_exclude_list(self, product_id: int, keep_ids: List[int], link_type_id: int = LINK_TYPE_RELATED) -> int:
        query = f"DELETE FROM {self.table} WHERE product_id = :p AND link_type_id = :t"
        params = {"p": product_id, "t": link_type_id}
        if keep_ids:
            query += " AND linked_product_id NOT IN :keep"
            params["keep"] = keep_ids
        return self.db.delete(query, params)

    def delete_links(self, product_id: int) -> int:
        return self.db.delete(f"DELETE FROM {self.table} WHERE product_id = :p", {"p": product_id})

    def process_product(self, record: ProductRecord, sku: str, product_id: int) -> None:
        if KEY_RELATED not in record:
            return

        if record.is_delete(KEY_RELATED):
            removed = self.delete_links(product_id)
            logger.info("[LINK] %s: removed %s links", sku, removed)
            return

        related_ids = [i for i in self.product_ids(record.text(KEY_RELATED) or "") if i != product_id]
        if self.session.config.related_products_mode == ImportMode.REPLACEMENT:
            self.delete_exclude_list(product_id, related_ids)
        for linked_id in related_ids:
            self.add_link(product_id, linked_id)
        logger.info("[LINK] %s: related %s", sku, related_ids)
