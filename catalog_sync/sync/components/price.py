# catalog_sync/sync/components/price.py
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from catalog_sync.config import ImportMode
from catalog_sync.exceptions import InputError
from catalog_sync.sync.components.values import ProductRecord

if TYPE_CHECKING:
    from catalog_sync.sync.session import ImportSession

logger = logging.getLogger("uvicorn.error")

KEY = "tier_prices"
PRICE_SCOPE_GLOBAL = 0


class TierPriceResolver:
    """
    Tier prices from a list of {customer_group_id, qty, price} entries.

    `customer_group_id` carries the group CODE; unknown groups are created.
    An entry without a group applies to all groups (all_groups = 1, group 0).
    """

    def __init__(self, session: "ImportSession"):
        self.session = session
        self.db = session.store
        self.table = self.db.table_name("catalog_product_entity_tier_price")
        self.group_table = self.db.table_name("customer_group")

    # ---------------------------
    # Customer groups
    # ---------------------------
    def customer_groups(self) -> Dict[str, int]:
        rows = self.db.select(f"SELECT customer_group_id, customer_group_code FROM {self.group_table}")
        return {str(r["customer_group_code"]): int(r["customer_group_id"]) for r in rows}

    def customer_group_id(self, code: str) -> Optional[int]:
        return self.customer_groups().get(code)

    def customer_tax_class_id(self) -> Optional[int]:
        table = self.db.table_name("tax_class")
        value = self.db.select_one(
            f"SELECT class_id FROM {table} WHERE class_type = :t ORDER BY class_id", {"t": "CUSTOMER"}, "class_id"
        )
        return int(value) if value is not None else None

    def create_customer_group(self, code: str) -> int:
        group_id = self.db.insert(
            f"INSERT INTO {self.group_table} (customer_group_code, tax_class_id) VALUES (:c, :t)",
            {"c": code, "t": self.customer_tax_class_id() or 0},
        )
        logger.info("[TIER] created customer group '%s' (%s)", code, group_id)
        return int(group_id)

    # ---------------------------
    # Scope
    # ---------------------------
    def price_scope(self) -> Optional[int]:
        table = self.db.table_name("core_config_data")
        value = self.db.select_one(
            f"SELECT value FROM {table} WHERE path = :p", {"p": "catalog/price/scope"}, "value"
        )
        return int(value) if value is not None else None

    def website_ids(self, record: ProductRecord) -> List[int]:
        if self.db.is_single_store() or self.price_scope() in (None, PRICE_SCOPE_GLOBAL):
            return [0]
        try:
            return self.session.scope.website_ids_for_product(record) or [0]
        except InputError as e:
            logger.warning("[TIER] unable to resolve websites, using global scope: %s", e)
            return [0]

    # ---------------------------
    # Rows
    # ---------------------------
    def delete_for_websites(self, product_id: int, website_ids: List[int], group_ids: Optional[List[int]] = None) -> int:
        link = self.session.link_column
        query = f"DELETE FROM {self.table} WHERE {link} = :p AND website_id IN :w"
        params: Dict[str, Any] = {"p": product_id, "w": website_ids}
        if group_ids:
            query += " AND customer_group_id IN :g"
            params["g"] = group_ids
        return self.db.delete(query, params)

    def delete_all_groups(self, product_id: int) -> int:
        return self.db.delete(
            f"DELETE FROM {self.table} WHERE {self.session.link_column} = :p AND all_groups = 1",
            {"p": product_id},
        )

    def upsert_tier_price(self, product_id: int, all_groups: int, group_id: int, qty: Any, price: Any, website_id: int) -> None:
        link = self.session.link_column
        params = {"p": product_id, "a": all_groups, "g": group_id, "q": qty, "v": price, "w": website_id}
        where = f"{link} = :p AND all_groups = :a AND customer_group_id = :g AND qty = :q AND website_id = :w"
        count = self.db.select_one(f"SELECT COUNT(*) AS cnt FROM {self.table} WHERE {where}", params, "cnt")
        if int(count or 0):
            self.db.update(f"UPDATE {self.table} SET value = :v WHERE {where}", params)
        else:
            self.db.insert(
                f"""
                INSERT INTO {self.table} ({link}, all_groups, customer_group_id, qty, value, website_id)
                VALUES (:p, :a, :g, :q, :v, :w)
                """,
                params,
            )

    @staticmethod
    def _group_code(entry: Mapping[str, Any]) -> str:
        code = entry.get("customer_group_id")
        return "" if code is None else str(code).strip()

    def process_product(self, record: ProductRecord, sku: str, product_id: int) -> None:
        entries = record.get(KEY)
        if not isinstance(entries, list):
            return

        website_ids = self.website_ids(record)

        if self.session.config.pricing_mode == ImportMode.REPLACEMENT:
            codes = [self._group_code(e) for e in entries if self._group_code(e)]
            group_ids = [gid for gid in (self.customer_group_id(c) for c in codes) if gid is not None]
            if codes:
                if group_ids:
                    self.delete_for_websites(product_id, website_ids, group_ids)
            else:
                self.delete_for_websites(product_id, website_ids)
            self.delete_all_groups(product_id)

        for entry in entries:
            if not isinstance(entry, Mapping):
                continue
            code = self._group_code(entry)
            group_id = None
            if code:
                group_id = self.customer_group_id(code)
                if group_id is None:
                    group_id = self.create_customer_group(code)
            all_groups = 1 if group_id is None else 0
            for website_id in website_ids:
                self.upsert_tier_price(product_id, all_groups, group_id or 0, entry.get("qty"), entry.get("price"), website_id)

        logger.info("[TIER] %s: %s tier prices for websites %s", sku, len(entries), website_ids)
