# catalog_sync/sync/components/rewrites.py
from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, List, Optional

from catalog_sync.exceptions import InputError, StateError, StorageError
from catalog_sync.sync.components.category_grammar import ROOT_CATEGORY_IDS
from catalog_sync.sync.components.util import ensure_suffix, slug
from catalog_sync.sync.components.values import ProductRecord

if TYPE_CHECKING:
    from catalog_sync.sync.session import ImportSession

logger = logging.getLogger("uvicorn.error")

REWRITE_TYPE_PRODUCT = "product"
REWRITE_TYPE_CATEGORY = "category"
KEY = "url_key"


def product_target_path(product_id: int) -> str:
    return f"catalog/product/view/id/{product_id}"


def product_category_target_path(product_id: int, category_id: int) -> str:
    return f"catalog/product/view/id/{product_id}/category/{category_id}"


def category_target_path(category_id: int) -> str:
    return f"catalog/category/view/id/{category_id}"


def category_metadata(category_id: int) -> str:
    return json.dumps({"category_id": str(category_id)}, separators=(",", ":"))


class RewriteResolver:
    """
    SEO url rewrites for products (base + per category) and categories.

    Every write goes through upsert_url_rewrite(), which never takes over a
    request path owned by another rewrite.
    """

    def __init__(self, session: "ImportSession"):
        self.session = session
        self.db = session.store
        self.table = self.db.table_name("url_rewrite")
        self._url_path_attribute_id: Optional[int] = None

    @property
    def store_id(self) -> int:
        return self.session.config.url_rewrite_store_id

    @property
    def suffix(self) -> str:
        return self.session.config.url_suffix

    @property
    def url_path_attribute_id(self) -> int:
        if self._url_path_attribute_id is None:
            ea = self.db.table_name("eav_attribute")
            et = self.db.table_name("eav_entity_type")
            value = self.db.select_one(
                f"""
                SELECT ea.attribute_id FROM {ea} ea
                INNER JOIN {et} et ON et.entity_type_id = ea.entity_type_id
                WHERE et.entity_type_code = 'catalog_category' AND ea.attribute_code = 'url_path'
                """,
                column="attribute_id",
            )
            if value is None:
                raise StateError("Unable to lookup 'url_path' attribute id")
            self._url_path_attribute_id = int(value)
        return self._url_path_attribute_id

    # ---------------------------
    # Lookups
    # ---------------------------
    def category_url_path(self, category_id: int, store_id: int = 0) -> Optional[str]:
        table = self.db.table_name("catalog_category_entity_varchar")
        value = self.db.select_one(
            f"SELECT value FROM {table} WHERE attribute_id = :a AND store_id = :s AND {self.session.link_column} = :c",
            {"a": self.url_path_attribute_id, "s": store_id, "c": category_id},
            "value",
        )
        return str(value) if value is not None else None

    def product_category_ids(self, product_id: int) -> List[int]:
        table = self.db.table_name("catalog_category_product")
        rows = self.db.select(f"SELECT category_id FROM {table} WHERE product_id = :p", {"p": product_id})
        return [int(r["category_id"]) for r in rows if r.get("category_id") is not None]

    def request_path_owner(self, request_path: str, store_id: int) -> Optional[int]:
        value = self.db.select_one(
            f"SELECT url_rewrite_id FROM {self.table} WHERE request_path = :r AND store_id = :s",
            {"r": request_path, "s": store_id},
            "url_rewrite_id",
        )
        return int(value) if value is not None else None

    def target_rewrite_id(self, entity_type: str, entity_id: int, target_path: str, store_id: int) -> Optional[int]:
        value = self.db.select_one(
            f"""
            SELECT url_rewrite_id FROM {self.table}
            WHERE entity_type = :t AND entity_id = :e AND target_path = :p AND store_id = :s
            """,
            {"t": entity_type, "e": entity_id, "p": target_path, "s": store_id},
            "url_rewrite_id",
        )
        return int(value) if value is not None else None

    def product_base_rewrites(self, product_id: int) -> List[dict]:
        return self.db.select(
            f"""
            SELECT url_rewrite_id, request_path FROM {self.table}
            WHERE entity_type = :t AND metadata IS NULL AND entity_id = :e
            """,
            {"t": REWRITE_TYPE_PRODUCT, "e": product_id},
        )

    # ---------------------------
    # Writes
    # ---------------------------
    def _insert(self, entity_type: str, entity_id: int, request_path: str, target_path: str,
                store_id: int, metadata: Optional[str]) -> None:
        try:
            self.db.insert(
                f"""
                INSERT INTO {self.table}
                    (entity_type, entity_id, request_path, target_path, store_id, is_autogenerated, metadata)
                VALUES (:t, :e, :r, :p, :s, 1, :m)
                """,
                {"t": entity_type, "e": entity_id, "r": request_path, "p": target_path, "s": store_id, "m": metadata},
            )
        except StorageError as e:
            self.session.soft_fail("rewrite", f"Insert of url rewrite [{request_path}] failed: {e}")

    def _update(self, url_rewrite_id: int, request_path: str, target_path: str, metadata: Optional[str]) -> None:
        try:
            self.db.update(
                f"UPDATE {self.table} SET request_path = :r, target_path = :p, metadata = :m WHERE url_rewrite_id = :id",
                {"r": request_path, "p": target_path, "m": metadata, "id": url_rewrite_id},
            )
        except StorageError as e:
            self.session.soft_fail("rewrite", f"Update of url rewrite [{url_rewrite_id}] failed: {e}")

    def upsert_url_rewrite(self, entity_type: str, entity_id: int, request_path: str, target_path: str,
                           store_id: Optional[int] = None, metadata: Optional[str] = None) -> None:
        """
        (a) = rewrite already pointing at this target, (b) = rewrite owning the request path.

        a and not b      -> update a
        a and b, a == b  -> update a
        a and b, a != b  -> InputError
        not a, not b     -> insert
        not a, b         -> InputError
        """
        store_id = self.store_id if store_id is None else store_id
        request_path = ensure_suffix(request_path, self.suffix)

        owner_id = self.request_path_owner(request_path, store_id)
        rewrite_id = self.target_rewrite_id(entity_type, entity_id, target_path, store_id)
        logger.debug(
            "[REWRITE] %s %s -> %s (store %s): owner=%s target=%s",
            entity_type, request_path, target_path, store_id, owner_id, rewrite_id,
        )

        if rewrite_id is not None:
            if owner_id is None or owner_id == rewrite_id:
                self._update(rewrite_id, request_path, target_path, metadata)
                return
            raise InputError(
                f"Unable to update url rewrite - RequestPath [{request_path}] is already in use by URL Rewrite [{owner_id}]"
            )

        if owner_id is None:
            self._insert(entity_type, entity_id, request_path, target_path, store_id, metadata)
            return
        raise InputError(
            f"Unable to create url rewrite - RequestPath [{request_path}] is already in use by Url Rewrite [{owner_id}]"
        )

    def delete_product_base_rewrites(self, product_id: int) -> int:
        return self.db.delete(
            f"DELETE FROM {self.table} WHERE entity_type = :t AND metadata IS NULL AND entity_id = :e",
            {"t": REWRITE_TYPE_PRODUCT, "e": product_id},
        )

    def clear_category_product_rewrites(self, product_id: int) -> int:
        return self.db.delete(
            f"DELETE FROM {self.table} WHERE entity_type = :t AND entity_id = :e AND metadata IS NOT NULL",
            {"t": REWRITE_TYPE_PRODUCT, "e": product_id},
        )

    # ---------------------------
    # Product / category rewrites
    # ---------------------------
    def upsert_product_base_rewrite(self, product_id: int, url_key: str) -> None:
        existing = self.product_base_rewrites(product_id)
        if len(existing) > 1:
            logger.warning("[REWRITE] product %s has %s base rewrites; recreating", product_id, len(existing))
            self.delete_product_base_rewrites(product_id)
        self.upsert_url_rewrite(REWRITE_TYPE_PRODUCT, product_id, slug(url_key), product_target_path(product_id))

    def upsert_product_category_rewrite(self, product_id: int, category_id: int, url_key: str) -> None:
        if category_id in ROOT_CATEGORY_IDS:
            return
        url_path = self.category_url_path(category_id)
        if url_path is None:
            logger.info("[REWRITE] no url_path for category %s; skipping", category_id)
            return
        url_slug = slug(url_key)
        if not url_slug:
            logger.info("[REWRITE] unable to slug url_key %r; skipping category %s", url_key, category_id)
            return
        self.upsert_url_rewrite(
            REWRITE_TYPE_PRODUCT,
            product_id,
            f"{url_path}/{url_slug}",
            product_category_target_path(product_id, category_id),
            metadata=category_metadata(category_id),
        )

    def upsert_category_rewrite(self, category_id: int) -> None:
        if category_id in ROOT_CATEGORY_IDS:
            return
        url_path = self.category_url_path(category_id)
        if url_path is None:
            return
        self.upsert_url_rewrite(REWRITE_TYPE_CATEGORY, category_id, url_path, category_target_path(category_id))

    def assign_product_rewrite(self, record: ProductRecord, sku: str, product_id: int) -> None:
        url_key = record.text(KEY)
        if not url_key:
            logger.debug("[REWRITE] %s: no url_key, rewrites untouched", sku)
            return

        self.upsert_product_base_rewrite(product_id, url_key)
        self.clear_category_product_rewrites(product_id)

        if not self.session.config.generate_category_product_rewrites:
            return
        for category_id in self.product_category_ids(product_id):
            self.upsert_product_category_rewrite(product_id, category_id, url_key)
