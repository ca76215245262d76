# catalog_sync/sync/session.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from catalog_sync.config import ImportConfig
from catalog_sync.db import RelationalStore
from catalog_sync.exceptions import SoftFailure
from catalog_sync.sync.components.attributes import AttributeCatalog
from catalog_sync.sync.components.stores import StoreScope

logger = logging.getLogger("uvicorn.error")


class ImportSession:
    """
    Per-batch context handed to every resolver.

    Holds the store, the resolved config and the read-mostly caches (attribute
    metadata, SKU -> id maps, store/website maps, category roots). The caches
    are filled once and assume no concurrent writer changes them while the
    session is alive.
    """

    def __init__(self, store: RelationalStore, config: Optional[ImportConfig] = None):
        self.store = store
        self.config = config or ImportConfig.from_settings()
        self.link_column = self._detect_link_column()
        self.scope = StoreScope(store)
        self.attributes = AttributeCatalog(self)

        self._sku_ids: Optional[Dict[str, int]] = None          # sku -> entity_id / row_id
        self._sku_entity_ids: Dict[str, int] = {}                 # sku -> entity_id
        self.category_roots: Optional[Dict[int, Dict[str, Any]]] = None   # store_id -> {path, name, rootarr}
        self.category_root_websites: Dict[int, List[int]] = {}            # website_id -> [store_id]
        self.soft_failures: List[SoftFailure] = []

    # ---------------------------
    # Schema variant
    # ---------------------------
    def _detect_link_column(self) -> str:
        variant = self.config.schema_variant
        if variant == "versioned_row":
            return "row_id"
        if variant == "single_id":
            return "entity_id"
        cols = self.store.table_columns("catalog_product_entity")
        return "row_id" if "row_id" in cols else "entity_id"

    @property
    def is_versioned(self) -> bool:
        return self.link_column == "row_id"

    # ---------------------------
    # SKU map
    # ---------------------------
    def _load_skus(self) -> Dict[str, int]:
        table = self.store.table_name("catalog_product_entity")
        cols = "entity_id, sku" if not self.is_versioned else "row_id, entity_id, sku"
        ids: Dict[str, int] = {}
        for row in self.store.select(f"SELECT {cols} FROM {table}"):
            sku = str(row["sku"])
            self._sku_entity_ids[sku] = int(row["entity_id"])
            ids[sku] = int(row[self.link_column])
        return ids

    def product_id_for_sku(self, sku: str) -> Optional[int]:
        if self._sku_ids is None:
            self._sku_ids = self._load_skus()
        return self._sku_ids.get(sku)

    def product_exists(self, sku: str) -> bool:
        return self.product_id_for_sku(sku) is not None

    def remember_product(self, sku: str, product_id: int, entity_id: Optional[int] = None) -> None:
        if self._sku_ids is None:
            self._sku_ids = self._load_skus()
        self._sku_ids[sku] = product_id
        self._sku_entity_ids[sku] = entity_id if entity_id is not None else product_id

    # ---------------------------
    # Soft failures (per product)
    # ---------------------------
    def reset_soft_failures(self) -> None:
        self.soft_failures = []

    def soft_fail(self, component: str, message: str) -> SoftFailure:
        failure = SoftFailure(component, message)
        self.soft_failures.append(failure)
        logger.warning("[%s] %s", component.upper(), message)
        return failure
