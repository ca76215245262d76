# catalog_sync/sync/components/stores.py
from __future__ import annotations

import enum
import logging
from typing import Dict, List, Tuple

from catalog_sync.db import RelationalStore
from catalog_sync.exceptions import InputError
from catalog_sync.sync.components.util import comma_list, unique
from catalog_sync.sync.components.values import ProductRecord

logger = logging.getLogger("uvicorn.error")

ADMIN_STORE_CODE = "admin"
FIELD_STORE = "store"
FIELD_WEBSITES = "websites"


class Scope(enum.IntEnum):
    """Attribute scope as stored in catalog_eav_attribute.is_global."""
    STORE = 0
    GLOBAL = 1
    WEBSITE = 2


class StoreScope:
    """Store / website maps loaded once per session, plus the scope fan-out rules."""

    def __init__(self, store: RelationalStore):
        self.db = store
        self.stores: Dict[int, Tuple[str, int]] = {}   # store_id -> (code, website_id)
        self.websites: Dict[str, int] = {}             # code -> website_id
        self._load()

    def _load(self) -> None:
        store_t = self.db.table_name("store")
        website_t = self.db.table_name("store_website")
        for row in self.db.select(f"SELECT store_id, code, website_id FROM {store_t} ORDER BY store_id"):
            if row.get("website_id") is None:
                continue
            self.stores[int(row["store_id"])] = (str(row["code"]), int(row["website_id"]))
        for row in self.db.select(f"SELECT website_id, code FROM {website_t}"):
            if row.get("code") is not None and row.get("website_id") is not None:
                self.websites[str(row["code"])] = int(row["website_id"])
        logger.info("[STORES] loaded %s stores, %s websites", len(self.stores), len(self.websites))

    # ---------------------------
    # Store ids
    # ---------------------------
    def store_ids(self) -> List[int]:
        return list(self.stores.keys())

    def store_ids_for_store_scope(self, codes: str) -> List[int]:
        wanted = set(comma_list(codes))
        return [sid for sid, (code, _) in self.stores.items() if code in wanted]

    def store_ids_for_website_scope(self, codes: str) -> List[int]:
        wanted = set(comma_list(codes))
        website_ids = {wid for code, wid in self.stores.values() if code in wanted}
        return [sid for sid, (_, wid) in self.stores.items() if wid in website_ids]

    def store_ids_for_product(self, record: ProductRecord, scope: int = Scope.STORE) -> List[int]:
        codes = record.text(FIELD_STORE) or ADMIN_STORE_CODE
        if scope == Scope.STORE:
            return self.store_ids_for_store_scope(codes)
        if scope == Scope.GLOBAL:
            return self.store_ids_for_store_scope(ADMIN_STORE_CODE)
        if scope == Scope.WEBSITE:
            return self.store_ids_for_website_scope(codes)
        raise InputError(f"Unexpected 'scope' value: [{scope}].")

    def target_store_ids(self, record: ProductRecord) -> List[int]:
        """Stores a per-store row (gallery value, super attribute label) is written for."""
        if self.db.is_single_store():
            return self.store_ids()
        return self.store_ids_for_store_scope(record.text(FIELD_STORE) or ADMIN_STORE_CODE)

    # ---------------------------
    # Website ids
    # ---------------------------
    def website_id_for_code(self, code: str) -> int:
        if code in self.websites:
            return self.websites[code]
        raise InputError(f"Could not find website_id for website code [{code}].")

    def website_ids_from_codes(self, codes: str) -> List[int]:
        return unique(self.website_id_for_code(c) for c in comma_list(codes))

    def website_ids_from_store_field(self, record: ProductRecord) -> List[int]:
        key = (record.text(FIELD_STORE) or ADMIN_STORE_CODE).strip()
        if key != ADMIN_STORE_CODE:
            wanted = comma_list(key)
            return unique(wid for code in wanted for sid, (c, wid) in self.stores.items() if c == code)
        return unique(wid for sid, (_, wid) in self.stores.items() if sid != 0)

    def website_ids_for_product(self, record: ProductRecord) -> List[int]:
        if record.text(FIELD_WEBSITES):
            return self.website_ids_from_codes(record.text(FIELD_WEBSITES) or "")
        return self.website_ids_from_store_field(record)
