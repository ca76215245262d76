# catalog_sync/sync/product_import.py
# =======================================================
# Product import orchestrator
# - New product defaults + entity row (both schema variants)
# - Website links
# - Resolver pipeline, one product at a time
# - Batch add / update / upsert with an import log entry
# =======================================================
from __future__ import annotations

import logging
import time
import traceback
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional

from catalog_sync.config import IllegalNewAttributeAction, ImportConfig
from catalog_sync.db import RelationalStore
from catalog_sync.exceptions import IllegalAttributeValueError, StateError
from catalog_sync.models.import_log import (
    SYNC_OPERATION_INSERT,
    SYNC_OPERATION_UPDATE,
    SYNC_OPERATION_UPSERT,
    ImportLogEntry,
    add_import_entry,
)
from catalog_sync.sync.components.categories import CategoryResolver
from catalog_sync.sync.components.configurable import ConfigurableResolver
from catalog_sync.sync.components.links import LinkResolver
from catalog_sync.sync.components.media import MediaLocator, MediaResolver
from catalog_sync.sync.components.price import TierPriceResolver
from catalog_sync.sync.components.rewrites import RewriteResolver
from catalog_sync.sync.components.stock import StockResolver
from catalog_sync.sync.components.stores import FIELD_WEBSITES
from catalog_sync.sync.components.util import is_numeric, slug
from catalog_sync.sync.components.values import ProductRecord, db_value, decode_record
from catalog_sync.sync.session import ImportSession

logger = logging.getLogger("uvicorn.error")

REQUIRED_ADD_ATTRIBUTES = ("sku", "price")
ENTITY_KEY_COLUMNS = ("entity_id", "row_id", "created_at", "updated_at")

Result = Dict[str, Any]


def _log_speed(start: float, label: str) -> float:
    duration = time.monotonic() - start
    logger.info("[SYNC] %s took %.3fs", label, duration)
    return duration


class ImportOrchestrator:
    """
    Runs the resolver pipeline for each product of a batch.

    One orchestrator (and one ImportSession) per batch. Products are handled
    strictly in order; categories created for product N are visible to N+1.
    """

    def __init__(self, store: RelationalStore, config: Optional[ImportConfig] = None,
                 media_locator: Optional[MediaLocator] = None):
        self.store = store
        self.session = ImportSession(store, config)
        self.config = self.session.config
        self.rewrites = RewriteResolver(self.session)
        self.categories = CategoryResolver(self.session, self.rewrites)
        self.stock = StockResolver(self.session)
        self.tier_prices = TierPriceResolver(self.session)
        self.configurable = ConfigurableResolver(self.session)
        self.media = MediaResolver(self.session, media_locator)
        self.links = LinkResolver(self.session)

    # ---------------------------
    # Lookups
    # ---------------------------
    def product_exists(self, sku: str) -> bool:
        return self.session.product_exists(sku)

    def product_attribute_codes(self) -> List[str]:
        return self.session.attributes.attribute_codes()

    def attribute_set_id(self, record: ProductRecord) -> int:
        raw = record.text("attribute_set_id")
        if raw is not None:
            if is_numeric(raw):
                return int(float(raw))
            found = self.session.attributes.attribute_set_id(raw)
            if found is not None:
                return found
        default = self.config.default_attribute_set
        if is_numeric(default):
            return int(float(default))
        found = self.session.attributes.attribute_set_id(default)
        if found is None:
            raise StateError(f"Unable to find default attribute set '{default}'")
        return found

    # ---------------------------
    # New product
    # ---------------------------
    def set_new_product_defaults(self, record: ProductRecord) -> None:
        cfg = self.config
        defaults = {
            "type_id": cfg.default_type,
            "status": cfg.default_status,
            "visibility": cfg.default_visibility,
            "weight": 1,
        }
        for code, value in defaults.items():
            if code not in record:
                record[code] = value
        record["attribute_set_id"] = self.attribute_set_id(record)

        days = cfg.default_news_to_date_days
        if days > 0 and not record.text("news_from_date") and not record.text("news_to_date"):
            now = datetime.now()
            record["news_from_date"] = now.strftime("%Y-%m-%d %H:%M:%S")
            record["news_to_date"] = (now + timedelta(days=days)).strftime("%Y-%m-%d %H:%M:%S")

    def create_product_record(self, record: ProductRecord, sku: str) -> int:
        """Insert the catalog_product_entity row; returns the link-column id."""
        table = self.store.table_name("catalog_product_entity")
        available = set(self.store.table_columns("catalog_product_entity"))
        values: Dict[str, Any] = {
            c: db_value(record.get(c)) for c in record.keys()
            if c in available and c not in ENTITY_KEY_COLUMNS and not record.is_delete(c)
        }

        entity_id: Optional[int] = None
        with self.store.transaction():
            if self.session.is_versioned:
                sequence = self.store.table_name("sequence_product")
                entity_id = self.store.insert(f"INSERT INTO {sequence} (sequence_value) VALUES (NULL)")
                values["entity_id"] = entity_id

            columns = list(values)
            placeholders = [f":c_{c}" for c in columns]
            for stamp in ("created_at", "updated_at"):
                if stamp in available:
                    columns.append(stamp)
                    placeholders.append("CURRENT_TIMESTAMP")
            product_id = self.store.insert(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join(placeholders)})",
                {f"c_{c}": v for c, v in values.items()},
            )
        if product_id is None:
            raise StateError(f"Product insert for sku '{sku}' returned no id")

        self.session.remember_product(sku, int(product_id), entity_id)
        logger.info("[SYNC] created product '%s' (%s)", sku, product_id)
        return int(product_id)

    # ---------------------------
    # Websites
    # ---------------------------
    def add_website_record(self, product_id: int, website_id: int) -> None:
        table = self.store.table_name("catalog_product_website")
        params = {"p": product_id, "w": website_id}
        count = self.store.select_one(
            f"SELECT COUNT(*) AS cnt FROM {table} WHERE product_id = :p AND website_id = :w", params, "cnt"
        )
        if not int(count or 0):
            self.store.insert(f"INSERT INTO {table} (product_id, website_id) VALUES (:p, :w)", params)

    def update_websites(self, product_id: int, record: ProductRecord) -> None:
        codes = record.text(FIELD_WEBSITES)
        if codes is None:
            return
        website_ids = self.session.scope.website_ids_from_codes(codes)
        table = self.store.table_name("catalog_product_website")
        self.store.delete(f"DELETE FROM {table} WHERE product_id = :p", {"p": product_id})
        for website_id in website_ids:
            self.add_website_record(product_id, website_id)

    def touch_product(self, product_id: int) -> None:
        table = self.store.table_name("catalog_product_entity")
        self.store.update(
            f"UPDATE {table} SET updated_at = CURRENT_TIMESTAMP WHERE {self.session.link_column} = :p",
            {"p": product_id},
        )

    # ---------------------------
    # Special columns
    # ---------------------------
    def handle_url_key(self, record: ProductRecord, is_new: bool) -> None:
        url_key = record.text("url_key")
        if url_key is not None:
            record["url_key"] = slug(url_key)
        elif is_new and "url_key" not in record:
            record["url_key"] = slug(record.text("name") or record.sku)

    def handle_tax_class(self, record: ProductRecord, is_new: bool) -> None:
        if is_new and "tax_class_id" not in record:
            record["tax_class_id"] = self.config.default_tax_class

    # ---------------------------
    # Pipeline
    # ---------------------------
    def process_product(self, record: ProductRecord, sku: str, product_id: int, is_new: bool) -> None:
        self.handle_url_key(record, is_new)
        self.handle_tax_class(record, is_new)
        self.session.attributes.process_product(record, sku, product_id)
        self.stock.process_product(record, sku, product_id)
        self.tier_prices.process_product(record, sku, product_id)
        self.configurable.assign_configurable(record, sku, product_id, is_new)
        self.media.process_product(record, sku, product_id)
        self.categories.assign_categories(record, sku, product_id)
        self.links.process_product(record, sku, product_id)
        self.rewrites.assign_product_rewrite(record, sku, product_id)

    def _escalates(self, exc: Exception) -> bool:
        return (
            isinstance(exc, IllegalAttributeValueError)
            and self.config.illegal_new_attribute_action == IllegalNewAttributeAction.SKIP_BATCH
        )

    def _resolve(self, record: ProductRecord, sku: str, product_id: int, is_new: bool,
                 result: Result, after=None) -> Result:
        self.session.reset_soft_failures()
        try:
            if self.config.wrap_product_in_transaction:
                with self.store.transaction():
                    self.process_product(record, sku, product_id, is_new)
                    if after:
                        after()
            else:
                self.process_product(record, sku, product_id, is_new)
                if after:
                    after()
        except Exception as e:
            if self._escalates(e):
                raise
            logger.error("[SYNC] %s failed: %s", sku, e)
            result["error"] = str(e)
            result["trace"] = traceback.format_exc()

        if self.session.soft_failures and "error" not in result:
            result["warning"] = " ".join(f.message for f in self.session.soft_failures)
        return result

    def add_product(self, data: Mapping[str, Any]) -> Result:
        start = time.monotonic()
        record = data if isinstance(data, ProductRecord) else decode_record(data)
        sku = record.sku
        result: Result = {"sku": sku, "new": True}

        if "name" not in record:
            record["name"] = sku
        if "price" not in record:
            result["error"] = "'price' field not mapped."
            return result

        try:
            self.set_new_product_defaults(record)
            product_id = self.create_product_record(record, sku)
            result["id"] = product_id
            for website_id in self.session.scope.website_ids_for_product(record):
                self.add_website_record(product_id, website_id)
        except Exception as e:
            logger.error("[SYNC] unable to create '%s': %s", sku, e)
            result["error"] = str(e)
            result["trace"] = traceback.format_exc()
            return result

        self._resolve(record, sku, product_id, True, result)
        _log_speed(start, f"add_product({sku})")
        return result

    def update_product(self, data: Mapping[str, Any]) -> Result:
        start = time.monotonic()
        record = data if isinstance(data, ProductRecord) else decode_record(data)
        sku = record.sku
        product_id = self.session.product_id_for_sku(sku)
        result: Result = {"sku": sku, "id": product_id, "new": False}
        if product_id is None:
            result["error"] = f"Product with sku '{sku}' does not exist."
            return result

        def _after() -> None:
            self.update_websites(product_id, record)
            self.touch_product(product_id)

        self._resolve(record, sku, product_id, False, result, after=_after)
        _log_speed(start, f"update_product({sku})")
        return result

    # ---------------------------
    # Batches
    # ---------------------------
    def _finish(self, entry: ImportLogEntry, start: float, label: str) -> None:
        entry.duration = round(_log_speed(start, label), 3)
        add_import_entry(entry)

    def add(self, products: List[Mapping[str, Any]], transform_id: Optional[str] = None) -> List[Result]:
        start = time.monotonic()
        entry = ImportLogEntry(SYNC_OPERATION_INSERT, count_in=len(products), transform_id=transform_id)
        results: List[Result] = []
        logger.info("[SYNC] add: %s products", len(products))
        try:
            for data in products:
                record = decode_record(data)
                missing = [a for a in REQUIRED_ADD_ATTRIBUTES if a not in record]
                if missing:
                    entry.error_count += len(missing)
                    results.append({
                        "error": "  ".join(f"Attribute '{a}' is required and must be mapped." for a in missing)
                    })
                    continue
                sku = record.sku
                if self.product_exists(sku):
                    entry.warning_count += 1
                    results.append({
                        "sku": sku,
                        "warning": f"Cannot add product.  Product with sku '{sku}' exists already.",
                    })
                    continue
                result = self.add_product(record)
                if "error" in result:
                    entry.error_count += 1
                else:
                    entry.count_out += 1
                results.append(result)
        finally:
            self._finish(entry, start, "add()")
        return results

    def update(self, products: List[Mapping[str, Any]], transform_id: Optional[str] = None) -> List[Result]:
        start = time.monotonic()
        entry = ImportLogEntry(SYNC_OPERATION_UPDATE, count_in=len(products), transform_id=transform_id)
        results: List[Result] = []
        logger.info("[SYNC] update: %s products", len(products))
        try:
            for data in products:
                record = decode_record(data)
                if "sku" not in record:
                    entry.error_count += 1
                    results.append({"error": "'sku' attribute not found in data.  Unable to process."})
                    continue
                sku = record.sku
                if not self.product_exists(sku):
                    entry.warning_count += 1
                    results.append({
                        "sku": sku,
                        "warning": f"Cannot update product.  Product with sku '{sku}' does not exist.",
                    })
                    continue
                result = self.update_product(record)
                if "error" in result:
                    entry.error_count += 1
                else:
                    entry.count_out += 1
                results.append(result)
        finally:
            self._finish(entry, start, "update()")
        return results

    def upsert(self, products: List[Mapping[str, Any]], transform_id: Optional[str] = None) -> List[Result]:
        start = time.monotonic()
        entry = ImportLogEntry(SYNC_OPERATION_UPSERT, count_in=len(products), transform_id=transform_id)
        results: List[Result] = []
        logger.info("[SYNC] upsert: %s products", len(products))
        try:
            for data in products:
                record = decode_record(data)
                if "sku" not in record:
                    entry.error_count += 1
                    results.append({"error": "'sku' attribute not found in data.  Unable to process."})
                    continue
                if self.product_exists(record.sku):
                    result = self.update_product(record)
                else:
                    result = self.add_product(record)
                if "error" in result:
                    entry.error_count += 1
                else:
                    entry.count_out += 1
                results.append(result)
        finally:
            self._finish(entry, start, "upsert()")
        return results
