# catalog_sync/sync/components/configurable.py
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional

from catalog_sync.sync.components.util import comma_list
from catalog_sync.sync.components.values import ProductRecord

if TYPE_CHECKING:
    from catalog_sync.sync.session import ImportSession

logger = logging.getLogger("uvicorn.error")

CONFIGURABLE_ATTRIBUTES = "configurable_attributes"
SIMPLES_SKUS_FIELD = "simples_skus"
TYPE_CONFIGURABLE = "configurable"
CHILD_TYPES = ("simple", "virtual")


def is_configurable(record: ProductRecord) -> bool:
    return record.text("type_id") == TYPE_CONFIGURABLE


class ConfigurableResolver:
    """Super attributes (with per-store labels) and the simple-product super link of a configurable."""

    def __init__(self, session: "ImportSession"):
        self.session = session
        self.db = session.store
        self.entity_table = self.db.table_name("catalog_product_entity")
        self.super_attribute_table = self.db.table_name("catalog_product_super_attribute")
        self.label_table = self.db.table_name("catalog_product_super_attribute_label")
        self.super_link_table = self.db.table_name("catalog_product_super_link")
        self.relation_table = self.db.table_name("catalog_product_relation")

    def mark_configurable(self, product_id: int) -> None:
        self.db.update(
            f"""
            UPDATE {self.entity_table}
            SET type_id = :t, has_options = 1, required_options = 1
            WHERE {self.session.link_column} = :p
            """,
            {"t": TYPE_CONFIGURABLE, "p": product_id},
        )

    def super_attribute_id(self, product_id: int, attribute_id: int) -> Optional[int]:
        value = self.db.select_one(
            f"""
            SELECT product_super_attribute_id FROM {self.super_attribute_table}
            WHERE product_id = :p AND attribute_id = :a
            """,
            {"p": product_id, "a": attribute_id},
            "product_super_attribute_id",
        )
        return int(value) if value is not None else None

    def add_super_attribute(self, product_id: int, attribute_id: int, position: int) -> int:
        return int(self.db.insert(
            f"INSERT INTO {self.super_attribute_table} (product_id, attribute_id, position) VALUES (:p, :a, :pos)",
            {"p": product_id, "a": attribute_id, "pos": position},
        ))

    def upsert_label(self, super_attribute_id: int, store_id: int, label: str) -> None:
        params = {"id": super_attribute_id, "s": store_id, "v": label}
        count = self.db.select_one(
            f"SELECT COUNT(*) AS cnt FROM {self.label_table} WHERE product_super_attribute_id = :id AND store_id = :s",
            params,
            "cnt",
        )
        if int(count or 0):
            self.db.update(
                f"UPDATE {self.label_table} SET value = :v WHERE product_super_attribute_id = :id AND store_id = :s",
                params,
            )
        else:
            self.db.insert(
                f"""
                INSERT INTO {self.label_table} (product_super_attribute_id, store_id, use_default, value)
                VALUES (:id, :s, 1, :v)
                """,
                params,
            )

    def rebuild_super_link(self, product_id: int, skus: List[str]) -> None:
        """Replace links/relations of the parent with every simple/virtual product in `skus`."""
        link = self.session.link_column
        self.db.delete(f"DELETE FROM {self.super_link_table} WHERE parent_id = :p", {"p": product_id})
        self.db.delete(f"DELETE FROM {self.relation_table} WHERE parent_id = :p", {"p": product_id})
        if not skus:
            return
        params = {"p": product_id, "skus": skus, "types": list(CHILD_TYPES)}
        self.db.execute(
            f"""
            INSERT INTO {self.super_link_table} (parent_id, product_id)
            SELECT parent.{link}, child.entity_id
            FROM {self.entity_table} parent
            INNER JOIN {self.entity_table} child ON child.type_id IN :types AND child.sku IN :skus
            WHERE parent.{link} = :p
            """,
            params,
        )
        self.db.execute(
            f"""
            INSERT INTO {self.relation_table} (parent_id, child_id)
            SELECT parent.{link}, child.entity_id
            FROM {self.entity_table} parent
            INNER JOIN {self.entity_table} child ON child.type_id IN :types AND child.sku IN :skus
            WHERE parent.{link} = :p
            """,
            params,
        )

    def assign_configurable(self, record: ProductRecord, sku: str, product_id: int, is_new: bool) -> None:
        if not is_configurable(record):
            return
        if is_new and (CONFIGURABLE_ATTRIBUTES not in record or SIMPLES_SKUS_FIELD not in record):
            logger.info("[CONFIGURABLE] %s: new configurable without attributes/simples; nothing linked", sku)
            return

        attributes = self.session.attributes
        attribute_ids = attributes.attribute_ids(comma_list(record.text(CONFIGURABLE_ATTRIBUTES)))
        self.mark_configurable(product_id)

        store_ids = self.session.scope.store_ids_for_product(record)
        for position, attribute_id in enumerate(attribute_ids):
            descriptor = attributes.descriptor_by_id(attribute_id)
            super_id = self.super_attribute_id(product_id, attribute_id)
            if super_id is None:
                super_id = self.add_super_attribute(product_id, attribute_id, position)
            label = descriptor.frontend_label if descriptor else ""
            for store_id in store_ids:
                self.upsert_label(super_id, store_id, label)

        if SIMPLES_SKUS_FIELD in record:
            skus = comma_list(record.text(SIMPLES_SKUS_FIELD))
            self.rebuild_super_link(product_id, skus)
            logger.info("[CONFIGURABLE] %s: %s super attributes, simples %s", sku, len(attribute_ids), skus)
