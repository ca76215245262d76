# catalog_sync/sync/components/attributes.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from catalog_sync.config import IllegalNewAttributeAction
from catalog_sync.db import RelationalStore
from catalog_sync.exceptions import CatalogSyncError, IllegalAttributeValueError, StateError
from catalog_sync.sync.components.stores import FIELD_STORE
from catalog_sync.sync.components.util import comma_list
from catalog_sync.sync.components.values import NULL, ProductRecord, as_text, db_value

if TYPE_CHECKING:
    from catalog_sync.sync.session import ImportSession

logger = logging.getLogger("uvicorn.error")

PRODUCT_ENTITY_TYPE_CODE = "catalog_product"
VALID_BACKEND_TYPES = ("datetime", "decimal", "int", "text", "varchar")
MEDIA_ATTRIBUTE_CODES = ("image", "small_image", "thumbnail")
TABLE_SOURCE_MODEL = "Magento\\Eav\\Model\\Entity\\Attribute\\Source\\Table"


@dataclass(frozen=True)
class AttributeDescriptor:
    attribute_id: int
    code: str
    backend_type: str
    frontend_input: str
    frontend_label: str = ""
    source_model: str = ""
    is_global: int = 0
    apply_to: str = ""

    @property
    def uses_table_source(self) -> bool:
        return not self.source_model or self.source_model == TABLE_SOURCE_MODEL

    @property
    def is_writable(self) -> bool:
        return self.backend_type in VALID_BACKEND_TYPES


# ===== Source model option providers =====
# Option lists for the platform's built-in (non table-backed) source models.
# Each provider returns [(stored_value, label), ...].

SourceOptionProvider = Callable[[RelationalStore], List[Tuple[Any, str]]]


def _status_options(_: RelationalStore) -> List[Tuple[Any, str]]:
    return [(1, "Enabled"), (2, "Disabled")]


def _visibility_options(_: RelationalStore) -> List[Tuple[Any, str]]:
    return [(1, "Not Visible Individually"), (2, "Catalog"), (3, "Search"), (4, "Catalog, Search")]


def _boolean_options(_: RelationalStore) -> List[Tuple[Any, str]]:
    return [(1, "Yes"), (0, "No")]


def _product_tax_class_options(db: RelationalStore) -> List[Tuple[Any, str]]:
    table = db.table_name("tax_class")
    rows = db.select(f"SELECT class_id, class_name FROM {table} WHERE class_type = :t", {"t": "PRODUCT"})
    return [(0, "None")] + [(int(r["class_id"]), str(r["class_name"])) for r in rows]


_SOURCE_PROVIDERS: Dict[str, SourceOptionProvider] = {
    "Magento\\Catalog\\Model\\Product\\Attribute\\Source\\Status": _status_options,
    "Magento\\Catalog\\Model\\Product\\Visibility": _visibility_options,
    "Magento\\Eav\\Model\\Entity\\Attribute\\Source\\Boolean": _boolean_options,
    "Magento\\Tax\\Model\\TaxClass\\Source\\Product": _product_tax_class_options,
}


def register_source_model(source_model: str, provider: SourceOptionProvider) -> None:
    """Teach the catalog how to list options for a custom source model."""
    _SOURCE_PROVIDERS[source_model] = provider


def _norm(s: Any) -> str:
    return as_text(s).strip().casefold()


class _Skip(CatalogSyncError):
    """Internal: leave this attribute unwritten (ignore policy)."""


class AttributeCatalog:
    """
    Product attribute metadata for one session, plus the typed EAV value writes.
    """

    def __init__(self, session: "ImportSession"):
        self.session = session
        self.db = session.store
        self._entity_type_id: Optional[int] = None
        self._attribute_sets: Optional[Dict[str, int]] = None
        self._descriptors: Optional[Dict[str, AttributeDescriptor]] = None

    # ---------------------------
    # Metadata
    # ---------------------------
    @property
    def entity_type_id(self) -> int:
        if self._entity_type_id is None:
            table = self.db.table_name("eav_entity_type")
            rows = self.db.select(
                f"SELECT entity_type_id FROM {table} WHERE entity_type_code = :code",
                {"code": PRODUCT_ENTITY_TYPE_CODE},
            )
            if not rows:
                raise StateError(
                    f"Unable to lookup 'entity_type_id' for 'entity_type_code' = '{PRODUCT_ENTITY_TYPE_CODE}'"
                )
            if len(rows) != 1:
                raise StateError(
                    f"Found {len(rows)} results when looking for '{PRODUCT_ENTITY_TYPE_CODE}' 'entity_type_id'."
                )
            self._entity_type_id = int(rows[0]["entity_type_id"])
        return self._entity_type_id

    @property
    def attribute_sets(self) -> Dict[str, int]:
        if self._attribute_sets is None:
            table = self.db.table_name("eav_attribute_set")
            rows = self.db.select(
                f"SELECT attribute_set_id, attribute_set_name FROM {table} WHERE entity_type_id = :t",
                {"t": self.entity_type_id},
            )
            self._attribute_sets = {str(r["attribute_set_name"]): int(r["attribute_set_id"]) for r in rows}
        return self._attribute_sets

    @property
    def descriptors(self) -> Dict[str, AttributeDescriptor]:
        if self._descriptors is None:
            ea = self.db.table_name("eav_attribute")
            cea = self.db.table_name("catalog_eav_attribute")
            rows = self.db.select(
                f"""
                SELECT ea.attribute_id, ea.attribute_code, ea.backend_type, ea.frontend_input,
                       ea.frontend_label, ea.source_model, cea.is_global, cea.apply_to
                FROM {ea} ea
                INNER JOIN {cea} cea ON cea.attribute_id = ea.attribute_id
                WHERE ea.entity_type_id = :t
                """,
                {"t": self.entity_type_id},
            )
            self._descriptors = {
                str(r["attribute_code"]): AttributeDescriptor(
                    attribute_id=int(r["attribute_id"]),
                    code=str(r["attribute_code"]),
                    backend_type=str(r["backend_type"] or ""),
                    frontend_input=str(r["frontend_input"] or ""),
                    frontend_label=str(r["frontend_label"] or ""),
                    source_model=str(r["source_model"] or ""),
                    is_global=int(r["is_global"] or 0),
                    apply_to=str(r["apply_to"] or ""),
                )
                for r in rows
            }
            logger.info("[ATTR] loaded %s product attributes", len(self._descriptors))
        return self._descriptors

    def attribute_codes(self) -> List[str]:
        return list(self.descriptors.keys())

    def resolve_attribute(self, code: str) -> Optional[AttributeDescriptor]:
        return self.descriptors.get(code)

    def descriptor_by_id(self, attribute_id: int) -> Optional[AttributeDescriptor]:
        for d in self.descriptors.values():
            if d.attribute_id == attribute_id:
                return d
        return None

    def attribute_ids(self, codes: List[str]) -> List[int]:
        out = []
        for code in codes:
            d = self.resolve_attribute(code.strip()) if code else None
            if d:
                out.append(d.attribute_id)
        return out

    def attribute_set_id(self, name: str) -> Optional[int]:
        return self.attribute_sets.get(name)

    # ---------------------------
    # Value writes
    # ---------------------------
    def _value_table(self, backend_type: str) -> str:
        return self.db.table_name(f"catalog_product_entity_{backend_type}")

    def upsert_value(self, attribute_id: int, store_id: int, product_id: int, value: Any, backend_type: str) -> None:
        """Check-then-write on (attribute_id, store_id, product_id)."""
        table = self._value_table(backend_type)
        link = self.session.link_column
        key = {"a": attribute_id, "s": store_id, "p": product_id}
        count = self.db.select_one(
            f"SELECT COUNT(*) AS cnt FROM {table} WHERE attribute_id = :a AND store_id = :s AND {link} = :p",
            key,
            "cnt",
        )
        params = dict(key, v=db_value(value))
        if int(count or 0) > 0:
            self.db.update(
                f"UPDATE {table} SET value = :v WHERE attribute_id = :a AND store_id = :s AND {link} = :p",
                params,
            )
        else:
            self.db.insert(
                f"INSERT INTO {table} (attribute_id, store_id, {link}, value) VALUES (:a, :s, :p, :v)",
                params,
            )

    def delete_value(self, product_id: int, store_id: int, descriptor: AttributeDescriptor) -> int:
        table = self._value_table(descriptor.backend_type)
        return self.db.delete(
            f"DELETE FROM {table} WHERE attribute_id = :a AND store_id = :s AND {self.session.link_column} = :p",
            {"a": descriptor.attribute_id, "s": store_id, "p": product_id},
        )

    def delete_value_except_store(self, product_id: int, store_id: int, descriptor: AttributeDescriptor) -> int:
        table = self._value_table(descriptor.backend_type)
        return self.db.delete(
            f"DELETE FROM {table} WHERE attribute_id = :a AND store_id <> :s AND {self.session.link_column} = :p",
            {"a": descriptor.attribute_id, "s": store_id, "p": product_id},
        )

    # ---------------------------
    # Options
    # ---------------------------
    def find_option_id(self, code: str, value: str) -> Optional[int]:
        """Table-backed option by value; exact case wins over a case-insensitive match."""
        ea = self.db.table_name("eav_attribute")
        eao = self.db.table_name("eav_attribute_option")
        eaov = self.db.table_name("eav_attribute_option_value")
        rows = self.db.select(
            f"""
            SELECT o.option_id, v.value
            FROM {ea} a
            INNER JOIN {eao} o ON o.attribute_id = a.attribute_id
            INNER JOIN {eaov} v ON v.option_id = o.option_id
            WHERE a.attribute_code = :code AND a.entity_type_id = :t AND LOWER(v.value) = LOWER(:value)
            ORDER BY v.store_id, o.option_id
            """,
            {"code": code, "t": self.entity_type_id, "value": value},
        )
        for r in rows:
            if str(r["value"]) == value:
                return int(r["option_id"])
        for r in rows:
            if _norm(r["value"]) == _norm(value):
                return int(r["option_id"])
        return None

    def _create_option(self, attribute_id: int, value: str) -> int:
        eao = self.db.table_name("eav_attribute_option")
        eaov = self.db.table_name("eav_attribute_option_value")
        with self.db.transaction():
            top = self.db.select_one(
                f"SELECT MAX(sort_order) AS sort_order FROM {eao} WHERE attribute_id = :a",
                {"a": attribute_id},
                "sort_order",
            )
            sort_order = 0 if top is None else int(top) + 1
            option_id = self.db.insert(
                f"INSERT INTO {eao} (attribute_id, sort_order) VALUES (:a, :o)",
                {"a": attribute_id, "o": sort_order},
            )
            self.db.insert(
                f"INSERT INTO {eaov} (option_id, store_id, value) VALUES (:o, 0, :v)",
                {"o": option_id, "v": value},
            )
        logger.info("[ATTR] created option %s for attribute %s: %r", option_id, attribute_id, value)
        return int(option_id)

    def resolve_or_create_option(self, code: str, raw_value: Any) -> Optional[int]:
        """
        Option id for a table-backed select/multiselect value.

        Returns None when the value is new, creation is disabled and the policy is
        'ignore'. Raises IllegalAttributeValueError for skip_product / skip_batch.
        """
        descriptor = self.resolve_attribute(code)
        if descriptor is None:
            return None
        value = as_text(raw_value).strip()
        option_id = self.find_option_id(code, value)
        if option_id is not None:
            return option_id
        config = self.session.config
        if config.allow_new_attribute_values:
            return self._create_option(descriptor.attribute_id, value)
        if config.illegal_new_attribute_action == IllegalNewAttributeAction.IGNORE:
            logger.info("[ATTR] ignoring new value %r for '%s'", value, code)
            return None
        raise IllegalAttributeValueError(code, value)

    def source_options(self, descriptor: AttributeDescriptor) -> List[Tuple[Any, str]]:
        provider = _SOURCE_PROVIDERS.get(descriptor.source_model)
        if provider is not None:
            return provider(self.db)
        eao = self.db.table_name("eav_attribute_option")
        eaov = self.db.table_name("eav_attribute_option_value")
        rows = self.db.select(
            f"""
            SELECT o.option_id, v.value
            FROM {eao} o INNER JOIN {eaov} v ON v.option_id = o.option_id AND v.store_id = 0
            WHERE o.attribute_id = :a
            ORDER BY o.sort_order, o.option_id
            """,
            {"a": descriptor.attribute_id},
        )
        return [(int(r["option_id"]), str(r["value"])) for r in rows]

    def source_option_id(self, descriptor: AttributeDescriptor, value: Any) -> Optional[Any]:
        """Match a custom source model option by label (case-insensitive) or raw value."""
        wanted = _norm(value)
        for opt_value, label in self.source_options(descriptor):
            if _norm(label) == wanted or _norm(opt_value) == wanted:
                return opt_value
        return None

    # ---------------------------
    # Product processing
    # ---------------------------
    def _select_value(self, descriptor: AttributeDescriptor, value: Any) -> Any:
        if descriptor.uses_table_source:
            option_id = self.resolve_or_create_option(descriptor.code, value)
            if option_id is None:
                raise _Skip()
            return option_id
        option_id = self.source_option_id(descriptor, value)
        if option_id is None:
            raise CatalogSyncError(
                f"Unable to find option key for attribute {descriptor.code} and value {as_text(value)}"
            )
        return option_id

    def _multiselect_value(self, descriptor: AttributeDescriptor, value: Any) -> str:
        option_ids: List[int] = []
        for token in comma_list(value):
            option_id = self.resolve_or_create_option(descriptor.code, token)
            if option_id is None:
                raise _Skip()
            if option_id not in option_ids:
                option_ids.append(option_id)
        return ",".join(str(i) for i in option_ids)

    def resolve_value(self, descriptor: AttributeDescriptor, value: Any) -> Any:
        """Incoming value -> stored value (option ids for select/multiselect)."""
        if value is NULL:
            return NULL
        if descriptor.frontend_input == "select":
            return self._select_value(descriptor, value)
        if descriptor.frontend_input == "multiselect":
            return self._multiselect_value(descriptor, value)
        return value

    def process_attribute(self, record: ProductRecord, product_id: int, descriptor: AttributeDescriptor) -> bool:
        """Write one attribute for one product. Returns False when nothing was written."""
        if not descriptor.is_writable:
            logger.debug("[ATTR] skipping '%s' (backend type %s)", descriptor.code, descriptor.backend_type)
            return False

        value = record.get(descriptor.code)
        scope = self.session.scope

        if record.is_delete(descriptor.code):
            for store_id in scope.store_ids_for_product(record):
                self.delete_value(product_id, store_id, descriptor)
            return True

        try:
            value = self.resolve_value(descriptor, value)
        except _Skip:
            return False

        store_ids = scope.store_ids_for_product(record, descriptor.is_global) if FIELD_STORE in record else [0]

        if self.db.is_single_store():
            self.delete_value_except_store(product_id, 0, descriptor)

        for store_id in store_ids:
            self.upsert_value(descriptor.attribute_id, store_id, product_id, value, descriptor.backend_type)
        return True

    def process_product(self, record: ProductRecord, sku: str, product_id: int) -> None:
        written = 0
        for code in record.keys():
            if code == "sku" or code in MEDIA_ATTRIBUTE_CODES:
                continue
            descriptor = self.resolve_attribute(code)
            if descriptor is None:
                continue
            if self.process_attribute(record, product_id, descriptor):
                written += 1
        logger.debug("[ATTR] %s: %s attribute values written", sku, written)
