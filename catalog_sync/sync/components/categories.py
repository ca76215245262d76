# catalog_sync/sync/components/categories.py
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from catalog_sync.config import ImportMode
from catalog_sync.exceptions import InputError, StateError
from catalog_sync.sync.components import category_grammar as grammar
from catalog_sync.sync.components.category_grammar import CategoryLevel, CategoryPath
from catalog_sync.sync.components.rewrites import RewriteResolver
from catalog_sync.sync.components.stores import Scope
from catalog_sync.sync.components.values import ProductRecord

if TYPE_CHECKING:
    from catalog_sync.sync.session import ImportSession

logger = logging.getLogger("uvicorn.error")

KEY = "categories"
IDS_KEY = "category_ids"

CATEGORY_ATTRIBUTES = {
    "name": "varchar",
    "url_key": "varchar",
    "url_path": "varchar",
    "is_active": "int",
    "is_anchor": "int",
    "include_in_menu": "int",
}


class CategoryResolver:
    """
    Resolves the 'categories' path string of a product into category ids,
    creating missing levels, and links the product to them.
    """

    def __init__(self, session: "ImportSession", rewrites: RewriteResolver):
        self.session = session
        self.db = session.store
        self.rewrites = rewrites
        self.entity_table = self.db.table_name("catalog_category_entity")
        self.link_table = self.db.table_name("catalog_category_product")
        self._attribute_ids: Optional[Dict[str, int]] = None

    @property
    def link_column(self) -> str:
        return self.session.link_column

    @property
    def tree_delimiter(self) -> str:
        return self.session.config.category_tree_delimiter

    # ---------------------------
    # Metadata
    # ---------------------------
    @property
    def attribute_ids(self) -> Dict[str, int]:
        if self._attribute_ids is None:
            ea = self.db.table_name("eav_attribute")
            et = self.db.table_name("eav_entity_type")
            rows = self.db.select(
                f"""
                SELECT ea.attribute_id, ea.attribute_code FROM {ea} ea
                INNER JOIN {et} et ON et.entity_type_id = ea.entity_type_id
                WHERE et.entity_type_code = 'catalog_category' AND ea.attribute_code IN :codes
                """,
                {"codes": list(CATEGORY_ATTRIBUTES)},
            )
            self._attribute_ids = {str(r["attribute_code"]): int(r["attribute_id"]) for r in rows}
            if "name" not in self._attribute_ids:
                raise StateError("Unable to lookup category 'name' attribute id")
        return self._attribute_ids

    def load_roots(self) -> Dict[int, Dict[str, Any]]:
        """store_id -> {path, name, rootarr} for every store's root category."""
        if self.session.category_roots is not None:
            return self.session.category_roots

        store_t = self.db.table_name("store")
        group_t = self.db.table_name("store_group")
        varchar_t = self.db.table_name("catalog_category_entity_varchar")
        link = self.link_column
        rows = self.db.select(
            f"""
            SELECT s.store_id, g.website_id, c.path, v.value AS name
            FROM {store_t} s
            INNER JOIN {group_t} g ON g.group_id = s.group_id
            INNER JOIN {self.entity_table} c ON c.{link} = g.root_category_id
            INNER JOIN {varchar_t} v ON v.{link} = c.{link} AND v.attribute_id = :a AND v.store_id = 0
            ORDER BY s.store_id
            """,
            {"a": self.attribute_ids["name"]},
        )
        roots: Dict[int, Dict[str, Any]] = {}
        websites: Dict[int, List[int]] = {}
        for r in rows:
            store_id = int(r["store_id"])
            path = str(r["path"] or "")
            roots[store_id] = {"path": path, "name": str(r["name"]), "rootarr": path.split("/")}
            websites.setdefault(int(r["website_id"]), []).append(store_id)

        self.session.category_roots = roots
        self.session.category_root_websites = websites
        logger.info("[CATEGORY] loaded %s store roots", len(roots))
        return roots

    # ---------------------------
    # Store roots
    # ---------------------------
    def _candidate_root_store_ids(self, record: ProductRecord) -> List[int]:
        scope = self.session.scope
        store_ids = [sid for sid in scope.store_ids_for_product(record, Scope.WEBSITE) if sid != 0]
        if store_ids:
            return store_ids
        for website_id in scope.website_ids_for_product(record):
            store_ids.extend(self.session.category_root_websites.get(website_id, []))
        return store_ids

    def store_root_paths(self, record: ProductRecord, value: str) -> Tuple[str, Dict[str, Dict[str, Any]]]:
        """
        Replace explicit '[Root Name]' references with store root keys.

        Returns the rewritten category string and root key -> root info. The
        default root (first store's root) is always present.
        """
        roots = self.load_roots()
        if not roots:
            raise StateError("No store root categories found.")

        root_paths: Dict[str, Dict[str, Any]] = {}
        store_ids = self._candidate_root_store_ids(record)
        for root_name in grammar.explicit_root_names(value):
            for store_id in store_ids:
                root = roots.get(store_id)
                if root and root_name.strip() == root["name"]:
                    key = grammar.store_root_key(store_id)
                    root_paths[key] = root
                    value = grammar.replace_explicit_root(value, root_name, key)
                    break

        unmatched = grammar.explicit_root_names(value)
        if unmatched:
            raise InputError(f"Cannot find site root with names [{','.join(unmatched)}]")

        root_paths[grammar.DEFAULT_ROOT_PATH_KEY] = next(iter(roots.values()))
        return value, root_paths

    # ---------------------------
    # Category rows
    # ---------------------------
    def find_existing(self, parent_id: int, name: str) -> Optional[int]:
        varchar_t = self.db.table_name("catalog_category_entity_varchar")
        link = self.link_column
        value = self.db.select_one(
            f"""
            SELECT c.{link} AS category_id
            FROM {self.entity_table} c
            INNER JOIN {varchar_t} v
                ON v.{link} = c.{link} AND v.attribute_id = :a AND v.store_id = 0 AND v.value = :name
            WHERE c.parent_id = :parent
            ORDER BY c.{link}
            """,
            {"a": self.attribute_ids["name"], "name": name, "parent": parent_id},
            "category_id",
        )
        return int(value) if value is not None else None

    def upsert_attribute_value(self, attribute_code: str, store_id: int, category_id: int, value: Any) -> None:
        attribute_id = self.attribute_ids.get(attribute_code)
        if attribute_id is None:
            return
        table = self.db.table_name(f"catalog_category_entity_{CATEGORY_ATTRIBUTES[attribute_code]}")
        link = self.link_column
        key = {"a": attribute_id, "s": store_id, "c": category_id}
        count = self.db.select_one(
            f"SELECT COUNT(*) AS cnt FROM {table} WHERE attribute_id = :a AND store_id = :s AND {link} = :c",
            key,
            "cnt",
        )
        params = dict(key, v=value)
        if int(count or 0) > 0:
            self.db.update(
                f"UPDATE {table} SET value = :v WHERE attribute_id = :a AND store_id = :s AND {link} = :c",
                params,
            )
        else:
            self.db.insert(
                f"INSERT INTO {table} (attribute_id, store_id, {link}, value) VALUES (:a, :s, :c, :v)",
                params,
            )

    def _insert_category_row(self, attribute_set_id: int, parent_id: int, position: int, level: int) -> int:
        params = {"set": attribute_set_id, "parent": parent_id, "pos": position, "level": level}
        if self.session.is_versioned:
            sequence_t = self.db.table_name("sequence_catalog_category")
            params["entity_id"] = self.db.insert(f"INSERT INTO {sequence_t} (sequence_value) VALUES (NULL)")
            category_id = self.db.insert(
                f"""
                INSERT INTO {self.entity_table}
                    (entity_id, attribute_set_id, parent_id, position, level, path, children_count, created_at, updated_at)
                VALUES (:entity_id, :set, :parent, :pos, :level, '', 0, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                """,
                params,
            )
        else:
            category_id = self.db.insert(
                f"""
                INSERT INTO {self.entity_table}
                    (attribute_set_id, parent_id, position, level, path, children_count, created_at, updated_at)
                VALUES (:set, :parent, :pos, :level, '', 0, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                """,
                params,
            )
        if category_id is None:
            raise StateError(f"Category insert under parent {parent_id} returned no id")
        return int(category_id)

    def create_category(self, parent_path: List[str], level: CategoryLevel) -> int:
        parent_id = int(parent_path[-1])
        link = self.link_column
        with self.db.transaction():
            parent = self.db.fetch_row(
                f"SELECT attribute_set_id, level FROM {self.entity_table} WHERE {link} = :p",
                {"p": parent_id},
            )
            if parent is None:
                raise StateError(f"Parent category {parent_id} does not exist")
            position = self.db.select_one(
                f"SELECT COALESCE(MAX(position), 0) + 1 AS position FROM {self.entity_table} WHERE parent_id = :p",
                {"p": parent_id},
                "position",
            )
            category_id = self._insert_category_row(
                int(parent["attribute_set_id"]), parent_id, int(position or 1), int(parent["level"] or 0) + 1
            )
            self.db.update(
                f"UPDATE {self.entity_table} SET path = :path WHERE {link} = :c",
                {"path": "/".join(parent_path + [str(category_id)]), "c": category_id},
            )
            for code in CATEGORY_ATTRIBUTES:
                self.upsert_attribute_value(code, 0, category_id, getattr(level, code))
        logger.info("[CATEGORY] created '%s' (%s) under %s", level.name, category_id, parent_id)
        return category_id

    def write_translation(self, category_id: int, store_id: int, level: CategoryLevel) -> None:
        self.upsert_attribute_value("name", store_id, category_id, level.translated_name)
        self.upsert_attribute_value("url_key", store_id, category_id, level.translated_url_key)
        self.upsert_attribute_value("url_path", store_id, category_id, level.translated_url_path)

    def category_id(self, parent_path: List[str], level: CategoryLevel, store_id: Optional[int] = None) -> int:
        """Existing child of parent_path[-1] named level.name, else a new one."""
        category_id = self.find_existing(int(parent_path[-1]), level.name)
        if category_id is None:
            category_id = self.create_category(parent_path, level)
        if level.has_translation and store_id:
            self.write_translation(category_id, store_id, level)
        return category_id

    def resolve_path(self, path: CategoryPath, root_paths: Dict[str, Dict[str, Any]]) -> List[Tuple[int, int]]:
        """[(category_id, position), ...] root to leaf."""
        root = root_paths[path.root_key]
        if path.root_only:
            return [(int(root["rootarr"][-1]), 0)]
        store_id = grammar.store_id_from_root_key(path.root_key)
        current_path = [p for p in root["path"].split("/") if p]
        resolved: List[Tuple[int, int]] = []
        for level in path.levels:
            category_id = self.category_id(current_path, level, store_id)
            resolved.append((category_id, level.position))
            current_path.append(str(category_id))
        return resolved

    # ---------------------------
    # Product links
    # ---------------------------
    def existing_category_ids(self, category_ids: List[int]) -> List[int]:
        if not category_ids:
            return []
        link = self.link_column
        rows = self.db.select(
            f"SELECT {link} AS category_id FROM {self.entity_table} WHERE {link} IN :ids",
            {"ids": category_ids},
        )
        return [int(r["category_id"]) for r in rows]

    def reset_categories(self, product_id: int) -> int:
        return self.db.delete(f"DELETE FROM {self.link_table} WHERE product_id = :p", {"p": product_id})

    def add_category_product(self, category_id: int, product_id: int, position: int = 0) -> None:
        params = {"c": category_id, "p": product_id, "pos": position}
        count = self.db.select_one(
            f"SELECT COUNT(*) AS cnt FROM {self.link_table} WHERE category_id = :c AND product_id = :p",
            params,
            "cnt",
        )
        if int(count or 0) > 0:
            self.db.update(
                f"UPDATE {self.link_table} SET position = :pos WHERE category_id = :c AND product_id = :p",
                params,
            )
        else:
            self.db.insert(
                f"INSERT INTO {self.link_table} (category_id, product_id, position) VALUES (:c, :p, :pos)",
                params,
            )

    def category_data_from_string(self, record: ProductRecord) -> Dict[int, int]:
        config = self.session.config
        value, root_paths = self.store_root_paths(record, record.text(KEY) or "")
        root_keys = [k for k in root_paths if k != grammar.DEFAULT_ROOT_PATH_KEY] + [grammar.DEFAULT_ROOT_PATH_KEY]
        segments = grammar.split_category_paths(value, config.category_delimiter)

        data: Dict[int, int] = {}
        for segment in segments:
            if not segment.strip():
                continue
            path = grammar.parse_path(segment, self.tree_delimiter, root_keys)
            resolved = self.resolve_path(path, root_paths)
            if config.category_last_only:
                resolved = resolved[-1:]
            for category_id, position in resolved:
                data[category_id] = position

        if not config.category_last_only:
            for key, root in root_paths.items():
                if not any(s.strip().startswith(key) for s in segments):
                    continue
                for category_id in root["rootarr"][1:]:
                    data.setdefault(int(category_id), 0)

        for root_id in grammar.ROOT_CATEGORY_IDS:
            data.pop(root_id, None)
        return data

    def assign_categories(self, record: ProductRecord, sku: str, product_id: int) -> List[int]:
        """Link the product to its categories. Returns the linked category ids."""
        if KEY in record and not record.is_delete(KEY):
            data = self.category_data_from_string(record)
        elif IDS_KEY in record:
            data = grammar.parse_category_ids(record.text(IDS_KEY) or "")
        else:
            logger.debug("[CATEGORY] %s: no categories given", sku)
            return []

        if self.session.config.category_mode == ImportMode.REPLACEMENT:
            self.reset_categories(product_id)

        existing = set(self.existing_category_ids(list(data)))
        invalid = [cid for cid in data if cid not in existing]
        if invalid:
            logger.warning(
                "[CATEGORY] invalid category ids for sku %s: %s", sku, ",".join(str(i) for i in invalid)
            )

        linked: List[int] = []
        for category_id, position in data.items():
            if category_id not in existing:
                continue
            self.add_category_product(category_id, product_id, position)
            self.rewrites.upsert_category_rewrite(category_id)
            linked.append(category_id)
        logger.info("[CATEGORY] %s linked to %s", sku, linked)
        return linked
