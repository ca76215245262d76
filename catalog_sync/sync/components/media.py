# catalog_sync/sync/components/media.py
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple

from catalog_sync.exceptions import IntegrationError, StateError
from catalog_sync.sync.components.attributes import MEDIA_ATTRIBUTE_CODES, AttributeDescriptor
from catalog_sync.sync.components.util import media_target_name
from catalog_sync.sync.components.values import ProductRecord

if TYPE_CHECKING:
    from catalog_sync.sync.session import ImportSession

logger = logging.getLogger("uvicorn.error")

GALLERY_CODE = "media_gallery"
MEDIA_TYPE_IMAGE = "image"

# file reference -> catalog media path ("/a/b/name.jpg"), None when unavailable
MediaLocator = Callable[[str], Optional[str]]


def default_media_locator(file_ref: str) -> Optional[str]:
    """
    Dispersion path the platform stores product images under, derived from the
    file name only. Copying the file there is someone else's job.
    """
    name = media_target_name(file_ref.strip())
    if not name:
        return None
    c1 = "_" if name[0] == "." else name[0]
    c2 = "_" if len(name) < 2 or name[1] == "." else name[1]
    return f"/{c1}/{c2}/{name}"


def split_exclude_flag(item: str, default: bool = False) -> Tuple[str, bool]:
    """'+a.jpg' -> ('a.jpg', False); '-a.jpg' -> ('a.jpg', True)."""
    if item and item[0] in "+-":
        return item[1:], item[0] == "-"
    return item, default


class MediaResolver:
    """Gallery rows and image attribute values for image / small_image / thumbnail / media_gallery."""

    def __init__(self, session: "ImportSession", locator: Optional[MediaLocator] = None):
        self.session = session
        self.db = session.store
        self.locator = locator or default_media_locator
        self.gallery_table = self.db.table_name("catalog_product_entity_media_gallery")
        self.value_table = self.db.table_name("catalog_product_entity_media_gallery_value")
        self.to_entity_table = self.db.table_name("catalog_product_entity_media_gallery_value_to_entity")

    @property
    def link_column(self) -> str:
        return self.session.link_column

    def _descriptor(self, code: str) -> Optional[AttributeDescriptor]:
        return self.session.attributes.resolve_attribute(code)

    def _gallery_attribute_id(self) -> int:
        descriptor = self._descriptor(GALLERY_CODE)
        if descriptor is None:
            raise StateError("Unable to lookup 'media_gallery' attribute")
        return descriptor.attribute_id

    # ---------------------------
    # Gallery rows
    # ---------------------------
    def gallery_value_id(self, attribute_id: int, value: str) -> Optional[int]:
        v = self.db.select_one(
            f"SELECT value_id FROM {self.gallery_table} WHERE attribute_id = :a AND value = :v AND media_type = :t",
            {"a": attribute_id, "v": value, "t": MEDIA_TYPE_IMAGE},
            "value_id",
        )
        return int(v) if v is not None else None

    def next_position(self, product_id: int, store_id: int) -> int:
        top = self.db.select_one(
            f"""
            SELECT MAX(gv.position) AS maxpos
            FROM {self.value_table} gv
            INNER JOIN {self.gallery_table} g ON g.value_id = gv.value_id
            WHERE gv.{self.link_column} = :p AND gv.store_id = :s
            """,
            {"p": product_id, "s": store_id},
            "maxpos",
        )
        return 0 if top is None else int(top) + 1

    def add_image_to_gallery(self, product_id: int, image: str, store_ids: List[int],
                             label: Optional[str] = None, disabled: bool = False) -> int:
        attribute_id = self._gallery_attribute_id()
        value_id = self.gallery_value_id(attribute_id, image)
        if value_id is None:
            value_id = int(self.db.insert(
                f"INSERT INTO {self.gallery_table} (attribute_id, value, media_type) VALUES (:a, :v, :t)",
                {"a": attribute_id, "v": image, "t": MEDIA_TYPE_IMAGE},
            ))

        link = self.link_column
        for store_id in store_ids:
            params = {"id": value_id, "s": store_id, "p": product_id, "l": label, "d": 1 if disabled else 0}
            exists = self.db.select_one(
                f"SELECT COUNT(*) AS cnt FROM {self.value_table} WHERE value_id = :id AND store_id = :s AND {link} = :p",
                params,
                "cnt",
            )
            if int(exists or 0):
                self.db.update(
                    f"""
                    UPDATE {self.value_table} SET label = :l, disabled = :d
                    WHERE value_id = :id AND store_id = :s AND {link} = :p
                    """,
                    params,
                )
            else:
                params["pos"] = self.next_position(product_id, store_id)
                self.db.insert(
                    f"""
                    INSERT INTO {self.value_table} (value_id, store_id, {link}, label, position, disabled)
                    VALUES (:id, :s, :p, :l, :pos, :d)
                    """,
                    params,
                )

        exists = self.db.select_one(
            f"SELECT COUNT(*) AS cnt FROM {self.to_entity_table} WHERE value_id = :id AND {link} = :p",
            {"id": value_id, "p": product_id},
            "cnt",
        )
        if not int(exists or 0):
            self.db.insert(
                f"INSERT INTO {self.to_entity_table} (value_id, {link}) VALUES (:id, :p)",
                {"id": value_id, "p": product_id},
            )
        return value_id

    def update_image_label(self, descriptor: AttributeDescriptor, product_id: int, store_ids: List[int], label: str) -> int:
        """Label of the gallery entry currently assigned to an image attribute."""
        varchar = self.db.table_name("catalog_product_entity_varchar")
        link = self.link_column
        rows = self.db.select(
            f"""
            SELECT g.value_id FROM {self.gallery_table} g
            INNER JOIN {varchar} v ON v.value = g.value AND v.attribute_id = :a AND v.{link} = :p
            """,
            {"a": descriptor.attribute_id, "p": product_id},
        )
        value_ids = [int(r["value_id"]) for r in rows]
        if not value_ids or not store_ids:
            return 0
        return self.db.update(
            f"""
            UPDATE {self.value_table} SET label = :l
            WHERE {link} = :p AND value_id IN :ids AND store_id IN :stores
            """,
            {"l": label, "p": product_id, "ids": value_ids, "stores": store_ids},
        )

    # ---------------------------
    # Attributes
    # ---------------------------
    def handle_image_attribute(self, record: ProductRecord, product_id: int, descriptor: AttributeDescriptor, value: str) -> bool:
        image = self.locator(value)
        if image is None:
            logger.warning("[MEDIA] image '%s' unavailable for '%s'", value, descriptor.code)
            return False
        store_ids = self.session.scope.target_store_ids(record)
        if not store_ids:
            logger.warning("[MEDIA] no target stores for '%s'", descriptor.code)
            return False
        self.add_image_to_gallery(product_id, image, store_ids, record.text(f"{descriptor.code}_label"))
        self.session.attributes.upsert_value(descriptor.attribute_id, 0, product_id, image, descriptor.backend_type)
        return True

    def handle_gallery_attribute(self, record: ProductRecord, product_id: int, value: str) -> int:
        added = 0
        store_ids = self.session.scope.target_store_ids(record)
        for item in value.split(self.session.config.media_gallery_delimiter):
            item = item.strip()
            if not item:
                continue
            item, disabled = split_exclude_flag(item)
            file_ref, _, label = item.partition("::")
            image = self.locator(file_ref.strip())
            if image is None:
                logger.warning("[MEDIA] gallery image '%s' unavailable", file_ref)
                continue
            self.add_image_to_gallery(product_id, image, store_ids, label or None, disabled)
            added += 1
        return added

    def _process(self, record: ProductRecord, sku: str, product_id: int) -> None:
        scope = self.session.scope
        store_ids = scope.store_ids_for_product(record)

        for code in MEDIA_ATTRIBUTE_CODES:
            label_code = f"{code}_label"
            if label_code in record and code not in record:
                descriptor = self._descriptor(code)
                if descriptor:
                    self.update_image_label(descriptor, product_id, store_ids, record.text(label_code) or "")

        for code in MEDIA_ATTRIBUTE_CODES:
            if code not in record:
                continue
            descriptor = self._descriptor(code)
            if descriptor is None:
                continue
            if record.is_delete(code):
                for store_id in store_ids:
                    self.session.attributes.delete_value(product_id, store_id, descriptor)
                continue
            value = (record.text(code) or "").strip()
            if value and not self.handle_image_attribute(record, product_id, descriptor, value):
                logger.warning("[MEDIA] %s: unable to set '%s'", sku, code)

        gallery = (record.text(GALLERY_CODE) or "").strip()
        if gallery and self._descriptor(GALLERY_CODE):
            added = self.handle_gallery_attribute(record, product_id, gallery)
            logger.info("[MEDIA] %s: %s gallery images", sku, added)

    def process_product(self, record: ProductRecord, sku: str, product_id: int) -> None:
        try:
            self._process(record, sku, product_id)
        except Exception as e:
            raise IntegrationError(f"Error found in media processor: [{e}]") from e
