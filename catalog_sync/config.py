# ----------------------------------------------------------------
# Import configuration variables to be used throughout the project
# ----------------------------------------------------------------
from __future__ import annotations

import os
import enum
from dataclasses import dataclass
from dotenv import load_dotenv

# Load .env (allow container env to override file values)
load_dotenv(override=True)


def _get_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in {"1", "true", "yes", "on", "y"}


def _get_int(name: str, default: int = 0) -> int:
    raw = os.getenv(name, "")
    try:
        return int(str(raw).strip())
    except ValueError:
        return default


def _get_choice(name: str, choices: set[str], default: str) -> str:
    v = (os.getenv(name) or "").strip().lower()
    return v if v in choices else default


class IllegalNewAttributeAction(str, enum.Enum):
    IGNORE = "ignore"
    SKIP_PRODUCT = "skip_product"
    SKIP_BATCH = "skip_batch"


class ImportMode(str, enum.Enum):
    ADDITION = "addition"
    REPLACEMENT = "replacement"


_MODES = {m.value for m in ImportMode}


class Settings:
    # ── Database ─────────────────────────────────────────────────────────────
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DB_TABLE_PREFIX: str = os.getenv("DB_TABLE_PREFIX", "")
    DB_LOG_QUERIES: bool = _get_bool("DB_LOG_QUERIES", False)
    # auto | single_id | versioned_row
    SCHEMA_VARIANT: str = _get_choice("SCHEMA_VARIANT", {"auto", "single_id", "versioned_row"}, "auto")

    # ── New product defaults ─────────────────────────────────────────────────
    DEFAULT_ATTRIBUTE_SET: str = os.getenv("DEFAULT_ATTRIBUTE_SET", "Default")
    DEFAULT_TYPE: str = os.getenv("DEFAULT_TYPE", "simple")
    DEFAULT_STATUS: int = _get_int("DEFAULT_STATUS", 1)
    DEFAULT_VISIBILITY: int = _get_int("DEFAULT_VISIBILITY", 4)
    DEFAULT_TAX_CLASS: str = os.getenv("DEFAULT_TAX_CLASS", "Taxable Goods")
    DEFAULT_NEWS_TO_DATE_DAYS: int = _get_int("DEFAULT_NEWS_TO_DATE_DAYS", 0)  # 0 = disabled

    # ── Attributes ───────────────────────────────────────────────────────────
    ALLOW_NEW_ATTRIBUTE_VALUES: bool = _get_bool("ALLOW_NEW_ATTRIBUTE_VALUES", True)
    ILLEGAL_NEW_ATTRIBUTE_ACTION: str = _get_choice(
        "ILLEGAL_NEW_ATTRIBUTE_ACTION", {a.value for a in IllegalNewAttributeAction}, "ignore"
    )

    # ── Categories ───────────────────────────────────────────────────────────
    CATEGORY_MODE: str = _get_choice("CATEGORY_MODE", _MODES, "addition")
    CATEGORY_LAST_ONLY: bool = _get_bool("CATEGORY_LAST_ONLY", False)
    CATEGORY_DELIMITER: str = os.getenv("CATEGORY_DELIMITER", ";;")
    CATEGORY_TREE_DELIMITER: str = os.getenv("CATEGORY_TREE_DELIMITER", "|")

    # ── Pricing / related products ───────────────────────────────────────────
    PRICING_MODE: str = _get_choice("PRICING_MODE", _MODES, "addition")
    RELATED_PRODUCTS_MODE: str = _get_choice("RELATED_PRODUCTS_MODE", _MODES, "addition")

    # ── Inventory ────────────────────────────────────────────────────────────
    AUTO_SET_MANAGE_STOCK: bool = _get_bool("AUTO_SET_MANAGE_STOCK", True)
    AUTO_SET_IS_IN_STOCK: bool = _get_bool("AUTO_SET_IS_IN_STOCK", True)

    # ── Media ────────────────────────────────────────────────────────────────
    MEDIA_GALLERY_DELIMITER: str = os.getenv("MEDIA_GALLERY_DELIMITER", ";")

    # ── URL rewrites ─────────────────────────────────────────────────────────
    GENERATE_CATEGORY_PRODUCT_REWRITES: bool = _get_bool("GENERATE_CATEGORY_PRODUCT_REWRITES", True)
    URL_REWRITE_STORE_ID: int = _get_int("URL_REWRITE_STORE_ID", 1)
    URL_SUFFIX: str = os.getenv("URL_SUFFIX", ".html")

    # ── Orchestration ────────────────────────────────────────────────────────
    # Off by default: resolver steps commit as they go, a failing product keeps earlier writes.
    WRAP_PRODUCT_IN_TRANSACTION: bool = _get_bool("WRAP_PRODUCT_IN_TRANSACTION", False)

    # ── Admin Panel ──────────────────────────────────────────────────────────
    ADMIN_USER: str = os.getenv("ADMIN_USER", "admin")
    ADMIN_PASS: str = os.getenv("ADMIN_PASS", "changeme")

    # ── CORS ─────────────────────────────────────────────────────────────────
    # Comma-separated list in .env, e.g. "https://example.com, https://foo.bar"
    CORS_ORIGINS: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

    # ── Paths ────────────────────────────────────────────────────────────────
    DATA_DIR: str = os.getenv("DATA_DIR", "./data")


settings = Settings()


@dataclass(frozen=True)
class ImportConfig:
    """Read-only view of the import behaviour settings, resolved once per batch."""
    default_attribute_set: str = "Default"
    default_type: str = "simple"
    default_status: int = 1
    default_visibility: int = 4
    default_tax_class: str = "Taxable Goods"
    default_news_to_date_days: int = 0

    allow_new_attribute_values: bool = True
    illegal_new_attribute_action: IllegalNewAttributeAction = IllegalNewAttributeAction.IGNORE

    category_mode: ImportMode = ImportMode.ADDITION
    category_last_only: bool = False
    category_delimiter: str = ";;"
    category_tree_delimiter: str = "|"

    pricing_mode: ImportMode = ImportMode.ADDITION
    related_products_mode: ImportMode = ImportMode.ADDITION

    auto_set_manage_stock: bool = True
    auto_set_is_in_stock: bool = True

    media_gallery_delimiter: str = ";"

    generate_category_product_rewrites: bool = True
    url_rewrite_store_id: int = 1
    url_suffix: str = ".html"

    wrap_product_in_transaction: bool = False
    schema_variant: str = "auto"

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "ImportConfig":
        return cls(
            default_attribute_set=s.DEFAULT_ATTRIBUTE_SET,
            default_type=s.DEFAULT_TYPE,
            default_status=s.DEFAULT_STATUS,
            default_visibility=s.DEFAULT_VISIBILITY,
            default_tax_class=s.DEFAULT_TAX_CLASS,
            default_news_to_date_days=s.DEFAULT_NEWS_TO_DATE_DAYS,
            allow_new_attribute_values=s.ALLOW_NEW_ATTRIBUTE_VALUES,
            illegal_new_attribute_action=IllegalNewAttributeAction(s.ILLEGAL_NEW_ATTRIBUTE_ACTION),
            category_mode=ImportMode(s.CATEGORY_MODE),
            category_last_only=s.CATEGORY_LAST_ONLY,
            category_delimiter=s.CATEGORY_DELIMITER,
            category_tree_delimiter=s.CATEGORY_TREE_DELIMITER,
            pricing_mode=ImportMode(s.PRICING_MODE),
            related_products_mode=ImportMode(s.RELATED_PRODUCTS_MODE),
            auto_set_manage_stock=s.AUTO_SET_MANAGE_STOCK,
            auto_set_is_in_stock=s.AUTO_SET_IS_IN_STOCK,
            media_gallery_delimiter=s.MEDIA_GALLERY_DELIMITER,
            generate_category_product_rewrites=s.GENERATE_CATEGORY_PRODUCT_REWRITES,
            url_rewrite_store_id=s.URL_REWRITE_STORE_ID,
            url_suffix=s.URL_SUFFIX,
            wrap_product_in_transaction=s.WRAP_PRODUCT_IN_TRANSACTION,
            schema_variant=s.SCHEMA_VARIANT,
        )
