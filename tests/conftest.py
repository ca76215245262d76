import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from catalog_sync.config import ImportConfig
from catalog_sync.db import RelationalStore
from catalog_sync.models.import_log import clear_import_log
from catalog_sync.sync.session import ImportSession

SINGLE_ID = "single_id"
VERSIONED_ROW = "versioned_row"

PRODUCT_ENTITY_TYPE = 4
CATEGORY_ENTITY_TYPE = 3

STATUS_SOURCE = "Magento\\Catalog\\Model\\Product\\Attribute\\Source\\Status"
VISIBILITY_SOURCE = "Magento\\Catalog\\Model\\Product\\Visibility"
TAX_SOURCE = "Magento\\Tax\\Model\\TaxClass\\Source\\Product"

# (attribute_id, code, backend_type, frontend_input, label, source_model, is_global)
PRODUCT_ATTRIBUTES = [
    (73, "name", "varchar", "text", "Product Name", None, 0),
    (75, "description", "text", "textarea", "Description", None, 0),
    (77, "price", "decimal", "price", "Price", None, 2),
    (82, "weight", "decimal", "weight", "Weight", None, 1),
    (87, "image", "varchar", "media_image", "Base", None, 0),
    (88, "small_image", "varchar", "media_image", "Small", None, 0),
    (89, "thumbnail", "varchar", "media_image", "Thumbnail", None, 0),
    (90, "media_gallery", "static", "gallery", "Media Gallery", None, 0),
    (93, "color", "int", "select", "Color", None, 1),
    (94, "news_from_date", "datetime", "date", "Set Product as New from Date", None, 2),
    (95, "news_to_date", "datetime", "date", "Set Product as New to Date", None, 2),
    (97, "status", "int", "select", "Enable Product", STATUS_SOURCE, 2),
    (99, "visibility", "int", "select", "Visibility", VISIBILITY_SOURCE, 0),
    (121, "url_key", "varchar", "text", "URL Key", None, 0),
    (132, "tax_class_id", "int", "select", "Tax Class", TAX_SOURCE, 2),
    (140, "material", "varchar", "multiselect", "Material", None, 1),
    (141, "size", "int", "select", "Size", None, 1),
]

CATEGORY_ATTRIBUTES = [
    (45, "name", "varchar", "text", "Name"),
    (46, "is_active", "int", "select", "Enable Category"),
    (52, "url_key", "varchar", "text", "URL Key"),
    (53, "is_anchor", "int", "select", "Anchor"),
    (67, "include_in_menu", "int", "select", "Include in Navigation Menu"),
    (118, "url_path", "varchar", "text", "Url Path"),
]

# (category_id, parent_id, path, level, position, name, url_key/url_path)
CATEGORIES = [
    (1, 0, "1", 0, 0, "Root Catalog", None),
    (2, 1, "1/2", 1, 1, "Default Category", None),
    (3, 2, "1/2/3", 2, 1, "Home", "home"),
    (4, 1, "1/4", 1, 2, "Second Root", None),
]

# (option_id, attribute_id, sort_order, value)
OPTIONS = [
    (10, 93, 0, "Red"),
    (11, 93, 1, "Blue"),
    (20, 140, 0, "Cotton"),
    (21, 140, 1, "Wool"),
    (30, 141, 0, "S"),
    (31, 141, 1, "M"),
]


def link_column(variant: str) -> str:
    return "row_id" if variant == VERSIONED_ROW else "entity_id"


def _id_columns(variant: str) -> str:
    if variant == VERSIONED_ROW:
        return "row_id INTEGER PRIMARY KEY AUTOINCREMENT, entity_id INTEGER NOT NULL"
    return "entity_id INTEGER PRIMARY KEY AUTOINCREMENT"


def schema_statements(variant: str):
    link = link_column(variant)
    ids = _id_columns(variant)
    stmts = [
        "CREATE TABLE eav_entity_type (entity_type_id INTEGER PRIMARY KEY, entity_type_code VARCHAR(50))",
        "CREATE TABLE eav_attribute_set (attribute_set_id INTEGER PRIMARY KEY, entity_type_id INTEGER, attribute_set_name VARCHAR(255))",
        """CREATE TABLE eav_attribute (
            attribute_id INTEGER PRIMARY KEY, entity_type_id INTEGER, attribute_code VARCHAR(255),
            backend_type VARCHAR(8), frontend_input VARCHAR(50), frontend_label VARCHAR(255), source_model VARCHAR(255))""",
        "CREATE TABLE catalog_eav_attribute (attribute_id INTEGER PRIMARY KEY, is_global INTEGER DEFAULT 1, apply_to VARCHAR(255))",
        "CREATE TABLE eav_attribute_option (option_id INTEGER PRIMARY KEY AUTOINCREMENT, attribute_id INTEGER, sort_order INTEGER DEFAULT 0)",
        "CREATE TABLE eav_attribute_option_value (value_id INTEGER PRIMARY KEY AUTOINCREMENT, option_id INTEGER, store_id INTEGER, value VARCHAR(255))",
        "CREATE TABLE store (store_id INTEGER PRIMARY KEY, code VARCHAR(32), website_id INTEGER, group_id INTEGER, name VARCHAR(255))",
        "CREATE TABLE store_website (website_id INTEGER PRIMARY KEY, code VARCHAR(32), name VARCHAR(64))",
        "CREATE TABLE store_group (group_id INTEGER PRIMARY KEY, website_id INTEGER, root_category_id INTEGER, name VARCHAR(255))",
        "CREATE TABLE tax_class (class_id INTEGER PRIMARY KEY AUTOINCREMENT, class_name VARCHAR(255), class_type VARCHAR(8))",
        "CREATE TABLE customer_group (customer_group_id INTEGER PRIMARY KEY AUTOINCREMENT, customer_group_code VARCHAR(32), tax_class_id INTEGER)",
        "CREATE TABLE core_config_data (config_id INTEGER PRIMARY KEY AUTOINCREMENT, scope VARCHAR(8) DEFAULT 'default', scope_id INTEGER DEFAULT 0, path VARCHAR(255), value TEXT)",
        f"""CREATE TABLE catalog_product_entity (
            {ids}, attribute_set_id INTEGER DEFAULT 0, type_id VARCHAR(32) DEFAULT 'simple', sku VARCHAR(64),
            has_options INTEGER DEFAULT 0, required_options INTEGER DEFAULT 0, created_at TIMESTAMP, updated_at TIMESTAMP)""",
        "CREATE TABLE sequence_product (sequence_value INTEGER PRIMARY KEY AUTOINCREMENT)",
        "CREATE TABLE catalog_product_website (product_id INTEGER, website_id INTEGER, PRIMARY KEY (product_id, website_id))",
        f"""CREATE TABLE catalog_category_entity (
            {ids}, attribute_set_id INTEGER DEFAULT 0, parent_id INTEGER DEFAULT 0, created_at TIMESTAMP, updated_at TIMESTAMP,
            path VARCHAR(255), position INTEGER, level INTEGER DEFAULT 0, children_count INTEGER DEFAULT 0)""",
        "CREATE TABLE sequence_catalog_category (sequence_value INTEGER PRIMARY KEY AUTOINCREMENT)",
        """CREATE TABLE catalog_category_product (
            entity_id INTEGER PRIMARY KEY AUTOINCREMENT, category_id INTEGER, product_id INTEGER, position INTEGER DEFAULT 0,
            UNIQUE (category_id, product_id))""",
        """CREATE TABLE url_rewrite (
            url_rewrite_id INTEGER PRIMARY KEY AUTOINCREMENT, entity_type VARCHAR(32), entity_id INTEGER,
            request_path VARCHAR(255), target_path VARCHAR(255), redirect_type INTEGER DEFAULT 0, store_id INTEGER,
            description VARCHAR(255), is_autogenerated INTEGER DEFAULT 0, metadata VARCHAR(255),
            UNIQUE (request_path, store_id))""",
        "CREATE TABLE cataloginventory_stock (stock_id INTEGER PRIMARY KEY, website_id INTEGER, stock_name VARCHAR(255))",
        """CREATE TABLE cataloginventory_stock_item (
            item_id INTEGER PRIMARY KEY AUTOINCREMENT, product_id INTEGER, stock_id INTEGER, qty DECIMAL(12,4),
            min_qty DECIMAL(12,4) DEFAULT 0, is_in_stock INTEGER DEFAULT 0, manage_stock INTEGER DEFAULT 1,
            use_config_manage_stock INTEGER DEFAULT 1, backorders INTEGER DEFAULT 0, min_sale_qty DECIMAL(12,4) DEFAULT 1,
            max_sale_qty DECIMAL(12,4) DEFAULT 10000, notify_stock_qty DECIMAL(12,4), website_id INTEGER DEFAULT 0)""",
        """CREATE TABLE cataloginventory_stock_status (
            product_id INTEGER, website_id INTEGER, stock_id INTEGER, qty DECIMAL(12,4), stock_status INTEGER,
            PRIMARY KEY (product_id, website_id, stock_id))""",
        """CREATE TABLE inventory_source_item (
            source_item_id INTEGER PRIMARY KEY AUTOINCREMENT, source_code VARCHAR(255), sku VARCHAR(64),
            quantity DECIMAL(12,4), status INTEGER)""",
        f"""CREATE TABLE catalog_product_entity_tier_price (
            value_id INTEGER PRIMARY KEY AUTOINCREMENT, {link} INTEGER, all_groups INTEGER DEFAULT 1,
            customer_group_id INTEGER DEFAULT 0, qty DECIMAL(12,4), value DECIMAL(20,6), website_id INTEGER)""",
        """CREATE TABLE catalog_product_link (
            link_id INTEGER PRIMARY KEY AUTOINCREMENT, product_id INTEGER, linked_product_id INTEGER, link_type_id INTEGER)""",
        """CREATE TABLE catalog_product_super_attribute (
            product_super_attribute_id INTEGER PRIMARY KEY AUTOINCREMENT, product_id INTEGER, attribute_id INTEGER, position INTEGER)""",
        """CREATE TABLE catalog_product_super_attribute_label (
            value_id INTEGER PRIMARY KEY AUTOINCREMENT, product_super_attribute_id INTEGER, store_id INTEGER,
            use_default INTEGER DEFAULT 0, value VARCHAR(255))""",
        "CREATE TABLE catalog_product_super_link (link_id INTEGER PRIMARY KEY AUTOINCREMENT, product_id INTEGER, parent_id INTEGER)",
        "CREATE TABLE catalog_product_relation (parent_id INTEGER, child_id INTEGER)",
        """CREATE TABLE catalog_product_entity_media_gallery (
            value_id INTEGER PRIMARY KEY AUTOINCREMENT, attribute_id INTEGER, value VARCHAR(255),
            media_type VARCHAR(32) DEFAULT 'image', disabled INTEGER DEFAULT 0)""",
        f"""CREATE TABLE catalog_product_entity_media_gallery_value (
            record_id INTEGER PRIMARY KEY AUTOINCREMENT, value_id INTEGER, store_id INTEGER, {link} INTEGER,
            label VARCHAR(255), position INTEGER, disabled INTEGER DEFAULT 0)""",
        f"CREATE TABLE catalog_product_entity_media_gallery_value_to_entity (value_id INTEGER, {link} INTEGER)",
    ]
    for backend, column in (
        ("varchar", "VARCHAR(255)"), ("int", "INTEGER"), ("decimal", "DECIMAL(20,6)"),
        ("text", "TEXT"), ("datetime", "DATETIME"),
    ):
        stmts.append(
            f"""CREATE TABLE catalog_product_entity_{backend} (
                value_id INTEGER PRIMARY KEY AUTOINCREMENT, attribute_id INTEGER, store_id INTEGER DEFAULT 0,
                {link} INTEGER, value {column}, UNIQUE ({link}, attribute_id, store_id))"""
        )
    for backend, column in (("varchar", "VARCHAR(255)"), ("int", "INTEGER")):
        stmts.append(
            f"""CREATE TABLE catalog_category_entity_{backend} (
                value_id INTEGER PRIMARY KEY AUTOINCREMENT, attribute_id INTEGER, store_id INTEGER DEFAULT 0,
                {link} INTEGER, value {column}, UNIQUE ({link}, attribute_id, store_id))"""
        )
    return stmts


def seed(conn, variant: str) -> None:
    link = link_column(variant)
    versioned = variant == VERSIONED_ROW
    run = conn.exec_driver_sql

    run("INSERT INTO eav_entity_type VALUES (3, 'catalog_category'), (4, 'catalog_product')")
    run("INSERT INTO eav_attribute_set VALUES (3, 3, 'Default'), (4, 4, 'Default'), (9, 4, 'Apparel')")
    for attribute_id, code, backend, frontend, label, source, is_global in PRODUCT_ATTRIBUTES:
        run(
            "INSERT INTO eav_attribute VALUES (?, ?, ?, ?, ?, ?, ?)",
            (attribute_id, PRODUCT_ENTITY_TYPE, code, backend, frontend, label, source),
        )
        run("INSERT INTO catalog_eav_attribute VALUES (?, ?, NULL)", (attribute_id, is_global))
    for attribute_id, code, backend, frontend, label in CATEGORY_ATTRIBUTES:
        run(
            "INSERT INTO eav_attribute VALUES (?, ?, ?, ?, ?, ?, NULL)",
            (attribute_id, CATEGORY_ENTITY_TYPE, code, backend, frontend, label),
        )
    for option_id, attribute_id, sort_order, value in OPTIONS:
        run("INSERT INTO eav_attribute_option VALUES (?, ?, ?)", (option_id, attribute_id, sort_order))
        run("INSERT INTO eav_attribute_option_value (option_id, store_id, value) VALUES (?, 0, ?)", (option_id, value))

    run("INSERT INTO store_website VALUES (0, 'admin', 'Admin'), (1, 'base', 'Main Website'), (2, 'second', 'Second Website')")
    run("INSERT INTO store_group VALUES (0, 0, 0, 'Default'), (1, 1, 2, 'Main Website Store'), (2, 2, 4, 'Second Store')")
    run(
        "INSERT INTO store VALUES (0, 'admin', 0, 0, 'Admin'), (1, 'default', 1, 1, 'Default Store View'), "
        "(2, 'german', 1, 1, 'German'), (3, 'second_en', 2, 2, 'Second English')"
    )

    run("INSERT INTO tax_class VALUES (2, 'Taxable Goods', 'PRODUCT'), (3, 'Retail Customer', 'CUSTOMER')")
    run(
        "INSERT INTO customer_group VALUES (0, 'NOT LOGGED IN', 3), (1, 'General', 3), "
        "(2, 'Wholesale', 3), (3, 'Retailer', 3)"
    )
    run("INSERT INTO core_config_data (path, value) VALUES ('catalog/price/scope', '0')")
    run("INSERT INTO cataloginventory_stock VALUES (1, 0, 'Default')")

    name_id = 45
    for category_id, parent_id, path, level, position, name, url in CATEGORIES:
        if versioned:
            run("INSERT INTO sequence_catalog_category (sequence_value) VALUES (?)", (category_id,))
            run(
                "INSERT INTO catalog_category_entity (row_id, entity_id, attribute_set_id, parent_id, path, level, position) "
                "VALUES (?, ?, 3, ?, ?, ?, ?)",
                (category_id, category_id, parent_id, path, level, position),
            )
        else:
            run(
                "INSERT INTO catalog_category_entity (entity_id, attribute_set_id, parent_id, path, level, position) "
                "VALUES (?, 3, ?, ?, ?, ?)",
                (category_id, parent_id, path, level, position),
            )
        run(
            f"INSERT INTO catalog_category_entity_varchar (attribute_id, store_id, {link}, value) VALUES (?, 0, ?, ?)",
            (name_id, category_id, name),
        )
        if url:
            for attribute_id in (52, 118):
                run(
                    f"INSERT INTO catalog_category_entity_varchar (attribute_id, store_id, {link}, value) VALUES (?, 0, ?, ?)",
                    (attribute_id, category_id, url),
                )

    if versioned:
        # product entity ids come from the sequence; keep them apart from row ids
        run("INSERT INTO sequence_product (sequence_value) VALUES (500)")


def make_engine(variant: str):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    with engine.begin() as conn:
        for stmt in schema_statements(variant):
            conn.exec_driver_sql(stmt)
        seed(conn, variant)
    return engine


@pytest.fixture(autouse=True)
def _clean_import_log():
    clear_import_log()
    yield
    clear_import_log()


@pytest.fixture
def config():
    return ImportConfig()


@pytest.fixture
def engine():
    eng = make_engine(SINGLE_ID)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine):
    s = RelationalStore(engine, table_prefix="", log_queries=False)
    yield s
    s.close()


@pytest.fixture
def versioned_engine():
    eng = make_engine(VERSIONED_ROW)
    yield eng
    eng.dispose()


@pytest.fixture
def versioned_store(versioned_engine):
    s = RelationalStore(versioned_engine, table_prefix="", log_queries=False)
    yield s
    s.close()


@pytest.fixture
def session(store, config):
    return ImportSession(store, config)


@pytest.fixture
def make_product(store):
    """Bare product row for tests that exercise one resolver (single_id variant)."""
    def _make(sku: str, type_id: str = "simple", attribute_set_id: int = 4) -> int:
        return int(store.insert(
            "INSERT INTO catalog_product_entity (attribute_set_id, type_id, sku) VALUES (:a, :t, :s)",
            {"a": attribute_set_id, "t": type_id, "s": sku},
        ))
    return _make
