# catalog_sync/db.py
from __future__ import annotations

import os
import pathlib
import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from sqlalchemy import bindparam, create_engine, inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from catalog_sync.config import settings
from catalog_sync.exceptions import StorageError

logger = logging.getLogger("uvicorn.error")

_engine: Optional[Engine] = None

Row = Dict[str, Any]


def _resolve_dsn() -> str:
    """
    Prefer settings.DATABASE_URL, then env var DATABASE_URL,
    else default to a local SQLite database under ./data/.
    """
    dsn = (
        getattr(settings, "DATABASE_URL", None)
        or os.getenv("DATABASE_URL")
        or "sqlite:///./data/catalog.db"
    )

    # If using SQLite, make sure the folder exists so SQLAlchemy can create the file.
    if dsn.startswith("sqlite"):
        try:
            sep = "///" if "///" in dsn else "//"
            path_part = dsn.split(sep, 1)[1] if sep in dsn else ""
            if path_part and path_part != ":memory:":
                path = pathlib.Path(path_part).resolve()
                path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning("[DB] Could not ensure SQLite directory exists: %s", e)

    return dsn


def get_engine() -> Engine:
    """
    Lazily create the global Engine.
    """
    global _engine
    if _engine is None:
        dsn = _resolve_dsn()
        _engine = create_engine(dsn, echo=False, pool_pre_ping=True)
        logger.info("[DB] engine initialized for %s", dsn)
    return _engine


def init_db() -> None:
    """
    Ensure the engine is created and a first connection can be acquired.
    The catalog schema is owned by the shop platform; nothing is created here.
    """
    eng = get_engine()
    try:
        with eng.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("[DB] initial connect failed: %s", e)
        raise


class RelationalStore:
    """
    Thin data-access layer over one SQLAlchemy connection.

    Statements issued outside an explicit transaction are committed immediately.
    begin_transaction()/commit()/roll_back() nest with a depth counter: only the
    outermost commit reaches the database, and a rollback at any depth discards
    the whole physical transaction.
    """

    def __init__(self, engine: Engine, table_prefix: str | None = None, log_queries: bool | None = None):
        self.engine = engine
        self.table_prefix = settings.DB_TABLE_PREFIX if table_prefix is None else table_prefix
        self.log_queries = settings.DB_LOG_QUERIES if log_queries is None else log_queries
        self._conn: Optional[Connection] = None
        self._depth = 0
        self._rolled_back = False
        self._columns: Dict[str, List[str]] = {}
        self._single_store: Optional[bool] = None

    # ---------------------------
    # Connection / execution
    # ---------------------------
    @property
    def connection(self) -> Connection:
        if self._conn is None:
            self._conn = self.engine.connect()
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            self._depth = 0

    def _statement(self, query: str, params: Mapping[str, Any]):
        stmt = text(query)
        expanding = [k for k, v in params.items() if isinstance(v, (list, tuple, set, frozenset))]
        if expanding:
            stmt = stmt.bindparams(*[bindparam(k, expanding=True) for k in expanding])
        return stmt

    def _run(self, query: str, params: Optional[Mapping[str, Any]], consume: Callable[[Any], Any]) -> Any:
        """Execute, read what the caller needs from the cursor, then autocommit."""
        params = dict(params or {})
        for k, v in params.items():
            if isinstance(v, (set, frozenset)):
                params[k] = list(v)
        if self.log_queries:
            logger.debug("[DB] %s | %s", " ".join(query.split()), params)
        conn = self.connection
        try:
            result = conn.execute(self._statement(query, params), params)
            out = consume(result)
            if self._depth == 0:
                conn.commit()
            return out
        except SQLAlchemyError as e:
            if self._depth == 0:
                conn.rollback()
            raise StorageError(str(e)) from e

    def select(self, query: str, params: Optional[Mapping[str, Any]] = None) -> List[Row]:
        return self._run(query, params, lambda r: [dict(m) for m in r.mappings().all()])

    def fetch_row(self, query: str, params: Optional[Mapping[str, Any]] = None) -> Optional[Row]:
        rows = self.select(query, params)
        return rows[0] if rows else None

    def select_one(self, query: str, params: Optional[Mapping[str, Any]] = None, column: Optional[str] = None) -> Any:
        """First row's `column` (or first column) or None."""
        row = self.fetch_row(query, params)
        if row is None:
            return None
        if column is None:
            return next(iter(row.values()), None)
        return row.get(column)

    def insert(self, query: str, params: Optional[Mapping[str, Any]] = None) -> Optional[int]:
        return self._run(query, params, lambda r: r.lastrowid)

    def update(self, query: str, params: Optional[Mapping[str, Any]] = None) -> int:
        return self._run(query, params, lambda r: r.rowcount)

    def delete(self, query: str, params: Optional[Mapping[str, Any]] = None) -> int:
        return self._run(query, params, lambda r: r.rowcount)

    def execute(self, query: str, params: Optional[Mapping[str, Any]] = None) -> int:
        return self._run(query, params, lambda r: r.rowcount)

    # ---------------------------
    # Transactions
    # ---------------------------
    def begin_transaction(self) -> None:
        conn = self.connection
        if self._depth == 0:
            if conn.in_transaction():
                conn.commit()
            self._rolled_back = False
        self._depth += 1

    def commit(self) -> None:
        if self._depth == 0:
            raise StorageError("commit() called without an open transaction")
        self._depth -= 1
        if self._depth == 0:
            if self._rolled_back:
                self._rolled_back = False
                self.connection.rollback()
                raise StorageError("Transaction was rolled back by a nested scope")
            self.connection.commit()

    def roll_back(self) -> None:
        if self._depth == 0:
            return
        self.connection.rollback()
        self._depth -= 1
        self._rolled_back = self._depth > 0

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self) -> Iterator["RelationalStore"]:
        self.begin_transaction()
        try:
            yield self
        except Exception:
            self.roll_back()
            raise
        self.commit()

    # ---------------------------
    # Schema helpers
    # ---------------------------
    def table_name(self, logical_name: str) -> str:
        return f"{self.table_prefix}{logical_name}"

    def table_exists(self, logical_name: str) -> bool:
        try:
            return inspect(self.connection).has_table(self.table_name(logical_name))
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e

    def table_columns(self, logical_name: str) -> List[str]:
        name = self.table_name(logical_name)
        if name not in self._columns:
            try:
                cols = inspect(self.connection).get_columns(name)
            except SQLAlchemyError as e:
                raise StorageError(str(e)) from e
            self._columns[name] = [c["name"] for c in cols]
        return list(self._columns[name])

    def is_single_store(self) -> bool:
        if self._single_store is None:
            store = self.table_name("store")
            count = self.select_one(f"SELECT COUNT(*) AS cnt FROM {store} WHERE store_id <> 0", column="cnt")
            self._single_store = int(count or 0) == 1
        return self._single_store

    # ---------------------------
    # Product lookups
    # ---------------------------
    def get_product_id(self, sku: str, id_column: str = "entity_id") -> Optional[int]:
        table = self.table_name("catalog_product_entity")
        value = self.select_one(f"SELECT {id_column} FROM {table} WHERE sku = :sku", {"sku": sku}, id_column)
        return int(value) if value is not None else None

    def get_product_sku(self, product_id: int, id_column: str = "entity_id") -> Optional[str]:
        table = self.table_name("catalog_product_entity")
        value = self.select_one(f"SELECT sku FROM {table} WHERE {id_column} = :id", {"id": product_id}, "sku")
        return str(value) if value is not None else None
