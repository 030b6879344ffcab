from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg2
from psycopg2.extras import RealDictCursor

from ..models.records import Dataset, ImageRecord, OrderRecord, OrderWithDetails, ProductRecord
from .batch_insert import BatchInsertError, batch_insert

"""External store access.

RecordStore holds the domain-level helpers (datasets, orders with products and
images) on top of seven primitives: insert, insert_many, select, count,
update, delete and commit/rollback. PostgresStore implements the primitives
with psycopg2 against the managed Postgres backend.

Filters are equality filters; a list/tuple/set value matches any of its
members. Sorting is by named columns, pagination by offset/limit.
"""

logger = logging.getLogger(__name__)

TABLES = frozenset({"datasets", "orders", "products", "images"})
SCHEMA_PATH = Path(__file__).with_name("schema.sql")

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


class StoreError(Exception):
    """Any failure talking to the store."""


class RecordNotFoundError(StoreError):
    """A single-record read matched nothing."""


def check_table(table: str) -> str:
    if table not in TABLES:
        raise StoreError(f"unknown table: {table}")
    return table


def check_column(column: str) -> str:
    if not _IDENTIFIER.match(column):
        raise StoreError(f"invalid column name: {column!r}")
    return column


class RecordStore:
    """Domain helpers shared by every store implementation."""

    # ---------- primitives (implemented by subclasses) ----------
    def insert(self, table: str, values: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def insert_many(self, table: str, rows: Sequence[dict[str, Any]]) -> int:
        raise NotImplementedError

    def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        order_by: str | Sequence[str] | None = None,
        ascending: bool = True,
        offset: int | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        raise NotImplementedError

    def count(self, table: str, filters: dict[str, Any] | None = None) -> int:
        raise NotImplementedError

    def update(self, table: str, values: dict[str, Any], filters: dict[str, Any]) -> int:
        raise NotImplementedError

    def delete(self, table: str, filters: dict[str, Any]) -> int:
        raise NotImplementedError

    def commit(self) -> None:
        raise NotImplementedError

    def rollback(self) -> None:
        raise NotImplementedError

    # ---------- transactions ----------
    @contextmanager
    def transaction(self) -> Iterator[RecordStore]:
        """Commit on success, roll back and re-raise on any exception."""
        try:
            yield self
        except BaseException:
            try:
                self.rollback()
            except StoreError:
                logger.warning("rollback failed", exc_info=True)
            raise
        else:
            self.commit()

    # ---------- single record ----------
    def get_one(self, table: str, filters: dict[str, Any]) -> dict[str, Any]:
        rows = self.select(table, filters, limit=1)
        if not rows:
            raise RecordNotFoundError(f"no {table} row matching {filters}")
        return rows[0]

    # ---------- datasets ----------
    def create_dataset(self, name: str) -> Dataset:
        return Dataset.from_row(self.insert("datasets", {"name": name}))

    def list_datasets(self) -> list[Dataset]:
        """All datasets, newest first."""
        rows = self.select("datasets", order_by="created_at", ascending=False)
        return [Dataset.from_row(r) for r in rows]

    # ---------- orders / products ----------
    def insert_order(self, order: OrderRecord, dataset_id: str) -> OrderRecord:
        return OrderRecord.from_row(self.insert("orders", order.to_insert(dataset_id)))

    def insert_products(self, products: Sequence[ProductRecord], order_id: str) -> int:
        return self.insert_many("products", [p.to_insert(order_id) for p in products])

    def fetch_orders_with_details(
        self,
        dataset_id: str,
        order_number: str | None = None,
        offset: int | None = None,
        limit: int | None = None,
    ) -> list[OrderWithDetails]:
        """Orders of a dataset sorted by order_number, joined with products and images."""
        filters: dict[str, Any] = {"dataset_id": dataset_id}
        if order_number is not None:
            filters["order_number"] = order_number
        order_rows = self.select(
            "orders", filters, order_by="order_number", offset=offset, limit=limit
        )
        if not order_rows:
            return []

        ids = [str(r["id"]) for r in order_rows]
        products: dict[str, list[ProductRecord]] = {i: [] for i in ids}
        for row in self.select("products", {"order_id": ids}, order_by="created_at"):
            products[str(row["order_id"])].append(ProductRecord.from_row(row))
        images: dict[str, list[ImageRecord]] = {i: [] for i in ids}
        for row in self.select("images", {"order_id": ids}, order_by="created_at"):
            images[str(row["order_id"])].append(ImageRecord.from_row(row))

        return [
            OrderWithDetails.from_row(r, products[str(r["id"])], images[str(r["id"])])
            for r in order_rows
        ]


def _where(filters: dict[str, Any] | None) -> tuple[str, list[Any]]:
    if not filters:
        return "", []
    clauses: list[str] = []
    params: list[Any] = []
    for column, value in filters.items():
        check_column(column)
        if isinstance(value, (list, tuple, set, frozenset)):
            # ids arrive as str; compare as text so uuid columns match a text[] param
            clauses.append(f'"{column}"::text = ANY(%s)')
            params.append(list(value))
        elif value is None:
            clauses.append(f'"{column}" IS NULL')
        else:
            clauses.append(f'"{column}" = %s')
            params.append(value)
    return " WHERE " + " AND ".join(clauses), params


class PostgresStore(RecordStore):
    """psycopg2 implementation. The connection is owned by the caller."""

    def __init__(self, connection: Any) -> None:
        self.conn = connection

    @classmethod
    def connect(cls, dsn: str) -> PostgresStore:
        try:
            conn = psycopg2.connect(dsn)
        except psycopg2.Error as e:
            raise StoreError(f"connection failed: {e}") from e
        conn.autocommit = False  # transaction() sets the boundaries
        return cls(conn)

    def close(self) -> None:
        if not self.conn.closed:
            self.conn.close()

    def _run(self, sql: str, params: Sequence[Any] = (), fetch: str | None = None) -> Any:
        logger.debug("sql=%s params=%s", sql, params)
        try:
            with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, list(params) or None)
                if fetch == "all":
                    return [dict(r) for r in cur.fetchall()]
                if fetch == "one":
                    row = cur.fetchone()
                    return dict(row) if row is not None else None
                return cur.rowcount
        except psycopg2.Error as e:
            raise StoreError(str(e).strip()) from e

    def create_schema(self) -> None:
        self._run(SCHEMA_PATH.read_text(encoding="utf-8"))
        self.commit()

    def insert(self, table: str, values: dict[str, Any]) -> dict[str, Any]:
        check_table(table)
        columns = [check_column(c) for c in values]
        cols_sql = ",".join(f'"{c}"' for c in columns)
        placeholders = ",".join(["%s"] * len(columns))
        row = self._run(
            f"INSERT INTO {table} ({cols_sql}) VALUES ({placeholders}) RETURNING *",
            [values[c] for c in columns],
            fetch="one",
        )
        if row is None:
            raise StoreError(f"insert into {table} returned no row")
        return row

    def insert_many(self, table: str, rows: Sequence[dict[str, Any]]) -> int:
        check_table(table)
        if not rows:
            return 0
        columns = [check_column(c) for c in rows[0]]
        try:
            with self.conn.cursor() as cur:
                result = batch_insert(cur, table, columns, ([r.get(c) for c in columns] for r in rows))
        except BatchInsertError as e:
            raise StoreError(str(e).strip()) from e
        return result.inserted_rows

    def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        order_by: str | Sequence[str] | None = None,
        ascending: bool = True,
        offset: int | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        check_table(table)
        where_sql, params = _where(filters)
        sql = f"SELECT * FROM {table}{where_sql}"
        if order_by:
            keys = [order_by] if isinstance(order_by, str) else list(order_by)
            direction = "ASC" if ascending else "DESC"
            sql += " ORDER BY " + ", ".join(f'"{check_column(k)}" {direction}' for k in keys)
        if limit is not None:
            sql += " LIMIT %s"
            params.append(int(limit))
        if offset:
            sql += " OFFSET %s"
            params.append(int(offset))
        return self._run(sql, params, fetch="all")

    def count(self, table: str, filters: dict[str, Any] | None = None) -> int:
        check_table(table)
        where_sql, params = _where(filters)
        row = self._run(f"SELECT count(*) AS n FROM {table}{where_sql}", params, fetch="one")
        return int(row["n"]) if row else 0

    def update(self, table: str, values: dict[str, Any], filters: dict[str, Any]) -> int:
        check_table(table)
        if not filters:
            raise StoreError("update without filters refused")
        if not values:
            return 0
        set_sql = ", ".join(f'"{check_column(c)}" = %s' for c in values)
        where_sql, params = _where(filters)
        return self._run(f"UPDATE {table} SET {set_sql}{where_sql}", [*values.values(), *params])

    def delete(self, table: str, filters: dict[str, Any]) -> int:
        check_table(table)
        if not filters:
            raise StoreError("delete without filters refused")
        where_sql, params = _where(filters)
        return self._run(f"DELETE FROM {table}{where_sql}", params)

    def commit(self) -> None:
        try:
            self.conn.commit()
        except psycopg2.Error as e:
            raise StoreError(f"commit failed: {e}") from e

    def rollback(self) -> None:
        try:
            self.conn.rollback()
        except psycopg2.Error as e:
            raise StoreError(f"rollback failed: {e}") from e
