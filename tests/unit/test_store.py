from __future__ import annotations

import psycopg2
import pytest

from packcheck.db import store as store_mod
from packcheck.db.store import PostgresStore, RecordNotFoundError, StoreError, check_column, check_table


class DummyCursor:
    def __init__(self, conn: "DummyConnection") -> None:
        self.conn = conn
        self.rowcount = conn.rowcount

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        if self.conn.error is not None:
            raise self.conn.error
        self.conn.executed.append((sql, params))

    def fetchall(self):
        return list(self.conn.rows)

    def fetchone(self):
        return self.conn.rows[0] if self.conn.rows else None


class DummyConnection:
    def __init__(self, rows=None, rowcount: int = 1) -> None:
        self.rows = rows or []
        self.rowcount = rowcount
        self.executed: list[tuple[str, list | None]] = []
        self.error: Exception | None = None
        self.commits = 0
        self.rollbacks = 0
        self.closed = 0

    def cursor(self, cursor_factory=None):
        return DummyCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = 1


def test_identifier_checks():
    assert check_table("orders") == "orders"
    with pytest.raises(StoreError):
        check_table("users")
    with pytest.raises(StoreError):
        check_column('name"; drop table orders; --')


def test_insert_returns_row():
    conn = DummyConnection(rows=[{"id": "d1", "name": "ds", "created_at": None}])
    ds = PostgresStore(conn).create_dataset("ds")
    sql, params = conn.executed[0]
    assert sql == 'INSERT INTO datasets ("name") VALUES (%s) RETURNING *'
    assert params == ["ds"]
    assert ds.id == "d1"


def test_select_builds_filters_order_and_paging():
    conn = DummyConnection(rows=[])
    PostgresStore(conn).select(
        "orders", {"dataset_id": "d1", "id": ["a", "b"], "memo": None},
        order_by="order_number", offset=20, limit=10,
    )
    sql, params = conn.executed[0]
    assert sql == (
        'SELECT * FROM orders WHERE "dataset_id" = %s AND "id"::text = ANY(%s) AND "memo" IS NULL'
        ' ORDER BY "order_number" ASC LIMIT %s OFFSET %s'
    )
    assert params == ["d1", ["a", "b"], 10, 20]


def test_list_datasets_newest_first():
    conn = DummyConnection(rows=[{"id": "d2", "name": "new"}, {"id": "d1", "name": "old"}])
    datasets = PostgresStore(conn).list_datasets()
    assert conn.executed[0][0].endswith('ORDER BY "created_at" DESC')
    assert [d.id for d in datasets] == ["d2", "d1"]


def test_count_update_delete():
    conn = DummyConnection(rows=[{"n": 7}], rowcount=1)
    store = PostgresStore(conn)
    assert store.count("orders", {"dataset_id": "d1"}) == 7
    assert store.update("products", {"is_checked": True}, {"id": "p1"}) == 1
    assert conn.executed[1] == ('UPDATE products SET "is_checked" = %s WHERE "id" = %s', [True, "p1"])
    store.delete("images", {"id": "i1"})
    assert conn.executed[2] == ('DELETE FROM images WHERE "id" = %s', ["i1"])


def test_update_and_delete_require_filters():
    store = PostgresStore(DummyConnection())
    with pytest.raises(StoreError):
        store.update("orders", {"memo": "x"}, {})
    with pytest.raises(StoreError):
        store.delete("orders", {})


def test_driver_errors_become_store_errors():
    conn = DummyConnection()
    conn.error = psycopg2.Error("duplicate key")
    with pytest.raises(StoreError):
        PostgresStore(conn).insert("orders", {"order_number": "A1"})


def test_get_one_not_found():
    with pytest.raises(RecordNotFoundError):
        PostgresStore(DummyConnection(rows=[])).get_one("orders", {"id": "x"})


def test_insert_many_uses_batch_insert(monkeypatch):
    captured = {}

    def fake_execute_values(cursor, sql, rows, page_size=1000):
        captured["sql"] = sql
        captured["rows"] = rows

    monkeypatch.setattr("packcheck.db.batch_insert.execute_values", fake_execute_values)
    n = PostgresStore(DummyConnection()).insert_many(
        "products", [{"order_id": "o1", "product_code": "P1"}, {"order_id": "o1", "product_code": "P2"}]
    )
    assert n == 2
    assert captured["sql"] == 'INSERT INTO products ("order_id","product_code") VALUES %s'
    assert captured["rows"] == [["o1", "P1"], ["o1", "P2"]]


def test_transaction_commits_or_rolls_back():
    conn = DummyConnection(rows=[{"id": "d1", "name": "ds"}])
    store = PostgresStore(conn)
    with store.transaction():
        store.create_dataset("ds")
    assert (conn.commits, conn.rollbacks) == (1, 0)

    with pytest.raises(RuntimeError):
        with store.transaction():
            raise RuntimeError("boom")
    assert (conn.commits, conn.rollbacks) == (1, 1)


def test_connect_failure(monkeypatch):
    def boom(dsn):
        raise psycopg2.OperationalError("could not connect")

    monkeypatch.setattr(store_mod.psycopg2, "connect", boom)
    with pytest.raises(StoreError, match="connection failed"):
        PostgresStore.connect("host=nowhere")


def test_fetch_orders_with_details_groups_children(memory_store):
    with memory_store.transaction():
        ds = memory_store.create_dataset("ds")
        a = memory_store.insert("orders", {"dataset_id": ds.id, "order_number": "B", "fill_rate": 0.1})
        b = memory_store.insert("orders", {"dataset_id": ds.id, "order_number": "A", "fill_rate": 0.2})
        memory_store.insert("products", {"order_id": a["id"], "product_code": "PB"})
        memory_store.insert("products", {"order_id": b["id"], "product_code": "PA1"})
        memory_store.insert("products", {"order_id": b["id"], "product_code": "PA2"})
        memory_store.insert("images", {"order_id": a["id"], "url": "u", "image_type": "actual"})

    orders = memory_store.fetch_orders_with_details(ds.id)
    assert [o.order_number for o in orders] == ["A", "B"]
    assert [p.product_code for p in orders[0].products] == ["PA1", "PA2"]
    assert [i.url for i in orders[1].images] == ["u"]
    assert memory_store.fetch_orders_with_details("other") == []
