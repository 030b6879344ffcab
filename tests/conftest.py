# Shared pytest fixtures
from __future__ import annotations

import copy
import csv
import itertools
import tempfile
import uuid
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import pytest

from packcheck.db.store import RecordStore, StoreError, check_table
from packcheck.logging.init import reset_logging

CSV_HEADER = [
    "注文番号", "商品コード", "商品名", "カテゴリ", "数量", "種別",
    "適用サイズ_実績", "適用サイズ_予測", "総数量", "充填率", "lx", "ly", "lz",
]

FailRule = Callable[[str, dict[str, Any]], bool]


class MemoryStore(RecordStore):
    """In-memory store double with transactional snapshots and failure injection.

    ``fail_rules`` are (table, values) predicates; a matching insert raises
    StoreError the way a constraint violation would.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {
            "datasets": [], "orders": [], "products": [], "images": [],
        }
        self.fail_rules: list[FailRule] = []
        self.commits = 0
        self.rollbacks = 0
        self._snapshot: dict[str, list[dict[str, Any]]] | None = None
        self._clock = itertools.count(1)

    def fail_when(self, table: str, **match: Any) -> None:
        self.fail_rules.append(
            lambda t, values: t == table and all(values.get(k) == v for k, v in match.items())
        )

    def _begin(self) -> None:
        if self._snapshot is None:
            self._snapshot = copy.deepcopy(self.tables)

    def _check_fail(self, table: str, values: dict[str, Any]) -> None:
        for rule in self.fail_rules:
            if rule(table, values):
                raise StoreError(f"injected failure on {table}: {values}")

    @staticmethod
    def _matches(row: dict[str, Any], filters: dict[str, Any] | None) -> bool:
        for column, value in (filters or {}).items():
            if isinstance(value, (list, tuple, set, frozenset)):
                if row.get(column) not in value:
                    return False
            elif row.get(column) != value:
                return False
        return True

    # ---------- primitives ----------
    def insert(self, table: str, values: dict[str, Any]) -> dict[str, Any]:
        check_table(table)
        self._begin()
        self._check_fail(table, values)
        row = {"id": str(uuid.uuid4()), "created_at": next(self._clock), **values}
        if table == "orders":
            for column in ("recorder", "poc_packing_size", "memo"):
                row.setdefault(column, None)
            duplicate = any(
                r["dataset_id"] == row["dataset_id"] and r["order_number"] == row["order_number"]
                for r in self.tables["orders"]
            )
            if duplicate:
                raise StoreError("duplicate key value violates unique constraint")
        self.tables[table].append(row)
        return dict(row)

    def insert_many(self, table: str, rows: Sequence[dict[str, Any]]) -> int:
        for values in rows:
            self.insert(table, values)
        return len(rows)

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
        rows = [dict(r) for r in self.tables[table] if self._matches(r, filters)]
        if order_by:
            keys = [order_by] if isinstance(order_by, str) else list(order_by)
            rows.sort(key=lambda r: tuple(r.get(k) for k in keys), reverse=not ascending)
        start = offset or 0
        end = start + limit if limit is not None else None
        return rows[start:end]

    def count(self, table: str, filters: dict[str, Any] | None = None) -> int:
        return len(self.select(table, filters))

    def update(self, table: str, values: dict[str, Any], filters: dict[str, Any]) -> int:
        check_table(table)
        self._begin()
        n = 0
        for row in self.tables[table]:
            if self._matches(row, filters):
                row.update(values)
                n += 1
        return n

    def delete(self, table: str, filters: dict[str, Any]) -> int:
        check_table(table)
        self._begin()
        before = len(self.tables[table])
        self.tables[table] = [r for r in self.tables[table] if not self._matches(r, filters)]
        return before - len(self.tables[table])

    def commit(self) -> None:
        self.commits += 1
        self._snapshot = None

    def rollback(self) -> None:
        self.rollbacks += 1
        if self._snapshot is not None:
            self.tables = self._snapshot
            self._snapshot = None


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def raise_for_status(self) -> None:
        import requests

        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)  # type: ignore[arg-type]

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    """Records requests and answers with queued FakeResponses (200 by default)."""

    def __init__(self, responses: list[FakeResponse] | None = None) -> None:
        self.headers: dict[str, str] = {}
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.responses = list(responses or [])

    def _respond(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append((method, url, kwargs))
        return self.responses.pop(0) if self.responses else FakeResponse(200, {"Key": url})

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._respond("POST", url, **kwargs)

    def delete(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._respond("DELETE", url, **kwargs)


@pytest.fixture(autouse=True)
def _fresh_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: packcheck
storage:
  url: https://blobs.example.test
  bucket: order-images
  api_key: key123
export:
  label: 検証データ
  output_directory: ./exports
admin:
  page_size: 2
column_aliases:
  受注番号: order_number
timezone: UTC
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "packcheck.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def fake_session() -> FakeSession:
    return FakeSession()


def csv_row(
    order: str,
    code: str,
    name: str = "item",
    *,
    category: str = "",
    quantity: str = "1",
    type_: str = "single",
    actual: str = "60サイズ",
    predicted: str = "80サイズ",
    total: str = "1",
    fill: str = "0.5",
    dims: tuple[str, str, str] = ("10", "20", "30"),
) -> list[str]:
    return [order, code, name, category, quantity, type_, actual, predicted, total, fill, *dims]


@pytest.fixture()
def write_csv(temp_workdir: Path) -> Callable[..., Path]:
    def _write(rows: list[list[str]], name: str = "orders.csv", header: list[str] | None = None) -> Path:
        path = temp_workdir / "data" / name
        with path.open("w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(header or CSV_HEADER)
            writer.writerows(rows)
        return path
    return _write
