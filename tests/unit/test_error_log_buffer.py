from __future__ import annotations

import json
import re
from pathlib import Path

from packcheck.logging.error_log import ErrorLogBuffer
from packcheck.models.error_record import ErrorRecord


def test_record_fields():
    r = ErrorRecord.create("orders.csv", "A2", "ORDER_INSERT_ERROR", "duplicate")
    assert r.timestamp.endswith("Z")
    data = json.loads(r.to_json_line())
    assert list(data) == ["timestamp", "file", "order_number", "error_type", "message"]


def test_flush_writes_json_lines(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path / "logs")
    buf.append(ErrorRecord.create("orders.csv", "A1", "ORDER_INSERT_ERROR", "注文エラー"))
    buf.append(ErrorRecord.create("orders.csv", "A2", "PRODUCT_INSERT_ERROR", "x"))
    path = buf.flush()
    assert re.fullmatch(r"errors-\d{8}-\d{6}\.log", path.name)
    lines = path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["order_number"] for line in lines] == ["A1", "A2"]
    assert "注文エラー" in lines[0]
    assert buf.records == []


def test_flush_empty_creates_nothing(tmp_path: Path):
    assert ErrorLogBuffer(tmp_path / "logs").flush() is None
    assert not (tmp_path / "logs").exists()
