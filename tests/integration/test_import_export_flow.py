from __future__ import annotations

from datetime import date
from pathlib import Path

from openpyxl import load_workbook

from conftest import FakeSession, csv_row
from packcheck.logging.error_log import ErrorLogBuffer
from packcheck.models.records import ImageType
from packcheck.services import admin, worker
from packcheck.services.exporter import BASE_COLUMNS, export_dataset
from packcheck.services.importer import import_csv
from packcheck.storage.client import BlobStorageClient


def test_csv_to_workbook(memory_store, write_csv, temp_workdir: Path):
    path = write_csv([
        csv_row("A2", "P3", "Bowl", fill="0.4567", total="1"),
        csv_row("A1", "P1", "Mug", quantity="2", fill="0.5", total="3"),
        csv_row("A1", "P2", "Plate", fill="0.5", total="3"),
        csv_row("", "P9", "orphan"),
    ])
    summary = import_csv(memory_store, "2024-05 batch", path)
    assert (summary.total, summary.processed, summary.order_count) == (3, 3, 2)

    blobs = BlobStorageClient("https://blobs.example.test", "order-images", session=FakeSession())
    order = worker.lookup_order(memory_store, summary.dataset_id, "A1")
    order = worker.set_product_checked(memory_store, order, order.products[0].id, True)
    order = worker.save_recorder(memory_store, order, "sato")
    order = worker.save_packing_size(memory_store, order, "80サイズ")
    worker.attach_image(memory_store, blobs, order, b"1", ImageType.ACTUAL)
    order = worker.lookup_order(memory_store, summary.dataset_id, "A1")
    worker.attach_image(memory_store, blobs, order, b"2", ImageType.ACTUAL)
    other = worker.lookup_order(memory_store, summary.dataset_id, "A2")
    worker.attach_image(memory_store, blobs, other, b"3", ImageType.PREDICTED)

    page = admin.list_orders_page(memory_store, summary.dataset_id, 1, 20)
    assert [admin.summarize_order(o)["fill_rate"] for o in page.orders] == ["50.0%", "45.7%"]

    out = export_dataset(
        memory_store, summary.dataset_id, temp_workdir / "exports", "検証データ", "検証データ", today=date(2024, 5, 2)
    )
    ws = load_workbook(out)["検証データ"]
    rows = list(ws.iter_rows(values_only=True))
    assert list(rows[0]) == BASE_COLUMNS + ["実績箱画像1", "実績箱画像2", "予測箱画像1"]
    a1, a2 = rows[1], rows[2]
    assert a1[:6] == ("A1", "P1, P2", "Mug, Plate", "2, 1", 3, "50.00%")
    assert a1[8:10] == ("sato", "80サイズ")
    assert a1[11].startswith("https://blobs.example.test/storage/v1/object/public/order-images/A1/")
    assert a1[13] in (None, "")
    assert a2[5] == "45.67%"
    assert a2[11] in (None, "") and a2[12] in (None, "")
    assert a2[13].startswith("https://blobs.example.test/storage/v1/object/public/order-images/A2/")


def test_partial_failure_keeps_good_orders(memory_store, write_csv, temp_workdir: Path):
    memory_store.fail_when("products", product_code="BROKEN")
    path = write_csv([
        csv_row("A1", "P1"),
        csv_row("A2", "BROKEN"),
        csv_row("A3", "P3"),
    ])
    error_log = ErrorLogBuffer(temp_workdir / "logs")
    summary = import_csv(memory_store, "ds", path, error_log=error_log)

    assert summary.failed_orders == 1
    assert (summary.processed, summary.total) == (2, 3)
    assert error_log.flush().exists()

    orders = memory_store.fetch_orders_with_details(summary.dataset_id)
    assert [o.order_number for o in orders] == ["A1", "A3"]
    assert all(len(o.products) == 1 for o in orders)
