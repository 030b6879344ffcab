from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from pathlib import Path

from ..db.store import RecordStore, StoreError
from ..logging.error_log import ErrorLogBuffer
from ..models.error_record import ErrorRecord
from ..models.import_result import ImportSummary
from ..models.records import OrderRecord, ProductRecord
from ..models.row_data import RowData
from ..sheets.reader import read_csv_rows
from .errors import ImportAbortedError, PreconditionError
from .progress import ProgressTracker

"""CSV -> order/product records import.

Flow for one uploaded file:
1. Parse the CSV (header row, UTF-8, comma-delimited); failure is fatal
2. Create the dataset; failure is fatal and happens before any grouping
3. Drop rows without an order number (silently)
4. Group rows by order number, first-seen order
5. Per group: one OrderRecord from the first row, one ProductRecord per row
6. Per group, in its own transaction: insert the order, then its products.
   A failed group is rolled back, recorded and skipped; later groups still run.

Unparseable numbers become 0; that never fails a row.
"""

logger = logging.getLogger(__name__)

ImportBatch = list[tuple[OrderRecord, list[ProductRecord]]]


_INT_PREFIX = re.compile(r"[+-]?[0-9]+")
_FLOAT_PREFIX = re.compile(r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")


def parse_int(value: str | None) -> int:
    """Integer from the leading digits of a cell, 0 when there are none.

    Trailing text is ignored: "12個" -> 12, "3.0" -> 3.
    """
    match = _INT_PREFIX.match((value or "").strip())
    return int(match.group()) if match else 0


def parse_fraction(value: str | None) -> float:
    """Fill-rate cell value as a plain fraction (not multiplied).

    Reads the leading number ("0.5 approx" -> 0.5); 0 when there is none or it
    is not finite.
    """
    match = _FLOAT_PREFIX.match((value or "").strip())
    if not match:
        return 0.0
    number = float(match.group())
    return number if math.isfinite(number) else 0.0


def group_rows(rows: Iterable[RowData]) -> dict[str, list[RowData]]:
    """Group rows by order number keeping first-seen key order.

    Rows with an empty order number are dropped. dict preserves insertion
    order, which keeps group processing deterministic.
    """
    groups: dict[str, list[RowData]] = {}
    for row in rows:
        key = row.order_number
        if not key:
            continue
        groups.setdefault(key, []).append(row)
    return groups


def build_order_record(order_number: str, rows: list[RowData]) -> OrderRecord:
    first = rows[0]
    return OrderRecord(
        order_number=order_number,
        total_quantity=parse_int(first.get("total_quantity")),
        actual_size=first.get("applied_size_actual"),
        predicted_size=first.get("applied_size_predicted"),
        fill_rate=parse_fraction(first.get("fill_rate")),
        type=first.get("type"),
    )


def build_product_records(rows: list[RowData]) -> list[ProductRecord]:
    return [
        ProductRecord(
            product_code=row.get("product_code"),
            product_name=row.get("product_name"),
            category=row.get("category") or None,
            quantity=parse_int(row.get("quantity")),
            lx=parse_int(row.get("lx")),
            ly=parse_int(row.get("ly")),
            lz=parse_int(row.get("lz")),
        )
        for row in rows
    ]


def build_import_batch(rows: Iterable[RowData]) -> ImportBatch:
    """Pure part of the import: (order, products) pairs ready for persistence."""
    return [
        (build_order_record(number, group), build_product_records(group))
        for number, group in group_rows(rows).items()
    ]


def import_rows(
    store: RecordStore,
    dataset_id: str,
    rows: Iterable[RowData],
    error_log: ErrorLogBuffer | None = None,
    source_name: str = "",
) -> ImportSummary:
    """Persist parsed rows into an existing dataset, one order group at a time."""
    start = datetime.now(UTC)
    batch = build_import_batch(rows)
    total = sum(len(products) for _, products in batch)
    logger.info("dataset=%s orders=%d rows=%d", dataset_id, len(batch), total)

    errors: list[str] = []
    processed = 0
    with ProgressTracker(len(batch)) as progress:
        for order, products in batch:
            progress.start_item(order.order_number)
            stage = "ORDER_INSERT_ERROR"
            try:
                with store.transaction():
                    saved = store.insert_order(order, dataset_id)
                    stage = "PRODUCT_INSERT_ERROR"
                    store.insert_products(products, saved.id)
            except StoreError as e:
                _record_failure(errors, error_log, source_name, order.order_number, stage, str(e))
            except Exception as e:
                _record_failure(errors, error_log, source_name, order.order_number, "UNEXPECTED_ERROR", str(e))
            else:
                processed += len(products)
            progress.set_postfix(rows=processed, failed=len(errors))
            progress.finish_item()

    elapsed = (datetime.now(UTC) - start).total_seconds()
    return ImportSummary(
        dataset_id=dataset_id,
        total=total,
        processed=processed,
        order_count=len(batch),
        errors=errors,
        elapsed_seconds=elapsed,
    )


def _record_failure(
    errors: list[str],
    error_log: ErrorLogBuffer | None,
    source_name: str,
    order_number: str,
    error_type: str,
    message: str,
) -> None:
    logger.warning("order=%s %s: %s", order_number, error_type, message)
    errors.append(f"order {order_number}: {message}")
    if error_log is not None:
        error_log.append(ErrorRecord.create(source_name, order_number, error_type, message))


def import_csv(
    store: RecordStore,
    dataset_name: str,
    path: Path | None,
    error_log: ErrorLogBuffer | None = None,
    aliases: Mapping[str, str] | None = None,
) -> ImportSummary:
    """Import one uploaded CSV file into a new dataset.

    Raises:
        PreconditionError: empty dataset name or missing file
        CsvParseError: the file cannot be parsed at all
        ImportAbortedError: the dataset could not be created
    """
    name = (dataset_name or "").strip()
    if not name:
        raise PreconditionError("dataset name is required")
    if path is None or not path.is_file():
        raise PreconditionError(f"CSV file not found: {path}")

    sheet = read_csv_rows(path, aliases=aliases)

    try:
        with store.transaction():
            dataset = store.create_dataset(name)
    except StoreError as e:
        raise ImportAbortedError(f"cannot create dataset {name!r}: {e}") from e
    logger.info("created dataset id=%s name=%s", dataset.id, dataset.name)

    return import_rows(store, dataset.id, sheet.rows, error_log=error_log, source_name=path.name)
