from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date
from pathlib import Path

from ..db.store import RecordStore
from ..models.export_table import ExportRow, ExportTable
from ..models.records import ImageType, OrderWithDetails
from ..sheets.writer import export_filename, write_xlsx
from .errors import PreconditionError
from .formatting import EXPORT_FILL_RATE_DIGITS, format_fill_rate

"""Orders -> flat spreadsheet export.

Two passes over the joined orders: the first finds the largest number of
photos per image type, the second builds one row per order with that many
image-URL columns per type. Every row therefore has the same
11 + max_actual + max_predicted columns, whatever its own photo count.
"""

logger = logging.getLogger(__name__)

BASE_COLUMNS = [
    "注文番号",
    "商品コードリスト",
    "商品名リスト",
    "数量リスト",
    "総数量",
    "充填率",
    "箱実績",
    "箱予想",
    "記入者",
    "PoC梱包サイズ",
    "メモ",
]
BASE_WIDTHS = [12, 20, 40, 15, 8, 10, 12, 12, 12, 15, 30]
IMAGE_COLUMN_WIDTH = 50

ACTUAL_IMAGE_LABEL = "実績箱画像"
PREDICTED_IMAGE_LABEL = "予測箱画像"

LIST_SEPARATOR = ", "


def max_image_counts(orders: Sequence[OrderWithDetails]) -> tuple[int, int]:
    """(max actual, max predicted) photo counts across all orders."""
    max_actual = 0
    max_predicted = 0
    for order in orders:
        max_actual = max(max_actual, len(order.images_of(ImageType.ACTUAL)))
        max_predicted = max(max_predicted, len(order.images_of(ImageType.PREDICTED)))
    return max_actual, max_predicted


def image_columns(label: str, count: int) -> list[str]:
    return [f"{label}{i}" for i in range(1, count + 1)]


def build_export_row(order: OrderWithDetails, max_actual: int, max_predicted: int) -> ExportRow:
    row: ExportRow = dict(zip(BASE_COLUMNS, [
        order.order_number,
        LIST_SEPARATOR.join(p.product_code for p in order.products),
        LIST_SEPARATOR.join(p.product_name for p in order.products),
        LIST_SEPARATOR.join(str(p.quantity) for p in order.products),
        order.total_quantity,
        format_fill_rate(order.fill_rate, EXPORT_FILL_RATE_DIGITS),
        order.actual_size,
        order.predicted_size,
        order.recorder or "",
        order.poc_packing_size or "",
        order.memo or "",
    ], strict=True))

    for label, image_type, count in (
        (ACTUAL_IMAGE_LABEL, ImageType.ACTUAL, max_actual),
        (PREDICTED_IMAGE_LABEL, ImageType.PREDICTED, max_predicted),
    ):
        urls = [img.url for img in order.images_of(image_type)]
        for idx, column in enumerate(image_columns(label, count)):
            row[column] = urls[idx] if idx < len(urls) else ""
    return row


def build_export_table(orders: Sequence[OrderWithDetails]) -> ExportTable:
    """Flatten joined orders (sorted by order number) into a rectangular table."""
    ordered = sorted(orders, key=lambda o: o.order_number)
    max_actual, max_predicted = max_image_counts(ordered)
    columns = (
        BASE_COLUMNS
        + image_columns(ACTUAL_IMAGE_LABEL, max_actual)
        + image_columns(PREDICTED_IMAGE_LABEL, max_predicted)
    )
    widths = BASE_WIDTHS + [IMAGE_COLUMN_WIDTH] * (max_actual + max_predicted)
    return ExportTable(
        columns=columns,
        rows=[build_export_row(o, max_actual, max_predicted) for o in ordered],
        widths=widths,
        max_actual_images=max_actual,
        max_predicted_images=max_predicted,
    )


def export_dataset(
    store: RecordStore,
    dataset_id: str | None,
    output_dir: Path,
    label: str,
    sheet_name: str,
    today: date | None = None,
) -> Path:
    """Read every order of a dataset in one pass and write the .xlsx file.

    Raises:
        PreconditionError: no dataset selected
        StoreError: the bulk read failed
        ExportError: the file could not be written
    """
    if not dataset_id:
        raise PreconditionError("no dataset selected")
    orders = store.fetch_orders_with_details(dataset_id)
    table = build_export_table(orders)
    path = output_dir / export_filename(label, today or date.today())
    write_xlsx(table, path, sheet_name)
    logger.info(
        "exported dataset=%s orders=%d columns=%d file=%s",
        dataset_id,
        len(table.rows),
        len(table.columns),
        path,
    )
    return path
