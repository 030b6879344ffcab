from __future__ import annotations

import argparse
import logging
import mimetypes
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

from packcheck.config.loader import DEFAULT_CONFIG_PATH, AppConfig, ConfigError, load_config
from packcheck.config.settings import SettingsStore
from packcheck.db.store import PostgresStore, RecordNotFoundError, StoreError
from packcheck.logging.error_log import ErrorLogBuffer
from packcheck.logging.init import log_summary, setup_logging
from packcheck.models.error_record import ErrorRecord
from packcheck.models.records import ImageType, OrderWithDetails
from packcheck.services import admin, worker
from packcheck.services.errors import ImportAbortedError, OrderNotFoundError, PreconditionError
from packcheck.services.exporter import export_dataset
from packcheck.services.importer import import_csv
from packcheck.services.selection import DatasetChanged, DatasetSelection
from packcheck.services.summary import render_error_list, render_summary_body
from packcheck.sheets.reader import CsvParseError, preview_csv
from packcheck.sheets.writer import ExportError
from packcheck.storage.client import BlobStorageClient, StorageError

"""CLI entrypoint.

Subcommands cover the three roles of the tool:
- operators: init-db, import, preview
- workers: lookup, check, record, attach, detach
- administrators: datasets, select, orders, export

Exit codes: 0 success, 2 partial failure (some import groups failed),
1 fatal (config, connection, parse, precondition, not found, export write).
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

_FATAL_ERRORS = (
    PreconditionError,
    CsvParseError,
    ImportAbortedError,
    StoreError,
    StorageError,
    ExportError,
)


@contextmanager
def _open_store(cfg: AppConfig) -> Iterator[PostgresStore]:  # pragma: no cover (thin wrapper)
    store = PostgresStore.connect(cfg.database.resolve_dsn())
    try:
        yield store
    finally:
        store.close()


def _open_blobs(cfg: AppConfig) -> BlobStorageClient:
    storage = cfg.storage.resolved()
    return BlobStorageClient(
        storage.url or "",
        storage.bucket,
        storage.api_key,
        timeout=storage.timeout,
    )


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env; its values take precedence over already-set variables."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _load_app_config(path: Path | None, logger: logging.Logger) -> AppConfig:
    if path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            logger.debug("no %s, using built-in defaults", DEFAULT_CONFIG_PATH)
            return AppConfig()
        path = DEFAULT_CONFIG_PATH
    return load_config(path)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="packcheck", description="Packing verification: CSV import, worker lookup, xlsx export")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--config", type=Path, default=None, help=f"Config file (default {DEFAULT_CONFIG_PATH})")
    p.add_argument("--dataset", default=None, help="Dataset id (default: saved selection)")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the store tables")

    s = sub.add_parser("import", help="Import a CSV file into a new dataset")
    s.add_argument("name", help="Dataset name")
    s.add_argument("file", type=Path, help="CSV file (UTF-8, header row)")

    s = sub.add_parser("preview", help="Show the first rows of a CSV file")
    s.add_argument("file", type=Path)
    s.add_argument("-n", type=int, default=5, help="Rows to show")

    sub.add_parser("datasets", help="List datasets (newest first)")

    s = sub.add_parser("select", help="Select the working dataset")
    s.add_argument("dataset_id")

    s = sub.add_parser("orders", help="List orders of the selected dataset")
    s.add_argument("--page", type=int, default=1)
    s.add_argument("--search", default=None, help="Filter by order number, product code or name")

    s = sub.add_parser("export", help="Export the selected dataset to .xlsx")
    s.add_argument("--output-dir", type=Path, default=None)
    s.add_argument("--label", default=None, help="File name label")

    s = sub.add_parser("lookup", help="Show one order")
    s.add_argument("order_number")

    s = sub.add_parser("check", help="Mark a product as checked")
    s.add_argument("order_number")
    s.add_argument("product_id")
    s.add_argument("--uncheck", action="store_true")

    s = sub.add_parser("record", help="Save recorder / packing size / memo")
    s.add_argument("order_number")
    s.add_argument("--recorder", default=None)
    s.add_argument("--packing-size", default=None, choices=worker.PACKING_SIZES)
    s.add_argument("--memo", default=None)

    s = sub.add_parser("attach", help="Attach a box photo to an order")
    s.add_argument("order_number")
    s.add_argument("image", type=Path)
    s.add_argument("--type", dest="image_type", choices=[t.value for t in ImageType], default=ImageType.ACTUAL.value)

    s = sub.add_parser("detach", help="Delete a box photo")
    s.add_argument("order_number")
    s.add_argument("image_id")
    return p.parse_args(argv)


# ---------- operator commands ----------
def _cmd_init_db(args: argparse.Namespace, cfg: AppConfig, logger: logging.Logger) -> int:
    with _open_store(cfg) as store:
        store.create_schema()
    logger.info("schema ready")
    return EXIT_SUCCESS_ALL


def _cmd_import(args: argparse.Namespace, cfg: AppConfig, logger: logging.Logger, selection: DatasetSelection) -> int:
    error_log = ErrorLogBuffer()
    try:
        with _open_store(cfg) as store:
            summary = import_csv(store, args.name, args.file, error_log=error_log, aliases=cfg.column_aliases)
    except (CsvParseError, ImportAbortedError) as e:
        error_log.append(ErrorRecord.create(args.file.name, "", type(e).__name__, str(e)))
        error_log.flush()
        raise

    log_path = error_log.flush()
    log_summary(render_summary_body(summary))
    if summary.dataset_id:
        selection.select(summary.dataset_id)
    if not summary.has_errors:
        return EXIT_SUCCESS_ALL
    for line in render_error_list(summary.errors):
        logger.warning(line)
    if log_path is not None:
        logger.info(f"error log: {log_path}")
    return EXIT_PARTIAL_FAILURE


def _cmd_preview(args: argparse.Namespace, cfg: AppConfig, logger: logging.Logger) -> int:
    sheet = preview_csv(args.file, aliases=cfg.column_aliases, n=args.n)
    logger.info(f"columns={sheet.columns}")
    for row in sheet.rows:
        logger.info(f"row {row.row_number}: {row.values}")
    return EXIT_SUCCESS_ALL


# ---------- administrator commands ----------
def _cmd_datasets(args: argparse.Namespace, cfg: AppConfig, logger: logging.Logger, selection: DatasetSelection) -> int:
    with _open_store(cfg) as store:
        datasets = store.list_datasets()
    current = selection.reconcile(datasets)
    if not datasets:
        logger.info("no datasets")
    for d in datasets:
        marker = "*" if d.id == current else " "
        logger.info(f"{marker} {d.id} {d.name} {d.created_at or ''}".rstrip())
    return EXIT_SUCCESS_ALL


def _cmd_select(args: argparse.Namespace, cfg: AppConfig, logger: logging.Logger, selection: DatasetSelection) -> int:
    with _open_store(cfg) as store:
        try:
            store.get_one("datasets", {"id": args.dataset_id})
        except RecordNotFoundError as e:
            raise PreconditionError(f"unknown dataset: {args.dataset_id}") from e
    if not selection.select(args.dataset_id):
        logger.info(f"dataset {args.dataset_id} already selected")
    return EXIT_SUCCESS_ALL


def _cmd_orders(args: argparse.Namespace, cfg: AppConfig, logger: logging.Logger, dataset_id: str | None) -> int:
    with _open_store(cfg) as store:
        page = admin.list_orders_page(store, dataset_id, args.page, cfg.page_size)
    shown = admin.filter_orders(page.orders, args.search)
    logger.info(
        f"orders {page.first_index}-{page.last_index} of {page.total_count} "
        f"(page {page.page}/{max(page.total_pages, 1)})"
    )
    for order in shown:
        s = admin.summarize_order(order)
        logger.info(
            f"{s['order_number']} qty={s['total_quantity']} fill={s['fill_rate']} "
            f"actual={s['actual_size']} predicted={s['predicted_size']} recorder={s['recorder']} "
            f"poc={s['poc_packing_size']} photos={s['actual_images']}/{s['predicted_images']} "
            f"memo={s['memo']} [{s['products']}]"
        )
    return EXIT_SUCCESS_ALL


def _cmd_export(args: argparse.Namespace, cfg: AppConfig, logger: logging.Logger, dataset_id: str | None) -> int:
    output_dir = args.output_dir or Path(cfg.export.output_directory)
    with _open_store(cfg) as store:
        path = export_dataset(
            store,
            dataset_id,
            output_dir,
            label=args.label or cfg.export.label,
            sheet_name=cfg.export.sheet_name,
            today=datetime.now(ZoneInfo(cfg.timezone)).date(),
        )
    logger.info(f"exported: {path}")
    return EXIT_SUCCESS_ALL


# ---------- worker commands ----------
def _log_order(order: OrderWithDetails, logger: logging.Logger) -> None:
    s = admin.summarize_order(order)
    logger.info(
        f"order {s['order_number']} type={order.type} qty={s['total_quantity']} fill={s['fill_rate']} "
        f"actual={s['actual_size']} predicted={s['predicted_size']}"
    )
    logger.info(f"recorder={s['recorder']} poc={s['poc_packing_size']} memo={s['memo']}")
    for p in order.products:
        mark = "x" if p.is_checked else " "
        logger.info(f"[{mark}] {p.id} {p.product_code} {p.product_name} x{p.quantity} ({p.lx}x{p.ly}x{p.lz})")
    for img in order.images:
        logger.info(f"image {img.id} {img.image_type.value} {img.url}")


def _cmd_worker(args: argparse.Namespace, cfg: AppConfig, logger: logging.Logger, dataset_id: str | None) -> int:
    with _open_store(cfg) as store:
        order = worker.lookup_order(store, dataset_id, args.order_number)
        if args.command == "check":
            order = worker.set_product_checked(store, order, args.product_id, not args.uncheck)
        elif args.command == "record":
            if args.recorder is None and args.packing_size is None and args.memo is None:
                raise PreconditionError("nothing to record: give --recorder, --packing-size or --memo")
            if args.recorder is not None:
                order = worker.save_recorder(store, order, args.recorder)
            if args.packing_size is not None:
                order = worker.save_packing_size(store, order, args.packing_size)
            if args.memo is not None:
                order = worker.save_memo(store, order, args.memo)
        elif args.command == "attach":
            if not args.image.is_file():
                raise PreconditionError(f"image file not found: {args.image}")
            content_type = mimetypes.guess_type(args.image.name)[0] or "image/jpeg"
            order, image = worker.attach_image(
                store, _open_blobs(cfg), order, args.image.read_bytes(), ImageType(args.image_type), content_type
            )
            logger.info(f"attached image {image.id}: {image.url}")
        elif args.command == "detach":
            order = worker.delete_image(store, _open_blobs(cfg), order, args.image_id)
    _log_order(order, logger)
    return EXIT_SUCCESS_ALL


def _dispatch(args: argparse.Namespace, cfg: AppConfig, logger: logging.Logger) -> int:
    selection = DatasetSelection(SettingsStore(Path(cfg.settings_path)))

    def on_change(message: DatasetChanged) -> None:
        logger.info(f"selected dataset: {message.dataset_id or '-'}")

    selection.subscribe(on_change)
    dataset_id = args.dataset or selection.current

    if args.command == "init-db":
        return _cmd_init_db(args, cfg, logger)
    if args.command == "import":
        return _cmd_import(args, cfg, logger, selection)
    if args.command == "preview":
        return _cmd_preview(args, cfg, logger)
    if args.command == "datasets":
        return _cmd_datasets(args, cfg, logger, selection)
    if args.command == "select":
        return _cmd_select(args, cfg, logger, selection)
    if args.command == "orders":
        return _cmd_orders(args, cfg, logger, dataset_id)
    if args.command == "export":
        return _cmd_export(args, cfg, logger, dataset_id)
    return _cmd_worker(args, cfg, logger, dataset_id)


def main(argv: list[str] | None = None) -> int:
    # None only: an empty list must not pull in pytest's own sys.argv
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    if args.debug:
        logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)
    try:
        cfg = _load_app_config(args.config, logger)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    try:
        return _dispatch(args, cfg, logger)
    except OrderNotFoundError as e:
        logger.error(f"order not found: {e.order_number}")
        return EXIT_FATAL
    except _FATAL_ERRORS as e:
        logger.error(f"{args.command}: {e}")
        return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
