from __future__ import annotations

import logging
import time
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from ..db.store import RecordStore
from ..models.records import ImageRecord, ImageType, OrderWithDetails
from ..storage.client import BlobStorageClient, object_path_from_url
from .errors import OrderNotFoundError, PreconditionError

"""Worker actions on a single order.

Look an order up by number, tick products off, record who packed it, the
packing size they chose and a memo, and attach or remove box photos. Each
write is its own transaction and returns an updated copy of the order.
"""

logger = logging.getLogger(__name__)

PACKING_SIZES = (
    "ネコポス大",
    "ネコポス小",
    "コンパクト",
    "60サイズ",
    "80サイズ",
    "100サイズ",
    "120サイズ",
)


def lookup_order(store: RecordStore, dataset_id: str | None, order_number: str | None) -> OrderWithDetails:
    number = (order_number or "").strip()
    if not dataset_id:
        raise PreconditionError("no dataset selected")
    if not number:
        raise PreconditionError("order number is required")
    found = store.fetch_orders_with_details(dataset_id, order_number=number, limit=1)
    if not found:
        raise OrderNotFoundError(number, dataset_id)
    return found[0]


def set_product_checked(
    store: RecordStore, order: OrderWithDetails, product_id: str, checked: bool
) -> OrderWithDetails:
    if not any(p.id == product_id for p in order.products):
        raise PreconditionError(f"product {product_id} does not belong to order {order.order_number}")
    with store.transaction():
        store.update("products", {"is_checked": checked}, {"id": product_id})
    products = [replace(p, is_checked=checked) if p.id == product_id else p for p in order.products]
    return replace(order, products=products)


def _update_order(store: RecordStore, order: OrderWithDetails, **values: Any) -> OrderWithDetails:
    if order.id is None:
        raise PreconditionError(f"order {order.order_number} is not persisted")
    with store.transaction():
        store.update("orders", {**values, "updated_at": datetime.now(UTC)}, {"id": order.id})
    logger.info("order=%s updated %s", order.order_number, sorted(values))
    return replace(order, **values)


def save_recorder(store: RecordStore, order: OrderWithDetails, recorder: str) -> OrderWithDetails:
    return _update_order(store, order, recorder=recorder.strip())


def save_packing_size(store: RecordStore, order: OrderWithDetails, size: str) -> OrderWithDetails:
    if size not in PACKING_SIZES:
        raise PreconditionError(f"unknown packing size {size!r}; expected one of {', '.join(PACKING_SIZES)}")
    return _update_order(store, order, poc_packing_size=size)


def save_memo(store: RecordStore, order: OrderWithDetails, memo: str) -> OrderWithDetails:
    return _update_order(store, order, memo=memo)


def attach_image(
    store: RecordStore,
    blobs: BlobStorageClient,
    order: OrderWithDetails,
    data: bytes,
    image_type: ImageType,
    content_type: str = "image/jpeg",
) -> tuple[OrderWithDetails, ImageRecord]:
    """Upload a photo and record it against the order."""
    if order.id is None:
        raise PreconditionError(f"order {order.order_number} is not persisted")
    if not data:
        raise PreconditionError("image data is empty")
    path = f"{order.order_number}/{int(time.time() * 1000)}.jpg"
    blobs.upload(path, data, content_type=content_type)
    url = blobs.public_url(path)
    with store.transaction():
        row = store.insert("images", {"order_id": order.id, "url": url, "image_type": image_type.value})
    image = ImageRecord.from_row(row)
    return replace(order, images=[*order.images, image]), image


def delete_image(
    store: RecordStore, blobs: BlobStorageClient, order: OrderWithDetails, image_id: str
) -> OrderWithDetails:
    """Remove a photo from the blob store and delete its record."""
    image = next((img for img in order.images if img.id == image_id), None)
    if image is None:
        raise PreconditionError(f"image {image_id} does not belong to order {order.order_number}")
    blobs.remove([object_path_from_url(image.url)])
    with store.transaction():
        store.delete("images", {"id": image_id})
    return replace(order, images=[img for img in order.images if img.id != image_id])
