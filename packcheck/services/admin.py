from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

from ..db.store import RecordStore
from ..models.records import ImageType, OrderWithDetails
from .errors import PreconditionError
from .formatting import DISPLAY_FILL_RATE_DIGITS, format_fill_rate

"""Administrator listing: paged orders, search and one-line summaries."""

EMPTY = "-"
PRODUCTS_SHOWN = 2


@dataclass(frozen=True)
class OrderPage:
    orders: list[OrderWithDetails]
    total_count: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size) if self.page_size else 0

    @property
    def first_index(self) -> int:
        """1-based index of the first order on this page (0 when empty)."""
        return (self.page - 1) * self.page_size + 1 if self.orders else 0

    @property
    def last_index(self) -> int:
        """1-based index of the last order on this page (0 when empty)."""
        if not self.orders:
            return 0
        return min(self.page * self.page_size, self.total_count)


def list_orders_page(store: RecordStore, dataset_id: str | None, page: int, page_size: int) -> OrderPage:
    """One page of a dataset's orders (1-based page), ordered by order number."""
    if not dataset_id:
        raise PreconditionError("no dataset selected")
    if page < 1:
        raise PreconditionError(f"page must be >= 1, got {page}")
    total = store.count("orders", {"dataset_id": dataset_id})
    orders = store.fetch_orders_with_details(
        dataset_id, offset=(page - 1) * page_size, limit=page_size
    )
    return OrderPage(orders=orders, total_count=total, page=page, page_size=page_size)


def filter_orders(orders: Sequence[OrderWithDetails], query: str | None) -> list[OrderWithDetails]:
    """Case-insensitive match on order number, product code or product name."""
    if not query:
        return list(orders)
    q = query.lower()
    return [
        o for o in orders
        if q in o.order_number.lower()
        or any(q in p.product_code.lower() or q in p.product_name.lower() for p in o.products)
    ]


def summarize_order(order: OrderWithDetails) -> dict[str, str]:
    """Display fields for one listing row."""
    products = [f"{p.product_code}: {p.product_name} x{p.quantity}" for p in order.products[:PRODUCTS_SHOWN]]
    hidden = len(order.products) - PRODUCTS_SHOWN
    if hidden > 0:
        products.append(f"+{hidden} more")
    return {
        "order_number": order.order_number,
        "products": "; ".join(products),
        "total_quantity": str(order.total_quantity),
        "fill_rate": format_fill_rate(order.fill_rate, DISPLAY_FILL_RATE_DIGITS),
        "actual_size": order.actual_size,
        "predicted_size": order.predicted_size,
        "recorder": order.recorder or EMPTY,
        "poc_packing_size": order.poc_packing_size or EMPTY,
        "memo": order.memo or EMPTY,
        "actual_images": str(len(order.images_of(ImageType.ACTUAL))),
        "predicted_images": str(len(order.images_of(ImageType.PREDICTED))),
    }
