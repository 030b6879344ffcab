from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

"""Store record models for the packing verification tool.

These mirror the four tables kept in the external store (datasets, orders,
products, images). Records built during import carry no ``id`` yet; rows read
back from the store are converted with the ``from_row`` constructors.
"""

__all__ = [
    "Dataset",
    "ImageType",
    "OrderRecord",
    "ProductRecord",
    "ImageRecord",
    "OrderWithDetails",
]


class ImageType(Enum):
    """Which box a captured photo shows."""
    ACTUAL = "actual"
    PREDICTED = "predicted"


@dataclass(frozen=True)
class Dataset:
    """A named import batch; the unit of selection and export scope."""
    id: str
    name: str
    created_at: Any = None

    @staticmethod
    def from_row(row: dict[str, Any]) -> Dataset:
        return Dataset(id=str(row["id"]), name=row["name"], created_at=row.get("created_at"))


@dataclass(frozen=True)
class OrderRecord:
    """One logical order (fill_rate stored as a fraction, not a percentage)."""
    order_number: str
    total_quantity: int
    actual_size: str
    predicted_size: str
    fill_rate: float
    type: str
    recorder: str | None = None
    poc_packing_size: str | None = None
    memo: str | None = None
    id: str | None = None
    dataset_id: str | None = None

    def to_insert(self, dataset_id: str) -> dict[str, Any]:
        """Column values for an INSERT into ``orders`` (worker fields stay NULL)."""
        return {
            "dataset_id": dataset_id,
            "order_number": self.order_number,
            "total_quantity": self.total_quantity,
            "actual_size": self.actual_size,
            "predicted_size": self.predicted_size,
            "fill_rate": self.fill_rate,
            "type": self.type,
        }

    @staticmethod
    def from_row(row: dict[str, Any]) -> OrderRecord:
        return OrderRecord(**_order_kwargs(row))


@dataclass(frozen=True)
class ProductRecord:
    """One product line of an order; dimensions are integers."""
    product_code: str
    product_name: str
    category: str | None
    quantity: int
    lx: int
    ly: int
    lz: int
    is_checked: bool = False
    id: str | None = None
    order_id: str | None = None

    def to_insert(self, order_id: str) -> dict[str, Any]:
        values = asdict(self)
        values.pop("id")
        values["order_id"] = order_id
        return values

    @staticmethod
    def from_row(row: dict[str, Any]) -> ProductRecord:
        return ProductRecord(
            product_code=row.get("product_code") or "",
            product_name=row.get("product_name") or "",
            category=row.get("category"),
            quantity=int(row.get("quantity") or 0),
            lx=int(row.get("lx") or 0),
            ly=int(row.get("ly") or 0),
            lz=int(row.get("lz") or 0),
            is_checked=bool(row.get("is_checked", False)),
            id=_str_or_none(row.get("id")),
            order_id=_str_or_none(row.get("order_id")),
        )


@dataclass(frozen=True)
class ImageRecord:
    """A captured photo attached to an order."""
    url: str
    image_type: ImageType
    id: str | None = None
    order_id: str | None = None

    @staticmethod
    def from_row(row: dict[str, Any]) -> ImageRecord:
        return ImageRecord(
            url=row["url"],
            image_type=ImageType(row.get("image_type") or ImageType.ACTUAL.value),
            id=_str_or_none(row.get("id")),
            order_id=_str_or_none(row.get("order_id")),
        )


@dataclass(frozen=True)
class OrderWithDetails(OrderRecord):
    """An order joined with its products and images, as read for lookup/export."""
    products: list[ProductRecord] = field(default_factory=list)
    images: list[ImageRecord] = field(default_factory=list)

    def images_of(self, image_type: ImageType) -> list[ImageRecord]:
        return [img for img in self.images if img.image_type is image_type]

    @staticmethod
    def from_row(
        row: dict[str, Any],
        products: list[ProductRecord] | None = None,
        images: list[ImageRecord] | None = None,
    ) -> OrderWithDetails:
        return OrderWithDetails(
            **_order_kwargs(row),
            products=list(products or []),
            images=list(images or []),
        )


def _str_or_none(value: Any) -> str | None:
    return None if value is None else str(value)


def _order_kwargs(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "order_number": row["order_number"],
        "total_quantity": int(row.get("total_quantity") or 0),
        "actual_size": row.get("actual_size") or "",
        "predicted_size": row.get("predicted_size") or "",
        "fill_rate": float(row.get("fill_rate") or 0),
        "type": row.get("type") or "",
        "recorder": row.get("recorder"),
        "poc_packing_size": row.get("poc_packing_size"),
        "memo": row.get("memo"),
        "id": _str_or_none(row.get("id")),
        "dataset_id": _str_or_none(row.get("dataset_id")),
    }
