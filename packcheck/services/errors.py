from __future__ import annotations

"""Exceptions raised at the service layer boundaries."""


class PreconditionError(Exception):
    """Required input missing (dataset, file, order number); nothing was changed."""


class ImportAbortedError(Exception):
    """The import could not start (dataset creation failed); no group was attempted."""


class OrderNotFoundError(Exception):
    """No order with the given number exists in the dataset."""

    def __init__(self, order_number: str, dataset_id: str) -> None:
        super().__init__(f"order {order_number!r} does not exist in dataset {dataset_id}")
        self.order_number = order_number
        self.dataset_id = dataset_id
