from __future__ import annotations

from dataclasses import dataclass, field

"""Result models for the CSV import pipeline."""

__all__ = [
    "ImportSummary",
]


@dataclass(frozen=True)
class ImportSummary:
    """Outcome of one import run.

    total counts rows with a non-empty order number; processed is the sum of
    group sizes for groups that persisted without error; errors holds one
    human-readable message per failed group.
    """
    dataset_id: str | None
    total: int
    processed: int
    order_count: int  # distinct order numbers (groups)
    errors: list[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def failed_orders(self) -> int:
        return len(self.errors)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)
