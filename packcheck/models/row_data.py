from __future__ import annotations

from dataclasses import dataclass

"""RowData model for the CSV import pipeline.

RowData is one parsed line of an uploaded CSV after its header names have been
mapped to canonical field names. It exists only during an import.
"""

__all__ = [
    "RowData",
]


@dataclass(frozen=True)
class RowData:
    """One data line of the uploaded file.

    ``row_number`` is the 1-based line number in the file (the header is line 1,
    so the first data row is 2). Missing columns read as empty strings.
    """
    row_number: int
    values: dict[str, str]

    def get(self, field: str) -> str:
        return self.values.get(field, "")

    @property
    def order_number(self) -> str:
        return self.get("order_number").strip()
