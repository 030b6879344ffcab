from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

"""Flat export table for the spreadsheet writer."""

__all__ = [
    "ExportRow",
    "ExportTable",
]

ExportRow = dict[str, Any]  # column label -> scalar (str or number)


@dataclass(frozen=True)
class ExportTable:
    """Rectangular table: every row has exactly ``columns`` as keys, in order.

    ``widths`` is presentation metadata (one character width per column).
    """
    columns: list[str]
    rows: list[ExportRow] = field(default_factory=list)
    widths: list[int] = field(default_factory=list)
    max_actual_images: int = 0
    max_predicted_images: int = 0
