from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any

import pandas as pd
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import IllegalCharacterError

from ..models.export_table import ExportRow, ExportTable

"""Spreadsheet writer: one ExportTable -> one single-sheet .xlsx file."""

__all__ = [
    "ExportError",
    "export_filename",
    "write_xlsx",
]

MAX_SHEET_NAME = 31  # Excel limit


class ExportError(Exception):
    pass


def export_filename(label: str, day: date) -> str:
    return f"{label}_{day.isoformat()}.xlsx"


def _clean_cell(value: Any) -> Any:
    # control characters (free-text memos) are not allowed in worksheet cells
    if isinstance(value, str):
        return ILLEGAL_CHARACTERS_RE.sub("", value)
    return value


def _clean_row(row: ExportRow) -> ExportRow:
    return {column: _clean_cell(value) for column, value in row.items()}


def write_xlsx(table: ExportTable, path: Path, sheet_name: str) -> Path:
    """Write ``table`` to ``path`` (header row + data rows) and apply column widths."""
    sheet = sheet_name[:MAX_SHEET_NAME]
    try:
        df = pd.DataFrame([_clean_row(r) for r in table.rows], columns=table.columns)
        path.parent.mkdir(parents=True, exist_ok=True)
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name=sheet, index=False)
            ws = writer.sheets[sheet]
            for idx, width in enumerate(table.widths, start=1):
                ws.column_dimensions[get_column_letter(idx)].width = width
    except (OSError, ValueError, IllegalCharacterError) as e:
        raise ExportError(f"cannot write {path}: {e}") from e
    return path
