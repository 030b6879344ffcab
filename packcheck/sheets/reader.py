from __future__ import annotations

import logging
import warnings
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any

import pandas as pd

from ..models.row_data import RowData

"""CSV reader for uploaded order files.

The first line is the header. Every cell is read as text (no NA conversion) so
that numeric parsing and its zero defaults happen in one place, the importer.
Header names are mapped to canonical field names through HEADER_ALIASES plus
any configured aliases; unknown headers are kept as they are.
"""

__all__ = [
    "CANONICAL_FIELDS",
    "HEADER_ALIASES",
    "CsvParseError",
    "SheetData",
    "read_csv_rows",
    "preview_csv",
]

logger = logging.getLogger(__name__)

CANONICAL_FIELDS = (
    "order_number",
    "product_code",
    "product_name",
    "category",
    "quantity",
    "type",
    "applied_size_actual",
    "applied_size_predicted",
    "total_quantity",
    "fill_rate",
    "lx",
    "ly",
    "lz",
)

# Headers used by the operators' spreadsheet exports
HEADER_ALIASES = {
    "注文番号": "order_number",
    "商品コード": "product_code",
    "商品名": "product_name",
    "カテゴリ": "category",
    "数量": "quantity",
    "種別": "type",
    "適用サイズ_実績": "applied_size_actual",
    "適用サイズ_予測": "applied_size_predicted",
    "総数量": "total_quantity",
    "充填率": "fill_rate",
}


class CsvParseError(Exception):
    """The file as a whole could not be parsed (encoding, structure, I/O)."""


@dataclass
class SheetData:
    columns: list[str]  # canonical names, in file order
    rows: list[RowData] = field(default_factory=list)


def _canonical_columns(raw: list[Any], aliases: Mapping[str, str]) -> list[str]:
    columns: list[str] = []
    for name in raw:
        header = str(name).strip().lstrip("\ufeff")
        columns.append(aliases.get(header, header))
    return columns


def read_csv_rows(
    source: Path | IO[Any],
    aliases: Mapping[str, str] | None = None,
    nrows: int | None = None,
) -> SheetData:
    """Read a UTF-8, comma-delimited CSV with a header row.

    Parameters
    ----------
    source: file path or binary/text file object
    aliases: extra header -> canonical field mappings (config ``column_aliases``)
    nrows: read only the first n data rows

    Raises
    ------
    CsvParseError: undecodable bytes, malformed structure or unreadable file

    Rows with more fields than the header keep the leading fields; the extra
    ones are dropped and a warning is logged.
    """
    merged = {**HEADER_ALIASES, **(aliases or {})}
    try:
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", pd.errors.ParserWarning)
            df = pd.read_csv(
                source,
                dtype=str,
                keep_default_na=False,
                encoding="utf-8-sig",
                skip_blank_lines=True,
                nrows=nrows,
                engine="python",
                index_col=False,
            )
    except pd.errors.EmptyDataError:
        return SheetData(columns=[])
    except (UnicodeDecodeError, pd.errors.ParserError) as e:
        raise CsvParseError(f"cannot parse CSV: {e}") from e
    except OSError as e:
        raise CsvParseError(f"cannot read CSV: {e}") from e

    if any(issubclass(w.category, pd.errors.ParserWarning) for w in caught):
        logger.warning("some rows have more fields than the header; extra fields were ignored")

    df = df.fillna("")
    columns = _canonical_columns(list(df.columns), merged)
    rows: list[RowData] = []
    for position, raw in enumerate(df.itertuples(index=False, name=None)):
        values: dict[str, str] = {}
        for col, val in zip(columns, raw, strict=False):
            # duplicate headers: the first occurrence wins
            values.setdefault(col, str(val))
        rows.append(RowData(row_number=position + 2, values=values))
    return SheetData(columns=columns, rows=rows)


def preview_csv(source: Path | IO[Any], aliases: Mapping[str, str] | None = None, n: int = 5) -> SheetData:
    """First ``n`` data rows, for showing the operator what will be imported."""
    return read_csv_rows(source, aliases=aliases, nrows=n)
