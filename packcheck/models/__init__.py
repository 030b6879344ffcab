"""Domain models for the packing verification tool.

Store records (datasets, orders, products, images), parsed CSV rows, import
results and the flat export table.
"""

from .error_record import ErrorRecord
from .export_table import ExportRow, ExportTable
from .import_result import ImportSummary
from .records import (
    Dataset,
    ImageRecord,
    ImageType,
    OrderRecord,
    OrderWithDetails,
    ProductRecord,
)
from .row_data import RowData

__all__ = [
    # Store records
    "Dataset",
    "ImageRecord",
    "ImageType",
    "OrderRecord",
    "OrderWithDetails",
    "ProductRecord",
    # Pipeline models
    "ErrorRecord",
    "ExportRow",
    "ExportTable",
    "ImportSummary",
    "RowData",
]
