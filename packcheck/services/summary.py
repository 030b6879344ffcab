from __future__ import annotations

from ..models.import_result import ImportSummary

"""SUMMARY line and error list rendering for import runs."""

ERROR_DISPLAY_LIMIT = 10


def _format_seconds(value: float) -> str:
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        # avoid scientific notation
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_body(summary: ImportSummary) -> str:
    """Render the body of the import SUMMARY line.

    The ``SUMMARY`` label itself comes from the log formatter, so the body is
    passed straight to ``log_summary``. Full line:
    SUMMARY dataset={id} rows={processed}/{total} orders={groups}
    failed_orders={failed} elapsed_sec={elapsed}

    >>> s = ImportSummary(dataset_id="d1", total=3, processed=2, order_count=2,
    ...                   errors=["order A2: boom"], elapsed_seconds=1.5)
    >>> render_summary_body(s)
    'dataset=d1 rows=2/3 orders=2 failed_orders=1 elapsed_sec=1.5'
    """
    return (
        f"dataset={summary.dataset_id or '-'} "
        f"rows={summary.processed}/{summary.total} "
        f"orders={summary.order_count} "
        f"failed_orders={summary.failed_orders} "
        f"elapsed_sec={_format_seconds(summary.elapsed_seconds)}"
    )


def render_error_list(errors: list[str], limit: int = ERROR_DISPLAY_LIMIT) -> list[str]:
    """First ``limit`` error messages, plus one line carrying the true total when capped."""
    shown = list(errors[:limit])
    hidden = len(errors) - len(shown)
    if hidden > 0:
        shown.append(f"... and {hidden} more ({len(errors)} errors)")
    return shown
