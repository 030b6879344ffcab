from __future__ import annotations

"""Display formatting shared by the export and the admin listing."""

EXPORT_FILL_RATE_DIGITS = 2
DISPLAY_FILL_RATE_DIGITS = 1


def format_fill_rate(fraction: float, digits: int) -> str:
    """Render a stored fill-rate fraction as a percentage, e.g. 0.4567 -> '45.67%'."""
    return f"{fraction * 100:.{digits}f}%"
