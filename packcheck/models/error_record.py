from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the import error log.

One record per order group that failed to persist. ``order_number`` is empty
for file-level errors (parse failure, dataset creation failure).
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: uploaded CSV file name
        order_number: order group that failed ("" for file-level errors)
        error_type: error classification in UPPER_SNAKE_CASE
        message: store or parser error message
    """
    timestamp: str
    file: str
    order_number: str
    error_type: str
    message: str

    @staticmethod
    def create(file: str, order_number: str, error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            order_number=order_number,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
