from datetime import datetime
from typing import Optional

from config import MAX_PAGE_SIZE
from core.exceptions import ValidationError
from models.enums import LogStatus


def check_pagination(page: int, limit: int, max_limit: int = MAX_PAGE_SIZE) -> None:
    if page < 1:
        raise ValidationError("Page must be a positive integer", fields={"page": "must be >= 1"})
    if limit < 1 or limit > max_limit:
        raise ValidationError(
            f"Limit must be between 1 and {max_limit}",
            fields={"limit": f"must be between 1 and {max_limit}"},
        )


def check_date_range(start: Optional[datetime], end: Optional[datetime]) -> None:
    if start and end and start > end:
        raise ValidationError(
            "Start date cannot be after end date",
            fields={"start_date": "must not be after end_date"},
        )


def parse_status_filter(status: Optional[str]) -> Optional[LogStatus]:
    """Map a query-string status to the enum; ``None``/``ALL`` mean no filter."""
    if not status or status.upper() == "ALL":
        return None
    try:
        return LogStatus(status.upper())
    except ValueError:
        valid = ", ".join(s.value for s in LogStatus)
        raise ValidationError(
            f"Invalid status. Must be one of: {valid}",
            fields={"status": f"must be one of {valid}"},
        )
