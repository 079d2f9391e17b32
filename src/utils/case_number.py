"""Case number allocation.

Case numbers look like ``CASE-2024-003``: the calendar year of allocation and
a 1-based sequence counted over the course's logs dated in that year, padded
to three digits. Counting then formatting is racy, so the unique constraint on
``case_logs.case_no`` is the real guard; callers retry on IntegrityError.
"""

import logging
from datetime import datetime
from typing import Optional

import pytz
from sqlalchemy import func
from sqlalchemy.orm import Session

from models.case_log import CaseLogModel
from utils.time_utils import utc_now

logger = logging.getLogger(__name__)

# Upper bound on stepping forward past numbers already taken by other courses
MAX_FORWARD_STEPS = 1000


def format_case_no(year: int, sequence: int) -> str:
    return f"CASE-{year}-{sequence:03d}"


def year_bounds(year: int):
    """Half-open [Jan 1, next Jan 1) range in UTC."""
    return (
        datetime(year, 1, 1, tzinfo=pytz.utc),
        datetime(year + 1, 1, 1, tzinfo=pytz.utc),
    )


class CaseNumberAllocator:
    """Produces the next free case number for a course."""

    def __init__(self, db: Session):
        self.db = db

    def count_logs_in_year(self, course_id: str, year: int) -> int:
        start, end = year_bounds(year)
        return (
            self.db.query(func.count(CaseLogModel.log_id))
            .filter(
                CaseLogModel.course_id == course_id,
                CaseLogModel.date >= start,
                CaseLogModel.date < end,
            )
            .scalar()
        ) or 0

    def _is_taken(self, case_no: str) -> bool:
        return (
            self.db.query(CaseLogModel.log_id)
            .filter(CaseLogModel.case_no == case_no)
            .first()
            is not None
        )

    def next_case_no(self, course_id: str, now: Optional[datetime] = None) -> str:
        """Return the next case number for ``course_id``.

        Args:
            course_id: Course the new log belongs to.
            now: Allocation time; defaults to the current UTC time.

        Returns:
            A case number not present in storage at the time of the call.
        """
        year = (now or utc_now()).year
        sequence = self.count_logs_in_year(course_id, year) + 1

        # case_no is unique across courses, so step past numbers another
        # course already holds for this year
        for _ in range(MAX_FORWARD_STEPS):
            case_no = format_case_no(year, sequence)
            if not self._is_taken(case_no):
                return case_no
            sequence += 1
        logger.error("No free case number for course %s in %s", course_id, year)
        return format_case_no(year, sequence)
