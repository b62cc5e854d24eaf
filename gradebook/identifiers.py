"""Human-readable student identifiers scoped to a school."""

import logging
import threading
from datetime import date
from typing import Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = 'STU'
SEQUENCE_WIDTH = 4


def format_student_id(year: int, sequence: int, prefix: str = DEFAULT_PREFIX) -> str:
    """STU + 2-digit year + zero-padded sequence, e.g. STU250007."""
    return f"{prefix}{year % 100:02d}{sequence:0{SEQUENCE_WIDTH}d}"


class SequentialIdentifierAllocator:
    """
    Per-school fetch-and-increment counter.

    Each call to allocate() takes the next sequence number for the school
    under a lock, so two admissions in the same school can never receive the
    same identifier. Counters start from the school's existing student count
    when seeded.
    """

    def __init__(self, prefix: str = DEFAULT_PREFIX):
        self.prefix = prefix
        self._counters: Dict[str, int] = {}
        self._lock = threading.Lock()

    def seed(self, school_id: str, existing_count: int) -> None:
        """Start a school's counter after ``existing_count`` students."""
        with self._lock:
            current = self._counters.get(school_id, 0)
            self._counters[school_id] = max(current, existing_count)

    def next_sequence(self, school_id: str) -> int:
        with self._lock:
            value = self._counters.get(school_id, 0) + 1
            self._counters[school_id] = value
            return value

    def allocate(self, school_id: str, on: Optional[date] = None) -> str:
        on = on or date.today()
        student_id = format_student_id(on.year, self.next_sequence(school_id), self.prefix)
        logger.debug(f"Allocated student id {student_id} for school {school_id}")
        return student_id

