import datetime
import functools
import logging
import sqlite3

from db import ActivityRecordRepository
from models import ActivityRecord

logger = logging.getLogger(__name__)


class MetricsUnavailableError(RuntimeError):
    """Raised when activity metrics cannot be derived from the record store."""


def metrics_guard(func):
    """Convert store and payload failures into ``MetricsUnavailableError``."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except MetricsUnavailableError:
            raise
        except (sqlite3.Error, ValueError, TypeError) as e:
            logger.error("metrics unavailable in %s: %s", func.__name__, e)
            raise MetricsUnavailableError(str(e)) from e

    return wrapper


def start_of_day(today: datetime.date | datetime.datetime | None = None) -> datetime.datetime:
    """Return local midnight of ``today`` (defaults to the current date)."""
    if today is None:
        today = datetime.date.today()
    if isinstance(today, datetime.datetime):
        if today.tzinfo is not None:
            today = today.astimezone().replace(tzinfo=None)
        today = today.date()
    return datetime.datetime.combine(today, datetime.time.min)


def peak_weight(record: ActivityRecord) -> float | None:
    """Return the heaviest positive set weight in ``record``."""
    best = 0.0
    for entry in record.sets:
        if not isinstance(entry, dict):
            continue
        weight = entry.get("weight")
        if isinstance(weight, bool) or not isinstance(weight, (int, float)):
            continue
        if weight > best:
            best = weight
    return best if best > 0 else None


class ActivityMetricsService:
    """Derive point-in-time activity metrics for a student.

    Every call re-reads the record store; nothing is cached between calls.
    """

    STREAK_SCAN_DAYS = 365

    def __init__(self, records: ActivityRecordRepository) -> None:
        self.records = records

    @metrics_guard
    def completed_session_count(self, student_id: str) -> int:
        """Number of distinct sessions with a completed record."""
        return self.records.count_distinct_completed(student_id)

    @metrics_guard
    def current_streak(
        self,
        student_id: str,
        today: datetime.date | datetime.datetime | None = None,
    ) -> int:
        """Count consecutive days with a completed session, walking back from ``today``.

        Days without a completion are skipped until the first completed day is
        found; after that the first missed day ends the streak. The walk never
        looks at more than ``STREAK_SCAN_DAYS`` days.
        """
        day = start_of_day(today)
        streak = 0
        for _ in range(self.STREAK_SCAN_DAYS):
            next_day = day + datetime.timedelta(days=1)
            if self.records.has_completed_between(student_id, day, next_day):
                streak += 1
            elif streak > 0:
                break
            day -= datetime.timedelta(days=1)
        return streak

    @metrics_guard
    def max_weight_logged(self, student_id: str) -> float | None:
        """Peak set weight of the most recently saved record only."""
        latest = self.records.fetch_latest(student_id, limit=1)
        if not latest:
            return None
        return peak_weight(latest[0])

    def weekly_badge_progress(
        self,
        student_id: str,
        today: datetime.date | datetime.datetime | None = None,
    ) -> dict:
        return {
            "sessions_completed": self.completed_session_count(student_id),
            "current_streak": self.current_streak(student_id, today),
            "max_weight": self.max_weight_logged(student_id),
        }
