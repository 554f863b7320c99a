import datetime
from typing import Iterable

from db import ActivityRecordRepository
from metrics_service import ActivityMetricsService, metrics_guard, start_of_day
from models import ActivityRecord

HISTORY_LIMIT = 100


def _numeric(value) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _logged_sets(record: ActivityRecord) -> list[dict]:
    return [s for s in record.sets if isinstance(s, dict)]


class StatisticsService:
    """Aggregate statistics over a student's full activity history."""

    def __init__(
        self,
        record_repo: ActivityRecordRepository,
        metrics: ActivityMetricsService | None = None,
    ) -> None:
        self.records = record_repo
        self.metrics = metrics or ActivityMetricsService(record_repo)

    @staticmethod
    def total_volume(records: Iterable[ActivityRecord]) -> float:
        """Sum of weight times reps over every logged set."""
        total = 0.0
        for record in records:
            for entry in _logged_sets(record):
                weight = _numeric(entry.get("weight"))
                reps = _numeric(entry.get("reps"))
                if weight and reps:
                    total += weight * reps
        return total

    @staticmethod
    def all_time_max_weight(records: Iterable[ActivityRecord]) -> float | None:
        best = 0.0
        for record in records:
            for entry in _logged_sets(record):
                weight = _numeric(entry.get("weight"))
                if weight and weight > best:
                    best = weight
        return best if best > 0 else None

    @staticmethod
    def average_weight(records: Iterable[ActivityRecord]) -> float | None:
        weights = [
            w
            for record in records
            for w in (_numeric(s.get("weight")) for s in _logged_sets(record))
            if w
        ]
        return sum(weights) / len(weights) if weights else None

    @metrics_guard
    def student_stats(
        self,
        student_id: str,
        today: datetime.date | datetime.datetime | None = None,
    ) -> dict:
        records = self.records.fetch_for_student(student_id)
        if today is None:
            week_end = None
            week_start = datetime.datetime.now() - datetime.timedelta(days=7)
        else:
            # the seven calendar days ending with today
            week_end = start_of_day(today) + datetime.timedelta(days=1)
            week_start = week_end - datetime.timedelta(days=7)
        avg = self.average_weight(records)
        return {
            "completed_sessions": self.metrics.completed_session_count(student_id),
            "total_volume": round(self.total_volume(records)),
            "max_weight": self.all_time_max_weight(records),
            "avg_weight": round(avg, 2) if avg else 0,
            "current_streak": self.metrics.current_streak(student_id, today),
            "sessions_this_week": self.records.count_distinct_completed(
                student_id, since=week_start, until=week_end
            ),
        }

    @metrics_guard
    def session_history(self, student_id: str, limit: int = 20) -> list[dict]:
        """Return the most recent records with their weighted sets."""
        limit = max(1, min(limit, HISTORY_LIMIT))
        history = []
        for record in self.records.fetch_latest(student_id, limit=limit):
            sets = [
                {
                    "weight": _numeric(s.get("weight")),
                    "reps": _numeric(s.get("reps")) or 0,
                }
                for s in _logged_sets(record)
                if _numeric(s.get("weight"))
            ]
            history.append(
                {
                    "session_id": record.session_id,
                    "saved_at": record.saved_at.isoformat(),
                    "completed": record.completed,
                    "sets": sets,
                }
            )
        return history
