import os
import sys
import datetime
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import ActivityRecordRepository, to_db_timestamp
from metrics_service import MetricsUnavailableError
from stats_service import StatisticsService


class StatisticsServiceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_stats.db"
        if os.path.exists(self.db_path):
            os.remove(self.db_path)
        self.records = ActivityRecordRepository(self.db_path)
        self.stats = StatisticsService(self.records)
        self.now = datetime.datetime.now()

    def tearDown(self) -> None:
        if os.path.exists(self.db_path):
            os.remove(self.db_path)

    def test_student_stats(self) -> None:
        self.records.save(
            "s1",
            "a",
            {"completed": True, "sets": [{"weight": 200, "reps": 2}, {"weight": 100, "reps": 5}]},
            self.now - datetime.timedelta(days=20),
        )
        self.records.save(
            "s1",
            "b",
            {"completed": True, "sets": [{"weight": 80, "reps": 10}, {"reps": 12}]},
            self.now - datetime.timedelta(hours=1),
        )
        self.records.save(
            "s1", "c", {"completed": False, "sets": [{"weight": 20, "reps": 3}]},
            self.now - datetime.timedelta(minutes=30),
        )
        result = self.stats.student_stats("s1")
        self.assertEqual(result["completed_sessions"], 2)
        self.assertEqual(result["total_volume"], 400 + 500 + 800 + 60)
        self.assertEqual(result["max_weight"], 200)
        self.assertEqual(result["avg_weight"], 100.0)
        self.assertEqual(result["sessions_this_week"], 1)
        self.assertGreaterEqual(result["current_streak"], 1)

    def test_week_window_follows_reference_date(self) -> None:
        at = datetime.datetime
        self.records.save("s1", "early", {"completed": True}, at(2024, 3, 3, 23, 0))
        self.records.save("s1", "first", {"completed": True}, at(2024, 3, 4, 10, 0))
        self.records.save("s1", "today", {"completed": True}, at(2024, 3, 10, 9, 0))
        self.records.save("s1", "later", {"completed": True}, at(2024, 3, 11, 8, 0))
        result = self.stats.student_stats("s1", datetime.date(2024, 3, 10))
        self.assertEqual(result["sessions_this_week"], 2)
        self.assertEqual(result["current_streak"], 1)
        self.assertEqual(result["completed_sessions"], 4)

    def test_empty_history(self) -> None:
        self.assertEqual(
            self.stats.student_stats("nobody", datetime.date(2024, 3, 10)),
            {
                "completed_sessions": 0,
                "total_volume": 0,
                "max_weight": None,
                "avg_weight": 0,
                "current_streak": 0,
                "sessions_this_week": 0,
            },
        )

    def test_all_time_max_differs_from_latest(self) -> None:
        records = [
            self.records._row_to_record(
                (1, "s1", "a", to_db_timestamp(self.now), '{"sets": [{"weight": 150}]}')
            ),
            self.records._row_to_record(
                (2, "s1", "b", to_db_timestamp(self.now), '{"sets": [{"weight": 90}, "x"]}')
            ),
        ]
        self.assertEqual(StatisticsService.all_time_max_weight(records), 150)
        self.assertIsNone(StatisticsService.all_time_max_weight([]))
        self.assertEqual(StatisticsService.average_weight(records), 120)

    def test_session_history(self) -> None:
        self.records.save(
            "s1", "a", {"completed": True, "sets": [{"weight": 50, "reps": 5}, {"reps": 10}]},
            self.now - datetime.timedelta(days=1),
        )
        self.records.save("s1", "b", {"completed": False}, self.now)
        history = self.stats.session_history("s1", limit=5)
        self.assertEqual([h["session_id"] for h in history], ["b", "a"])
        self.assertFalse(history[0]["completed"])
        self.assertEqual(history[1]["sets"], [{"weight": 50.0, "reps": 5.0}])

    def test_session_history_limit_is_bounded(self) -> None:
        for i in range(3):
            self.records.save(
                "s1", f"sess-{i}", {"completed": True}, self.now - datetime.timedelta(days=i)
            )
        self.assertEqual(
            [h["session_id"] for h in self.stats.session_history("s1", limit=-1)], ["sess-0"]
        )
        self.assertEqual(len(self.stats.session_history("s1", limit=0)), 1)
        self.assertEqual(len(self.stats.session_history("s1", limit=10**6)), 3)

    def test_store_failure_propagates(self) -> None:
        self.records.execute(
            "INSERT INTO activity_records (student_id, session_id, saved_at, payload) "
            "VALUES (?, ?, ?, ?);",
            ("s1", "bad", to_db_timestamp(self.now), "not json"),
        )
        with self.assertRaises(MetricsUnavailableError):
            self.stats.student_stats("s1")


if __name__ == "__main__":
    unittest.main()
