import os
import sys
import unittest
from fastapi.testclient import TestClient

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from client import CoachClient
from rest_api import CoachAPI


class ClientTest(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_client.db"
        self.yaml_path = "test_client.yaml"
        for path in (self.db_path, self.yaml_path):
            if os.path.exists(path):
                os.remove(path)
        self.api = CoachAPI(db_path=self.db_path, yaml_path=self.yaml_path)
        self.client = CoachClient(
            base_url="http://testserver/",
            session=TestClient(self.api.app),
        )

    def tearDown(self) -> None:
        for path in (self.db_path, self.yaml_path):
            if os.path.exists(path):
                os.remove(path)

    def test_progress_and_badges(self) -> None:
        result = self.client.save_progress(
            "s1", "sess-1", {"completed": True, "sets": [{"weight": 70, "reps": 5}]}
        )
        self.assertEqual(result["awarded"], ["session_completed"])
        self.assertEqual(len(self.client.list_badges()), 6)
        self.assertEqual(
            [a["badge"]["key"] for a in self.client.student_badges("s1")],
            ["session_completed"],
        )
        self.assertEqual(self.client.badge_progress("s1")["max_weight"], 70)

    def test_award(self) -> None:
        result = self.client.award("s1", "total_volume_milestone", {"volumeMilestone": True})
        self.assertEqual(result["status"], "awarded")
        result = self.client.award("s1", "streak_30_days")
        self.assertEqual(result, {"status": "not_earned", "award": None})

    def test_api_key_header(self) -> None:
        client = CoachClient("http://testserver", api_key="abc", session=TestClient(self.api.app))
        self.assertEqual(client.headers, {"X-API-Key": "abc"})
        self.assertEqual(len(client.list_badges()), 6)


if __name__ == "__main__":
    unittest.main()
