import requests
from typing import Optional


class CoachClient:
    """Simple REST client for the badges API."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        api_key: Optional[str] = None,
        session=None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.headers = {"X-API-Key": api_key} if api_key else {}

    def save_progress(self, student_id: str, session_id: str, payload: dict) -> dict:
        resp = self.session.put(
            f"{self.base_url}/students/{student_id}/sessions/{session_id}/progress",
            json=payload,
            headers=self.headers,
        )
        resp.raise_for_status()
        return resp.json()

    def list_badges(self) -> list:
        resp = self.session.get(f"{self.base_url}/badges", headers=self.headers)
        resp.raise_for_status()
        return resp.json()

    def student_badges(self, student_id: str) -> list:
        resp = self.session.get(
            f"{self.base_url}/students/{student_id}/badges", headers=self.headers
        )
        resp.raise_for_status()
        return resp.json()

    def badge_progress(self, student_id: str) -> dict:
        resp = self.session.get(
            f"{self.base_url}/students/{student_id}/badges/progress",
            headers=self.headers,
        )
        resp.raise_for_status()
        return resp.json()

    def award(self, student_id: str, event: str, metadata: Optional[dict] = None) -> dict:
        resp = self.session.post(
            f"{self.base_url}/students/{student_id}/badges/{event}",
            json=metadata,
            headers=self.headers,
        )
        resp.raise_for_status()
        return resp.json()
