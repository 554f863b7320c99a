import logging
import os
from typing import Dict

from fastapi import (
    FastAPI,
    HTTPException,
    Body,
    APIRouter,
    Request,
    Header,
    Depends,
    Query,
)
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from config import YamlConfig
from db import ActivityRecordRepository, BadgeRepository, BadgeAwardRepository
from badge_service import BadgeService, BadgeEvent, parse_metadata
from metrics_service import ActivityMetricsService, MetricsUnavailableError
from stats_service import StatisticsService, HISTORY_LIMIT

logger = logging.getLogger(__name__)


class CoachAPI:
    """Provides REST endpoints for session progress, badges and statistics."""

    def __init__(
        self,
        db_path: str | None = None,
        yaml_path: str = "settings.yaml",
    ) -> None:
        self.config = YamlConfig(yaml_path)
        self.settings = self.config.load()
        self.records = ActivityRecordRepository(db_path)
        self.badge_repo = BadgeRepository(db_path)
        self.award_repo = BadgeAwardRepository(db_path)
        self.metrics = ActivityMetricsService(self.records)
        self.badges = BadgeService(
            self.badge_repo,
            self.award_repo,
            self.records,
            self.metrics,
        )
        self.statistics = StatisticsService(self.records, self.metrics)
        self.app = FastAPI(
            title="Coach Badges API",
            description="REST API for student progress, badges and statistics",
        )
        self._setup_routes()

    def _require_token(self, x_api_key: str | None = Header(None)) -> None:
        token = self.settings.get("api_token")
        if token and x_api_key != token:
            raise HTTPException(status_code=401, detail="invalid API key")

    def _setup_routes(self) -> None:
        router = APIRouter(dependencies=[Depends(self._require_token)])

        @self.app.exception_handler(MetricsUnavailableError)
        async def metrics_unavailable(request: Request, exc: MetricsUnavailableError):
            return JSONResponse(
                status_code=503, content={"detail": "metrics unavailable"}
            )

        @self.app.get(
            "/health",
            summary="Health check",
            description="Verify API and database connectivity.",
        )
        def health():
            """Return API and database connection status."""
            try:
                self.badge_repo.fetch_all()
                return {"status": "ok"}
            except Exception as e:  # pragma: no cover - connectivity failure
                raise HTTPException(status_code=500, detail=str(e))

        @router.put(
            "/students/{student_id}/sessions/{session_id}/progress",
            summary="Save session progress",
            description="Create or replace the student's progress for a session.",
        )
        def save_progress(
            student_id: str, session_id: str, payload: Dict = Body(...)
        ):
            try:
                rid = self.records.save(student_id, session_id, payload)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            awarded: list[str] = []
            if payload.get("completed") is True:
                awarded = [
                    a.badge.key
                    for a in self.badges.award_completion_badges(student_id)
                    if a.badge is not None
                ]
                if awarded:
                    logger.info(
                        "student %s earned %s", student_id, ", ".join(awarded)
                    )
            return {"id": rid, "awarded": awarded}

        @router.get("/students/{student_id}/sessions/{session_id}/progress")
        def get_progress(student_id: str, session_id: str):
            record = self.records.fetch(student_id, session_id)
            if record is None:
                raise HTTPException(status_code=404, detail="progress not found")
            return record.to_dict()

        @router.delete("/students/{student_id}/sessions/{session_id}/progress")
        def delete_progress(student_id: str, session_id: str):
            try:
                self.records.delete(student_id, session_id)
            except ValueError as e:
                raise HTTPException(status_code=404, detail=str(e))
            return {"status": "deleted"}

        @router.get("/badges")
        def list_badges():
            return [b.to_dict() for b in self.badges.all_badges()]

        @router.get("/students/{student_id}/badges")
        def student_badges(student_id: str):
            return [a.to_dict() for a in self.badges.student_badges(student_id)]

        @router.get("/students/{student_id}/badges/progress")
        def badge_progress(student_id: str):
            return self.badges.badge_progress(student_id)

        @router.post(
            "/students/{student_id}/badges/{event}",
            summary="Evaluate badge",
            description="Award the badge for an event if the student earned it.",
        )
        def award_badge(
            student_id: str, event: str, metadata: dict | None = Body(None)
        ):
            if event in {e.value for e in BadgeEvent}:
                try:
                    metadata = parse_metadata(event, metadata)
                except ValidationError as e:
                    raise HTTPException(status_code=400, detail=str(e))
            result = self.badges.evaluate(student_id, event, metadata)
            award = result.award
            return {
                "status": result.status,
                "award": award.to_dict() if award is not None else None,
            }

        @router.get("/students/{student_id}/stats")
        def student_stats(student_id: str):
            return self.statistics.student_stats(student_id)

        @router.get("/students/{student_id}/history")
        def session_history(
            student_id: str, limit: int = Query(20, ge=1, le=HISTORY_LIMIT)
        ):
            return self.statistics.session_history(student_id, limit)

        self.app.include_router(router)


def create_app() -> FastAPI:
    return CoachAPI(
        os.environ.get("DB_PATH"),
        os.environ.get("SETTINGS_PATH", "settings.yaml"),
    ).app


if __name__ == "__main__":
    import uvicorn

    settings = YamlConfig(os.environ.get("SETTINGS_PATH", "settings.yaml")).load()
    logging.basicConfig(level=settings["log_level"])
    uvicorn.run(create_app())
