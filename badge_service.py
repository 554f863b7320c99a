"""Badge award evaluation.

Badges are granted at most once per student. Evaluation is best effort: a
failure while consulting the store yields :class:`Unavailable` instead of an
exception so callers such as progress saving never fail because of badges.
"""

import datetime
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, StrictBool

from db import (
    ActivityRecordRepository,
    BadgeRepository,
    BadgeAwardRepository,
    DuplicateAwardError,
)
from metrics_service import ActivityMetricsService
from models import Badge, BadgeAward

logger = logging.getLogger(__name__)


class BadgeEvent(str, Enum):
    SESSION_COMPLETED = "session_completed"
    PERFECT_SESSION = "perfect_session"
    STREAK_7_DAYS = "streak_7_days"
    STREAK_30_DAYS = "streak_30_days"
    PERSONAL_RECORD = "personal_record"
    TOTAL_VOLUME_MILESTONE = "total_volume_milestone"


class _Metadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class PerfectSessionMetadata(_Metadata):
    all_exercises_completed: StrictBool = Field(False, alias="allExercisesCompleted")


class PersonalRecordMetadata(_Metadata):
    is_personal_record: StrictBool = Field(False, alias="isPersonalRecord")


class VolumeMilestoneMetadata(_Metadata):
    volume_milestone: StrictBool = Field(False, alias="volumeMilestone")


EventMetadata = PerfectSessionMetadata | PersonalRecordMetadata | VolumeMilestoneMetadata

METADATA_TYPES: dict[BadgeEvent, type[_Metadata]] = {
    BadgeEvent.PERFECT_SESSION: PerfectSessionMetadata,
    BadgeEvent.PERSONAL_RECORD: PersonalRecordMetadata,
    BadgeEvent.TOTAL_VOLUME_MILESTONE: VolumeMilestoneMetadata,
}

# window length in days for the session-volume badges
STREAK_WINDOWS: dict[BadgeEvent, int] = {
    BadgeEvent.STREAK_7_DAYS: 7,
    BadgeEvent.STREAK_30_DAYS: 30,
}

COMPLETION_EVENTS = (
    BadgeEvent.SESSION_COMPLETED,
    BadgeEvent.STREAK_7_DAYS,
    BadgeEvent.STREAK_30_DAYS,
)


def parse_metadata(event: BadgeEvent | str, data: Mapping | None) -> EventMetadata | None:
    """Build the metadata variant ``event`` expects from a plain mapping.

    Raises ``ValueError`` for an unknown event and pydantic's
    ``ValidationError`` for malformed fields.
    """
    model = METADATA_TYPES.get(BadgeEvent(event))
    if model is None:
        return None
    return model.model_validate(dict(data or {}))


@dataclass(frozen=True)
class Awarded:
    award: BadgeAward
    created: bool = False
    status = "awarded"


@dataclass(frozen=True)
class NotEarned:
    reason: str = ""
    status = "not_earned"

    @property
    def award(self) -> None:
        return None


@dataclass(frozen=True)
class Unavailable:
    reason: str
    status = "unavailable"

    @property
    def award(self) -> None:
        return None


AwardResult = Awarded | NotEarned | Unavailable


class BadgeService:
    """Grant catalog badges to students based on activity events."""

    def __init__(
        self,
        badge_repo: BadgeRepository,
        award_repo: BadgeAwardRepository,
        record_repo: ActivityRecordRepository,
        metrics: ActivityMetricsService | None = None,
    ) -> None:
        self.badges = badge_repo
        self.awards = award_repo
        self.records = record_repo
        self.metrics = metrics or ActivityMetricsService(record_repo)

    def all_badges(self) -> list[Badge]:
        return self.badges.fetch_all()

    def student_badges(self, student_id: str) -> list[BadgeAward]:
        return self.awards.fetch_for_user(student_id)

    def badge_progress(
        self, student_id: str, today: datetime.date | None = None
    ) -> dict:
        return self.metrics.weekly_badge_progress(student_id, today)

    def evaluate(
        self,
        student_id: str,
        event: BadgeEvent | str,
        metadata: EventMetadata | Mapping | None = None,
        now: datetime.datetime | None = None,
    ) -> AwardResult:
        """Award the badge for ``event`` if the student has earned it.

        An existing award is returned unchanged, so repeated calls are safe.
        """
        try:
            event = BadgeEvent(event)
        except ValueError:
            logger.debug("ignoring unknown badge event %r", event)
            return NotEarned(f"unknown event {event!r}")
        try:
            badge = self.badges.fetch_by_key(event.value)
            if badge is None:
                return NotEarned(f"no badge registered for {event.value}")
            existing = self.awards.fetch(student_id, badge.id)
            if existing is not None:
                return Awarded(existing)
            if isinstance(metadata, Mapping):
                metadata = parse_metadata(event, metadata)
            if not self._criteria_met(student_id, event, metadata, now):
                return NotEarned("criteria not met")
            try:
                award = self.awards.add(student_id, badge.id)
            except DuplicateAwardError:
                # a concurrent call inserted first
                award = self.awards.fetch(student_id, badge.id)
                if award is None:
                    raise
                return Awarded(award)
            logger.info("awarded badge %s to student %s", event.value, student_id)
            return Awarded(award, created=True)
        except Exception as e:
            logger.warning(
                "badge evaluation failed for student %s, event %s: %s",
                student_id,
                event.value,
                e,
                exc_info=True,
            )
            return Unavailable(str(e))

    def award_if_earned(
        self,
        student_id: str,
        event: BadgeEvent | str,
        metadata: EventMetadata | Mapping | None = None,
        now: datetime.datetime | None = None,
    ) -> BadgeAward | None:
        return self.evaluate(student_id, event, metadata, now).award

    def award_completion_badges(
        self, student_id: str, now: datetime.datetime | None = None
    ) -> list[BadgeAward]:
        """Evaluate the badges tied to finishing a session; return new awards."""
        created = []
        for event in COMPLETION_EVENTS:
            result = self.evaluate(student_id, event, now=now)
            if isinstance(result, Awarded) and result.created:
                created.append(result.award)
        return created

    def _criteria_met(
        self,
        student_id: str,
        event: BadgeEvent,
        metadata: EventMetadata | None,
        now: datetime.datetime | None,
    ) -> bool:
        if event is BadgeEvent.SESSION_COMPLETED:
            return True
        if event is BadgeEvent.PERFECT_SESSION:
            return (
                isinstance(metadata, PerfectSessionMetadata)
                and metadata.all_exercises_completed is True
            )
        if event in STREAK_WINDOWS:
            return self._window_met(student_id, STREAK_WINDOWS[event], now)
        if event is BadgeEvent.PERSONAL_RECORD:
            return (
                isinstance(metadata, PersonalRecordMetadata)
                and metadata.is_personal_record is True
            )
        if event is BadgeEvent.TOTAL_VOLUME_MILESTONE:
            return (
                isinstance(metadata, VolumeMilestoneMetadata)
                and metadata.volume_milestone is True
            )
        return False

    def _window_met(
        self, student_id: str, days: int, now: datetime.datetime | None
    ) -> bool:
        # distinct completed sessions in the window against half its length,
        # so 7 days needs 4 sessions and 30 days needs 15
        since = (now or datetime.datetime.now()) - datetime.timedelta(days=days)
        count = self.records.count_distinct_completed(student_id, since=since)
        return count >= days / 2
