import datetime
from dataclasses import dataclass, field, asdict


@dataclass
class ActivityRecord:
    """One saved snapshot of a student's progress on a workout session."""

    id: int
    student_id: str
    session_id: str
    saved_at: datetime.datetime
    payload: dict = field(default_factory=dict)

    @property
    def completed(self) -> bool:
        return self.payload.get("completed") is True

    @property
    def sets(self) -> list:
        sets = self.payload.get("sets")
        return sets if isinstance(sets, list) else []

    def to_dict(self) -> dict:
        data = asdict(self)
        data["saved_at"] = self.saved_at.isoformat()
        return data


@dataclass(frozen=True)
class Badge:
    id: int
    key: str
    title: str
    description: str
    criteria: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class BadgeAward:
    """Persisted fact that a student earned a badge."""

    id: int
    user_id: str
    badge_id: int
    awarded_at: datetime.datetime
    badge: Badge | None = None

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "badge_id": self.badge_id,
            "awarded_at": self.awarded_at.isoformat(),
        }
        if self.badge is not None:
            data["badge"] = self.badge.to_dict()
        return data
