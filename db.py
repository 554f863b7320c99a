import sqlite3
import os
import datetime
import json
from contextlib import contextmanager
from typing import List, Tuple, Optional

from models import ActivityRecord, Badge, BadgeAward


_TS_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def to_db_timestamp(ts: datetime.datetime) -> str:
    """Serialize ``ts`` as naive local time so text order is time order."""
    if ts.tzinfo is not None:
        ts = ts.astimezone().replace(tzinfo=None)
    return ts.strftime(_TS_FORMAT)


def from_db_timestamp(value: str) -> datetime.datetime:
    return datetime.datetime.strptime(value, _TS_FORMAT)


class DuplicateAwardError(ValueError):
    """Raised when a badge award already exists for the user."""


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "activity_records": (
            """CREATE TABLE activity_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    student_id TEXT NOT NULL,
                    session_id TEXT NOT NULL,
                    saved_at TEXT NOT NULL,
                    payload TEXT NOT NULL DEFAULT '{}',
                    UNIQUE (student_id, session_id)
                );""",
            ["id", "student_id", "session_id", "saved_at", "payload"],
        ),
        "badges": (
            """CREATE TABLE badges (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    key TEXT NOT NULL UNIQUE,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    criteria TEXT NOT NULL DEFAULT '{}'
                );""",
            ["id", "key", "title", "description", "criteria"],
        ),
        "badge_awards": (
            """CREATE TABLE badge_awards (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    badge_id INTEGER NOT NULL,
                    awarded_at TEXT NOT NULL,
                    UNIQUE (user_id, badge_id),
                    FOREIGN KEY(badge_id) REFERENCES badges(id) ON DELETE CASCADE
                );""",
            ["id", "user_id", "badge_id", "awarded_at"],
        ),
    }

    # column sets each table must enforce as unique
    _UNIQUE_KEYS = {
        "activity_records": [("student_id", "session_id")],
        "badges": [("key",)],
        "badge_awards": [("user_id", "badge_id")],
    }

    _BADGE_CATALOG = [
        (
            "session_completed",
            "First Session",
            "Complete your first workout session.",
            {"event": "session_completed"},
        ),
        (
            "perfect_session",
            "Perfect Session",
            "Complete every exercise of a session with full reps.",
            {"allExercisesCompleted": True},
        ),
        (
            "streak_7_days",
            "Week Warrior",
            "Complete sessions on at least half of the last 7 days.",
            {"days": 7},
        ),
        (
            "streak_30_days",
            "Monthly Machine",
            "Complete sessions on at least half of the last 30 days.",
            {"days": 30},
        ),
        (
            "personal_record",
            "Personal Record",
            "Lift a new personal best.",
            {"isPersonalRecord": True},
        ),
        (
            "total_volume_milestone",
            "Volume Milestone",
            "Reach a total training volume milestone.",
            {"volumeMilestone": True},
        ),
    ]

    def __init__(self, db_path: str | None = None) -> None:
        self._db_path = db_path or os.environ.get("DB_PATH", "coach.db")
        self._ensure_schema()
        self._ensure_indexes()
        self._import_badge_catalog()

    @property
    def db_path(self) -> str:
        return self._db_path

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path, timeout=10)
        connection.execute("PRAGMA foreign_keys=on;")
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            conn.execute("PRAGMA foreign_keys=off;")
            conn.execute("PRAGMA legacy_alter_table=on;")
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)
            conn.execute("PRAGMA legacy_alter_table=off;")
            conn.execute("PRAGMA foreign_keys=on;")

    def _ensure_indexes(self) -> None:
        with self._connection() as conn:
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_activity_student_saved "
                "ON activity_records (student_id, saved_at);"
            )

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        required = {frozenset(k) for k in self._UNIQUE_KEYS.get(table, [])}
        if existing_cols == columns and required <= self._unique_keys(conn, table):
            return

        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)

        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            missing = [c for c in columns if c not in existing_cols]
            if missing:
                def default_val(col: str) -> str:
                    if col in ("payload", "criteria"):
                        return "'{}'"
                    if col == "description":
                        return "''"
                    if col in ("saved_at", "awarded_at"):
                        return f"'{to_db_timestamp(datetime.datetime.now())}'"
                    return "NULL"

                defaults = ", ".join(default_val(c) for c in missing)
                conn.execute(
                    f"INSERT OR IGNORE INTO {table} ({cols}, {', '.join(missing)}) SELECT {cols}, {defaults} FROM {table}_old;"
                )
            else:
                conn.execute(
                    f"INSERT OR IGNORE INTO {table} ({cols}) SELECT {cols} FROM {table}_old;"
                )
        conn.execute(f"DROP TABLE {table}_old;")

    @staticmethod
    def _unique_keys(conn: sqlite3.Connection, table: str) -> set:
        keys = set()
        for _, name, unique, *_ in conn.execute(f"PRAGMA index_list({table});").fetchall():
            if unique:
                info = conn.execute(f"PRAGMA index_info('{name}');").fetchall()
                keys.add(frozenset(row[2] for row in info))
        return keys

    def _import_badge_catalog(self) -> None:
        with self._connection() as conn:
            for key, title, description, criteria in self._BADGE_CATALOG:
                conn.execute(
                    "INSERT OR IGNORE INTO badges (key, title, description, criteria) "
                    "VALUES (?, ?, ?, ?);",
                    (key, title, description, json.dumps(criteria)),
                )


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.lastrowid

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()


class ActivityRecordRepository(BaseRepository):
    """Repository for saved session progress, one row per student and session."""

    _COLUMNS = "id, student_id, session_id, saved_at, payload"
    # matches a JSON boolean only, not the integer 1
    _COMPLETED = "json_type(payload, '$.completed') = 'true'"

    @staticmethod
    def _row_to_record(row: Tuple) -> ActivityRecord:
        rid, student_id, session_id, saved_at, payload = row
        data = json.loads(payload) if payload else {}
        if not isinstance(data, dict):
            raise ValueError(f"malformed payload for activity record {rid}")
        return ActivityRecord(
            int(rid), student_id, session_id, from_db_timestamp(saved_at), data
        )

    @staticmethod
    def _time_filter(
        since: Optional[datetime.datetime], until: Optional[datetime.datetime]
    ) -> Tuple[str, list]:
        clauses = ""
        params: list = []
        if since is not None:
            clauses += " AND saved_at >= ?"
            params.append(to_db_timestamp(since))
        if until is not None:
            clauses += " AND saved_at < ?"
            params.append(to_db_timestamp(until))
        return clauses, params

    def save(
        self,
        student_id: str,
        session_id: str,
        payload: dict,
        saved_at: Optional[datetime.datetime] = None,
    ) -> int:
        """Insert or update the record for ``student_id`` and ``session_id``."""
        if not isinstance(payload, dict):
            raise ValueError("payload must be a JSON object")
        ts = to_db_timestamp(saved_at or datetime.datetime.now())
        with self._connection() as conn:
            conn.execute(
                "INSERT INTO activity_records (student_id, session_id, saved_at, payload) "
                "VALUES (?, ?, ?, ?) "
                "ON CONFLICT(student_id, session_id) DO UPDATE SET "
                "saved_at=excluded.saved_at, payload=excluded.payload;",
                (student_id, session_id, ts, json.dumps(payload)),
            )
            row = conn.execute(
                "SELECT id FROM activity_records WHERE student_id = ? AND session_id = ?;",
                (student_id, session_id),
            ).fetchone()
        return int(row[0])

    def fetch(self, student_id: str, session_id: str) -> ActivityRecord | None:
        rows = self.fetch_all(
            f"SELECT {self._COLUMNS} FROM activity_records "
            "WHERE student_id = ? AND session_id = ?;",
            (student_id, session_id),
        )
        return self._row_to_record(rows[0]) if rows else None

    def fetch_for_student(
        self,
        student_id: str,
        since: Optional[datetime.datetime] = None,
        until: Optional[datetime.datetime] = None,
    ) -> list[ActivityRecord]:
        clauses, params = self._time_filter(since, until)
        rows = self.fetch_all(
            f"SELECT {self._COLUMNS} FROM activity_records "
            f"WHERE student_id = ?{clauses} ORDER BY saved_at, id;",
            (student_id, *params),
        )
        return [self._row_to_record(r) for r in rows]

    def fetch_latest(self, student_id: str, limit: int = 1) -> list[ActivityRecord]:
        rows = self.fetch_all(
            f"SELECT {self._COLUMNS} FROM activity_records "
            "WHERE student_id = ? ORDER BY saved_at DESC, id DESC LIMIT ?;",
            (student_id, limit),
        )
        return [self._row_to_record(r) for r in rows]

    def count_distinct_completed(
        self,
        student_id: str,
        since: Optional[datetime.datetime] = None,
        until: Optional[datetime.datetime] = None,
    ) -> int:
        clauses, params = self._time_filter(since, until)
        rows = self.fetch_all(
            "SELECT COUNT(DISTINCT session_id) FROM activity_records "
            f"WHERE student_id = ? AND {self._COMPLETED}{clauses};",
            (student_id, *params),
        )
        return int(rows[0][0] or 0)

    def has_completed_between(
        self, student_id: str, start: datetime.datetime, end: datetime.datetime
    ) -> bool:
        """Return whether a completed record was saved in ``[start, end)``."""
        rows = self.fetch_all(
            "SELECT 1 FROM activity_records "
            f"WHERE student_id = ? AND {self._COMPLETED} "
            "AND saved_at >= ? AND saved_at < ? LIMIT 1;",
            (student_id, to_db_timestamp(start), to_db_timestamp(end)),
        )
        return bool(rows)

    def delete(self, student_id: str, session_id: str) -> None:
        rows = self.fetch_all(
            "SELECT id FROM activity_records WHERE student_id = ? AND session_id = ?;",
            (student_id, session_id),
        )
        if not rows:
            raise ValueError("activity record not found")
        self.execute("DELETE FROM activity_records WHERE id = ?;", (rows[0][0],))


class BadgeRepository(BaseRepository):
    """Repository for the seeded badge catalog."""

    @staticmethod
    def _row_to_badge(row: Tuple) -> Badge:
        bid, key, title, description, criteria = row
        return Badge(int(bid), key, title, description, json.loads(criteria or "{}"))

    def fetch_by_key(self, key: str) -> Badge | None:
        rows = super().fetch_all(
            "SELECT id, key, title, description, criteria FROM badges WHERE key = ?;",
            (key,),
        )
        return self._row_to_badge(rows[0]) if rows else None

    def fetch_all(self) -> list[Badge]:
        rows = super().fetch_all(
            "SELECT id, key, title, description, criteria FROM badges ORDER BY id;"
        )
        return [self._row_to_badge(r) for r in rows]


class BadgeAwardRepository(BaseRepository):
    """Repository for badges granted to users."""

    _SELECT = (
        "SELECT a.id, a.user_id, a.badge_id, a.awarded_at, "
        "b.id, b.key, b.title, b.description, b.criteria "
        "FROM badge_awards a JOIN badges b ON b.id = a.badge_id"
    )

    @staticmethod
    def _row_to_award(row: Tuple) -> BadgeAward:
        aid, user_id, badge_id, awarded_at, *badge_row = row
        return BadgeAward(
            int(aid),
            user_id,
            int(badge_id),
            from_db_timestamp(awarded_at),
            BadgeRepository._row_to_badge(tuple(badge_row)),
        )

    def fetch(self, user_id: str, badge_id: int) -> BadgeAward | None:
        rows = self.fetch_all(
            f"{self._SELECT} WHERE a.user_id = ? AND a.badge_id = ?;",
            (user_id, badge_id),
        )
        return self._row_to_award(rows[0]) if rows else None

    def add(
        self,
        user_id: str,
        badge_id: int,
        awarded_at: Optional[datetime.datetime] = None,
    ) -> BadgeAward:
        """Persist a new award, failing if the user already holds the badge."""
        ts = to_db_timestamp(awarded_at or datetime.datetime.now())
        try:
            self.execute(
                "INSERT INTO badge_awards (user_id, badge_id, awarded_at) VALUES (?, ?, ?);",
                (user_id, badge_id, ts),
            )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise DuplicateAwardError(
                    f"badge {badge_id} already awarded to {user_id}"
                ) from e
            raise ValueError("badge not found") from e
        return self.fetch(user_id, badge_id)

    def fetch_for_user(self, user_id: str) -> list[BadgeAward]:
        rows = self.fetch_all(
            f"{self._SELECT} WHERE a.user_id = ? ORDER BY a.awarded_at DESC, a.id DESC;",
            (user_id,),
        )
        return [self._row_to_award(r) for r in rows]

    def count(self, user_id: str | None = None) -> int:
        if user_id is None:
            rows = self.fetch_all("SELECT COUNT(*) FROM badge_awards;")
        else:
            rows = self.fetch_all(
                "SELECT COUNT(*) FROM badge_awards WHERE user_id = ?;", (user_id,)
            )
        return int(rows[0][0])
