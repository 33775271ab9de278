"""
Repository pattern for data access.

The store of record for quota counters, streaks, achievement unlocks and
learning activity. Every mutation that can race with another request for
the same user runs as a single SQLite statement or inside a
BEGIN IMMEDIATE transaction; application code never read-modify-writes
a counter.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Callable, Iterator, List, Optional, Set, Tuple, TypeVar

import structlog

from explain_engage.core.errors import InvalidState, StoreUnavailable
from .db import DEFAULT_DB_PATH, get_connection
from .models import (
    Achievement,
    AchievementCategory,
    AchievementUnlock,
    LearningStats,
    PeriodKind,
    SimplicityLevel,
    StreakRecord,
    UsagePeriodCounter,
    parse_requirement,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SCHEMA = """
    CREATE TABLE IF NOT EXISTS usage_counter (
        user_id TEXT NOT NULL,
        period_kind TEXT NOT NULL,
        period_key TEXT NOT NULL,
        count INTEGER NOT NULL DEFAULT 0 CHECK (count >= 0),
        PRIMARY KEY (user_id, period_kind)
    );

    CREATE TABLE IF NOT EXISTS streak (
        user_id TEXT PRIMARY KEY,
        current_streak INTEGER NOT NULL DEFAULT 0,
        longest_streak INTEGER NOT NULL DEFAULT 0,
        last_activity_date TEXT
    );

    CREATE TABLE IF NOT EXISTS achievement (
        id TEXT PRIMARY KEY,
        code TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        category TEXT NOT NULL,
        requirement TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS achievement_unlock (
        user_id TEXT NOT NULL,
        achievement_id TEXT NOT NULL REFERENCES achievement (id),
        unlocked_at TEXT NOT NULL,
        PRIMARY KEY (user_id, achievement_id)
    );

    CREATE TABLE IF NOT EXISTS daily_activity (
        user_id TEXT NOT NULL,
        activity_date TEXT NOT NULL,
        questions_asked INTEGER NOT NULL DEFAULT 0,
        follow_ups_used INTEGER NOT NULL DEFAULT 0,
        voice_inputs_used INTEGER NOT NULL DEFAULT 0,
        explanations_shared INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (user_id, activity_date)
    );

    CREATE TABLE IF NOT EXISTS activity_topic (
        user_id TEXT NOT NULL,
        topic TEXT NOT NULL,
        first_seen TEXT NOT NULL,
        PRIMARY KEY (user_id, topic)
    );

    CREATE TABLE IF NOT EXISTS activity_level (
        user_id TEXT NOT NULL,
        level TEXT NOT NULL,
        PRIMARY KEY (user_id, level)
    );

    CREATE TABLE IF NOT EXISTS analogy_rating (
        user_id TEXT NOT NULL,
        explanation_id TEXT NOT NULL,
        rating TEXT NOT NULL CHECK (rating IN ('up', 'down')),
        rated_at TEXT NOT NULL,
        PRIMARY KEY (user_id, explanation_id)
    );
"""

TABLES = (
    "usage_counter",
    "streak",
    "achievement",
    "achievement_unlock",
    "daily_activity",
    "activity_topic",
    "activity_level",
    "analogy_rating",
)


class EngagementRepository:
    """SQLite-backed store for per-user engagement state.

    Opens one connection per operation. Every sqlite3 failure surfaces as
    StoreUnavailable, except the uniqueness violation on unlock insert,
    which is the expected "already unlocked" outcome.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    @contextmanager
    def _connection(self, operation: str) -> Iterator[sqlite3.Connection]:
        try:
            conn = get_connection(self.db_path)
        except sqlite3.Error as e:
            raise StoreUnavailable(operation, e) from e
        try:
            yield conn
        except sqlite3.Error as e:
            raise StoreUnavailable(operation, e) from e
        finally:
            conn.close()

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Write transaction that takes the database write lock up front."""
        with self._connection(operation) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def initialize_schema(self) -> None:
        """Create all engagement tables if they don't exist."""
        with self._connection("initialize_schema") as conn:
            conn.executescript(SCHEMA)
            conn.commit()

    # Usage counters

    def get_counter(self, user_id: str, kind: PeriodKind) -> Optional[UsagePeriodCounter]:
        """Return the stored counter row, whatever period it belongs to."""
        with self._connection("get_counter") as conn:
            row = conn.execute(
                "SELECT period_key, count FROM usage_counter WHERE user_id = ? AND period_kind = ?",
                (user_id, kind.value),
            ).fetchone()
        if row is None:
            return None
        return UsagePeriodCounter(
            user_id=user_id,
            period_kind=kind,
            period_key=row[0],
            count=row[1],
        )

    def current_count(self, user_id: str, kind: PeriodKind, period_key: str) -> int:
        """Count for the given period; a missing or stale row reads as zero."""
        counter = self.get_counter(user_id, kind)
        if counter is None or counter.period_key != period_key:
            return 0
        return counter.count

    def increment_counter(self, user_id: str, kind: PeriodKind, period_key: str) -> int:
        """Atomically add one question to the period and return the new count.

        A row holding an older period key restarts at 1.
        """
        with self._transaction("increment_counter") as conn:
            conn.execute(
                """
                INSERT INTO usage_counter (user_id, period_kind, period_key, count)
                VALUES (?, ?, ?, 1)
                ON CONFLICT (user_id, period_kind) DO UPDATE SET
                    count = CASE
                        WHEN usage_counter.period_key = excluded.period_key
                        THEN usage_counter.count + 1
                        ELSE 1
                    END,
                    period_key = excluded.period_key
                """,
                (user_id, kind.value, period_key),
            )
            row = conn.execute(
                "SELECT count FROM usage_counter WHERE user_id = ? AND period_kind = ?",
                (user_id, kind.value),
            ).fetchone()
        return row[0]

    # Streaks

    def get_streak(self, user_id: str) -> Optional[StreakRecord]:
        with self._connection("get_streak") as conn:
            return self._fetch_streak(conn, user_id)

    def upsert_streak(self, record: StreakRecord) -> None:
        """Write a streak record, clamping longest_streak up to current_streak."""
        with self._transaction("upsert_streak") as conn:
            self._write_streak(conn, record)

    def apply_streak_update(
        self,
        user_id: str,
        update_fn: Callable[[Optional[StreakRecord]], Tuple[Optional[StreakRecord], T]],
    ) -> T:
        """Read, decide and conditionally write a streak in one transaction.

        update_fn receives the current record (or None) and returns the
        record to write (or None to leave the row untouched) along with a
        result that is handed back to the caller. Two concurrent calls for
        the same user serialize on the write lock, so the second one sees
        the first one's write.
        """
        with self._transaction("apply_streak_update") as conn:
            existing = self._fetch_streak(conn, user_id)
            new_record, result = update_fn(existing)
            if new_record is not None:
                self._write_streak(conn, new_record)
        return result

    def _fetch_streak(self, conn: sqlite3.Connection, user_id: str) -> Optional[StreakRecord]:
        row = conn.execute(
            "SELECT current_streak, longest_streak, last_activity_date FROM streak WHERE user_id = ?",
            (user_id,),
        ).fetchone()
        if row is None:
            return None

        current_streak, longest_streak, last_activity = row
        if current_streak < 0 or longest_streak < 0:
            raise InvalidState(f"Negative streak values stored for user {user_id}")
        if longest_streak < current_streak:
            logger.warning(
                "streak_record_healed",
                user_id=user_id,
                current_streak=current_streak,
                longest_streak=longest_streak,
            )
            longest_streak = current_streak

        return StreakRecord(
            user_id=user_id,
            current_streak=current_streak,
            longest_streak=longest_streak,
            last_activity_date=date.fromisoformat(last_activity) if last_activity else None,
        )

    def _write_streak(self, conn: sqlite3.Connection, record: StreakRecord) -> None:
        conn.execute(
            """
            INSERT INTO streak (user_id, current_streak, longest_streak, last_activity_date)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (user_id) DO UPDATE SET
                current_streak = excluded.current_streak,
                longest_streak = excluded.longest_streak,
                last_activity_date = excluded.last_activity_date
            """,
            (
                record.user_id,
                record.current_streak,
                max(record.longest_streak, record.current_streak),
                record.last_activity_date.isoformat() if record.last_activity_date else None,
            ),
        )

    # Achievements

    def upsert_achievement(self, achievement: Achievement) -> None:
        """Insert or replace an achievement definition."""
        with self._transaction("upsert_achievement") as conn:
            conn.execute(
                """
                INSERT INTO achievement (id, code, name, description, category, requirement)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    code = excluded.code,
                    name = excluded.name,
                    description = excluded.description,
                    category = excluded.category,
                    requirement = excluded.requirement
                """,
                (
                    achievement.id,
                    achievement.code,
                    achievement.name,
                    achievement.description,
                    achievement.category.value,
                    json.dumps(achievement.requirement.to_dict()),
                ),
            )

    def list_achievements(self, category: Optional[AchievementCategory] = None) -> List[Achievement]:
        """List achievement definitions in catalogue order."""
        query = "SELECT id, code, name, description, category, requirement FROM achievement"
        params = []
        if category is not None:
            query += " WHERE category = ?"
            params.append(category.value)
        query += " ORDER BY rowid"

        with self._connection("list_achievements") as conn:
            rows = conn.execute(query, params).fetchall()

        return [
            Achievement(
                id=row[0],
                code=row[1],
                name=row[2],
                description=row[3],
                category=AchievementCategory(row[4]),
                requirement=parse_requirement(json.loads(row[5])),
            )
            for row in rows
        ]

    def list_achievements_by_category(self, category: AchievementCategory) -> List[Achievement]:
        return self.list_achievements(category)

    def insert_unlock_if_absent(
        self,
        user_id: str,
        achievement_id: str,
        unlocked_at: Optional[datetime] = None,
    ) -> bool:
        """Try to record an unlock; the primary key rejects duplicates.

        Returns:
            True if this call created the unlock, False if it already existed
        """
        unlocked_at = unlocked_at or datetime.now(timezone.utc)
        with self._connection("insert_unlock_if_absent") as conn:
            try:
                conn.execute(
                    "INSERT INTO achievement_unlock (user_id, achievement_id, unlocked_at) VALUES (?, ?, ?)",
                    (user_id, achievement_id, unlocked_at.isoformat()),
                )
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                if "UNIQUE" not in str(e).upper():
                    raise InvalidState(f"Cannot unlock unknown achievement {achievement_id}") from e
                logger.debug("achievement_already_unlocked", user_id=user_id, achievement_id=achievement_id)
                return False
        return True

    def list_unlocks(self, user_id: str) -> List[AchievementUnlock]:
        """Unlocks for a user, newest first."""
        with self._connection("list_unlocks") as conn:
            rows = conn.execute(
                """
                SELECT achievement_id, unlocked_at FROM achievement_unlock
                WHERE user_id = ?
                ORDER BY unlocked_at DESC, rowid DESC
                """,
                (user_id,),
            ).fetchall()
        return [
            AchievementUnlock(
                user_id=user_id,
                achievement_id=row[0],
                unlocked_at=datetime.fromisoformat(row[1]),
            )
            for row in rows
        ]

    # Learning activity

    def record_question_activity(
        self,
        user_id: str,
        day: date,
        topic: Optional[str] = None,
        level: Optional[SimplicityLevel] = None,
        is_follow_up: bool = False,
        is_voice_input: bool = False,
    ) -> None:
        """Add one answered question to the user's activity for day."""
        with self._transaction("record_question_activity") as conn:
            conn.execute(
                """
                INSERT INTO daily_activity
                    (user_id, activity_date, questions_asked, follow_ups_used, voice_inputs_used)
                VALUES (?, ?, 1, ?, ?)
                ON CONFLICT (user_id, activity_date) DO UPDATE SET
                    questions_asked = daily_activity.questions_asked + 1,
                    follow_ups_used = daily_activity.follow_ups_used + excluded.follow_ups_used,
                    voice_inputs_used = daily_activity.voice_inputs_used + excluded.voice_inputs_used
                """,
                (user_id, day.isoformat(), int(is_follow_up), int(is_voice_input)),
            )
            if topic:
                conn.execute(
                    "INSERT OR IGNORE INTO activity_topic (user_id, topic, first_seen) VALUES (?, ?, ?)",
                    (user_id, topic.strip().lower(), day.isoformat()),
                )
            if level is not None:
                conn.execute(
                    "INSERT OR IGNORE INTO activity_level (user_id, level) VALUES (?, ?)",
                    (user_id, level.value),
                )

    def record_share(self, user_id: str, day: date) -> None:
        """Count one shared explanation for day."""
        with self._transaction("record_share") as conn:
            conn.execute(
                """
                INSERT INTO daily_activity (user_id, activity_date, explanations_shared)
                VALUES (?, ?, 1)
                ON CONFLICT (user_id, activity_date) DO UPDATE SET
                    explanations_shared = daily_activity.explanations_shared + 1
                """,
                (user_id, day.isoformat()),
            )

    def record_analogy_rating(
        self,
        user_id: str,
        explanation_id: str,
        rating: str,
        rated_at: Optional[datetime] = None,
    ) -> None:
        """Store a thumbs up/down for an explanation, replacing any earlier rating."""
        if rating not in ("up", "down"):
            raise ValueError(f"rating must be 'up' or 'down', got {rating!r}")
        rated_at = rated_at or datetime.now(timezone.utc)
        with self._transaction("record_analogy_rating") as conn:
            conn.execute(
                """
                INSERT INTO analogy_rating (user_id, explanation_id, rating, rated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (user_id, explanation_id) DO UPDATE SET
                    rating = excluded.rating,
                    rated_at = excluded.rated_at
                """,
                (user_id, explanation_id, rating, rated_at.isoformat()),
            )

    def get_activity_dates(self, user_id: str, start: date, end: date) -> Set[date]:
        """Days in [start, end] on which the user asked at least one question."""
        with self._connection("get_activity_dates") as conn:
            rows = conn.execute(
                """
                SELECT activity_date FROM daily_activity
                WHERE user_id = ? AND activity_date BETWEEN ? AND ? AND questions_asked > 0
                """,
                (user_id, start.isoformat(), end.isoformat()),
            ).fetchall()
        return {date.fromisoformat(row[0]) for row in rows}

    def get_learning_stats(self, user_id: str) -> LearningStats:
        """Aggregate lifetime stats for achievement evaluation."""
        with self._connection("get_learning_stats") as conn:
            totals = conn.execute(
                """
                SELECT
                    COALESCE(SUM(questions_asked), 0),
                    COALESCE(SUM(follow_ups_used), 0),
                    COALESCE(SUM(voice_inputs_used), 0),
                    COALESCE(SUM(explanations_shared), 0)
                FROM daily_activity
                WHERE user_id = ?
                """,
                (user_id,),
            ).fetchone()
            unique_topics = conn.execute(
                "SELECT COUNT(*) FROM activity_topic WHERE user_id = ?", (user_id,)
            ).fetchone()[0]
            analogy_likes = conn.execute(
                "SELECT COUNT(*) FROM analogy_rating WHERE user_id = ? AND rating = 'up'", (user_id,)
            ).fetchone()[0]
            levels_used = {
                row[0]
                for row in conn.execute("SELECT level FROM activity_level WHERE user_id = ?", (user_id,))
            }
            streak = self._fetch_streak(conn, user_id)

        return LearningStats(
            total_questions=totals[0],
            unique_topics=unique_topics,
            follow_ups_used=totals[1],
            shares_count=totals[3],
            analogy_likes=analogy_likes,
            voice_used=totals[2] > 0,
            all_levels_used=levels_used >= {level.value for level in SimplicityLevel},
            current_streak=streak.current_streak if streak else 0,
            longest_streak=streak.longest_streak if streak else 0,
        )


# Global repository instance
_default_repository: Optional[EngagementRepository] = None


def get_repository(db_path: str = DEFAULT_DB_PATH) -> EngagementRepository:
    """Get the shared repository instance, creating it on first use.

    A different db_path replaces the shared instance.
    """
    global _default_repository
    if _default_repository is None or _default_repository.db_path != db_path:
        _default_repository = EngagementRepository(db_path)
    return _default_repository
