from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Sequence

from hanzi_quest.config import DB_PATH, SessionDefaults
from hanzi_quest.errors import NotFoundError
from hanzi_quest.scheduler.mastery import (
    STATE_LEARNING,
    STATE_MASTERED,
    apply_completion,
    derive_level,
    flashcard_mastered,
    next_streak,
    progress_from_row,
)

UTC = timezone.utc

STARTER_CHARACTERS = [
    ("的", "de", "possessive particle; of"),
    ("一", "yī", "one"),
    ("是", "shì", "to be"),
    ("不", "bù", "not; no"),
    ("了", "le", "completed action marker"),
    ("人", "rén", "person"),
    ("我", "wǒ", "I; me"),
    ("在", "zài", "at; in; to exist"),
    ("有", "yǒu", "to have"),
    ("他", "tā", "he; him"),
    ("这", "zhè", "this"),
    ("中", "zhōng", "middle; center"),
    ("大", "dà", "big"),
    ("来", "lái", "to come"),
    ("上", "shàng", "above; up"),
    ("国", "guó", "country"),
    ("个", "gè", "general measure word"),
    ("到", "dào", "to arrive"),
    ("说", "shuō", "to speak"),
    ("们", "men", "plural marker for people"),
    ("为", "wèi", "for; because of"),
    ("子", "zǐ", "child; son"),
    ("和", "hé", "and; with"),
    ("你", "nǐ", "you"),
    ("地", "dì", "earth; ground"),
    ("出", "chū", "to go out"),
    ("道", "dào", "way; road"),
    ("也", "yě", "also"),
    ("时", "shí", "time"),
    ("年", "nián", "year"),
]

DEFAULT_BADGES = [
    ("first_stroke", "First Stroke", "Practice your first character", "✍️", "practiced", 1),
    ("ten_mastered", "Scholar", "Master 10 characters", "📜", "mastered", 10),
    ("fifty_mastered", "Calligrapher", "Master 50 characters", "🖌️", "mastered", 50),
    ("three_day_streak", "On Fire", "Practice 3 days in a row", "🔥", "streak", 3),
    ("week_streak", "Dedicated", "Practice 7 days in a row", "🏮", "streak", 7),
]


class Database:
    def __init__(self, db_path: Path = DB_PATH) -> None:
        self.db_path = db_path

    @contextmanager
    def connect(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        schema_path = Path(__file__).with_name("schema.sql")
        with self.connect() as conn:
            conn.executescript(schema_path.read_text(encoding="utf-8"))
        self.seed_characters()
        self.seed_badges()

    def seed_characters(self, characters: Sequence[tuple[str, str, str]] = STARTER_CHARACTERS) -> None:
        with self.connect() as conn:
            conn.executemany(
                """
                INSERT OR IGNORE INTO characters (character, pinyin, meaning, frequency_rank)
                VALUES (?, ?, ?, ?)
                """,
                [(char, pinyin, meaning, rank) for rank, (char, pinyin, meaning) in enumerate(characters, start=1)],
            )

    def seed_badges(self) -> None:
        with self.connect() as conn:
            conn.executemany(
                """
                INSERT OR IGNORE INTO badges (id, name, description, icon_emoji, criteria_type, threshold)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                DEFAULT_BADGES,
            )

    def ensure_profile(self, user_id: str, username: str | None = None) -> None:
        with self.connect() as conn:
            _ensure_profile(conn, user_id, username)

    def get_profile(self, user_id: str) -> dict:
        with self.connect() as conn:
            _ensure_profile(conn, user_id, None)
            row = conn.execute("SELECT * FROM user_profile WHERE user_id = ?", (user_id,)).fetchone()
        return dict(row)

    def list_characters(self, limit: int | None = None) -> list[dict]:
        query = "SELECT id, character, pinyin, meaning, frequency_rank FROM characters ORDER BY frequency_rank ASC"
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (max(1, int(limit)),)
        with self.connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def get_characters_by_ids(self, character_ids: Sequence[int]) -> list[dict]:
        ids = [int(value) for value in character_ids]
        if not ids:
            return []
        placeholders = ",".join("?" for _ in ids)
        with self.connect() as conn:
            rows = conn.execute(
                f"SELECT id, character, pinyin, meaning, frequency_rank FROM characters WHERE id IN ({placeholders})",
                ids,
            ).fetchall()
        by_id = {int(row["id"]): dict(row) for row in rows}
        return [by_id[value] for value in ids if value in by_id]

    def list_learning_characters(self, user_id: str, limit: int | None = None) -> list[dict]:
        query = """
            SELECT c.id, c.character, c.pinyin, c.meaning, c.frequency_rank, p.state, p.last_practiced
            FROM user_character_progress p
            JOIN characters c ON c.id = p.character_id
            WHERE p.user_id = ? AND p.state = ?
            ORDER BY p.last_practiced ASC, c.frequency_rank ASC
        """
        params: list = [user_id, STATE_LEARNING]
        if limit is not None:
            query += " LIMIT ?"
            params.append(max(1, int(limit)))
        with self.connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def next_dashboard_character(self, user_id: str) -> dict | None:
        learning = self.list_learning_characters(user_id, limit=1)
        if learning:
            return {**learning[0], "state": STATE_LEARNING}
        with self.connect() as conn:
            row = conn.execute(
                """
                SELECT c.id, c.character, c.pinyin, c.meaning, c.frequency_rank
                FROM characters c
                WHERE NOT EXISTS (
                    SELECT 1 FROM user_character_progress p
                    WHERE p.character_id = c.id AND p.user_id = ?
                )
                ORDER BY c.frequency_rank ASC
                LIMIT 1
                """,
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return {**dict(row), "state": "new"}

    def list_recent_characters(self, user_id: str, limit: int = SessionDefaults.recent_limit) -> list[dict]:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT c.id, c.character, c.meaning, p.state, p.last_practiced
                FROM user_character_progress p
                JOIN characters c ON c.id = p.character_id
                WHERE p.user_id = ?
                ORDER BY p.last_practiced DESC
                LIMIT ?
                """,
                (user_id, max(1, int(limit))),
            ).fetchall()
        return [dict(row) for row in rows]

    def complete_character(
        self,
        user_id: str,
        character_id: int,
        *,
        completion_key: str | None = None,
        now: datetime | None = None,
    ) -> dict:
        with self.connect() as conn:
            if conn.execute("SELECT 1 FROM characters WHERE id = ?", (character_id,)).fetchone() is None:
                raise ValueError(f"character {character_id} not found")
            _ensure_profile(conn, user_id, None)
            row = conn.execute(
                """
                SELECT state, practice_count, last_practiced, last_completion_key
                FROM user_character_progress
                WHERE user_id = ? AND character_id = ?
                """,
                (user_id, character_id),
            ).fetchone()
            update = apply_completion(
                progress_from_row(dict(row) if row else None),
                completion_key=completion_key,
                now=now,
            )
            progress = update.progress
            if update.applied:
                conn.execute(
                    """
                    INSERT INTO user_character_progress
                    (user_id, character_id, state, practice_count, last_practiced, last_completion_key)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id, character_id)
                    DO UPDATE SET
                        state = excluded.state,
                        practice_count = excluded.practice_count,
                        last_practiced = excluded.last_practiced,
                        last_completion_key = excluded.last_completion_key
                    """,
                    (
                        user_id,
                        character_id,
                        progress.state,
                        progress.practice_count,
                        progress.last_practiced,
                        progress.last_completion_key,
                    ),
                )
        return {
            "character_id": character_id,
            "applied": update.applied,
            "state": progress.state,
            "practice_count": progress.practice_count,
        }

    def update_profile_after_completion(self, user_id: str, *, today: date | None = None) -> dict:
        today = today or datetime.now(UTC).date()
        with self.connect() as conn:
            _ensure_profile(conn, user_id, None)
            profile = conn.execute("SELECT * FROM user_profile WHERE user_id = ?", (user_id,)).fetchone()
            counts = conn.execute(
                """
                SELECT
                    COALESCE(SUM(CASE WHEN state = ? THEN 1 ELSE 0 END), 0) AS mastered,
                    COALESCE(SUM(CASE WHEN state = ? THEN 1 ELSE 0 END), 0) AS learning,
                    COUNT(*) AS practiced,
                    MAX(last_practiced) AS latest
                FROM user_character_progress
                WHERE user_id = ?
                """,
                (STATE_MASTERED, STATE_LEARNING, user_id),
            ).fetchone()

            streak = int(profile["streak"] or 0)
            last_active = _parse_date(profile["last_active_date"])
            latest = _parse_date(counts["latest"])
            if latest == today and last_active != today:
                streak = next_streak(streak=streak, last_active=last_active, today=today)
                last_active = today
            elif last_active is not None and (today - last_active).days > 1:
                streak = 0

            mastered = int(counts["mastered"])
            conn.execute(
                """
                UPDATE user_profile
                SET level = ?,
                    mastered = ?,
                    learning = ?,
                    streak = ?,
                    total_characters_practiced = ?,
                    last_active_date = ?,
                    updated_at = CURRENT_TIMESTAMP
                WHERE user_id = ?
                """,
                (
                    derive_level(mastered),
                    mastered,
                    int(counts["learning"]),
                    streak,
                    int(counts["practiced"]),
                    last_active.isoformat() if last_active else None,
                    user_id,
                ),
            )
            self._award_badges(conn, user_id)
            row = conn.execute("SELECT * FROM user_profile WHERE user_id = ?", (user_id,)).fetchone()
        return dict(row)

    def _award_badges(self, conn: sqlite3.Connection, user_id: str) -> None:
        conn.execute(
            """
            INSERT OR IGNORE INTO user_badges (user_id, badge_id)
            SELECT p.user_id, b.id
            FROM user_profile p
            JOIN badges b ON (
                (b.criteria_type = 'mastered' AND p.mastered >= b.threshold)
                OR (b.criteria_type = 'streak' AND p.streak >= b.threshold)
                OR (b.criteria_type = 'practiced' AND p.total_characters_practiced >= b.threshold)
            )
            WHERE p.user_id = ?
            """,
            (user_id,),
        )

    def list_badges(self, user_id: str) -> list[dict]:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT b.id, b.name, b.description, b.icon_emoji, ub.earned_at
                FROM badges b
                LEFT JOIN user_badges ub ON ub.badge_id = b.id AND ub.user_id = ?
                ORDER BY b.criteria_type, b.threshold
                """,
                (user_id,),
            ).fetchall()
        return [{**dict(row), "earned": row["earned_at"] is not None} for row in rows]

    def create_flashcard_set(self, *, user_id: str, title: str, description: str | None) -> dict:
        with self.connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO flashcard_sets (user_id, title, description)
                VALUES (?, ?, ?)
                """,
                (user_id, title, description),
            )
            set_id = int(cur.lastrowid)
        return self.get_flashcard_set(set_id)

    def update_flashcard_set(self, set_id: int, *, title: str, description: str | None) -> dict:
        with self.connect() as conn:
            cur = conn.execute(
                """
                UPDATE flashcard_sets
                SET title = ?, description = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (title, description, set_id),
            )
            if not cur.rowcount:
                raise ValueError(f"flashcard set {set_id} not found")
        return self.get_flashcard_set(set_id)

    def get_flashcard_set(self, set_id: int) -> dict:
        with self.connect() as conn:
            row = conn.execute(
                """
                SELECT s.*, (SELECT COUNT(*) FROM flashcards f WHERE f.set_id = s.id) AS card_count
                FROM flashcard_sets s
                WHERE s.id = ?
                """,
                (set_id,),
            ).fetchone()
        if row is None:
            raise NotFoundError(f"flashcard set {set_id} not found")
        return _decode_set(row)

    def list_flashcard_sets(self, user_id: str) -> list[dict]:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT s.*, (SELECT COUNT(*) FROM flashcards f WHERE f.set_id = s.id) AS card_count
                FROM flashcard_sets s
                WHERE s.user_id = ?
                ORDER BY s.created_at DESC, s.id DESC
                """,
                (user_id,),
            ).fetchall()
        return [_decode_set(row) for row in rows]

    def delete_flashcard_set(self, set_id: int) -> bool:
        with self.connect() as conn:
            cur = conn.execute("DELETE FROM flashcard_sets WHERE id = ?", (set_id,))
        return bool(cur.rowcount)

    def add_flashcards(self, set_id: int, pairs: Sequence[tuple[str, str]]) -> int:
        with self.connect() as conn:
            return _insert_flashcards(conn, set_id, pairs)

    def replace_flashcards(self, set_id: int, pairs: Sequence[tuple[str, str]]) -> int:
        with self.connect() as conn:
            conn.execute("DELETE FROM flashcards WHERE set_id = ?", (set_id,))
            return _insert_flashcards(conn, set_id, pairs)

    def get_flashcards_with_progress(self, set_id: int) -> list[dict]:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT id, set_id, term, definition, position, is_starred, is_mastered,
                       times_correct, times_incorrect, last_practiced
                FROM flashcards
                WHERE set_id = ?
                ORDER BY position ASC, id ASC
                """,
                (set_id,),
            ).fetchall()
        return [_decode_card(row) for row in rows]

    def get_flashcard(self, card_id: int) -> dict:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM flashcards WHERE id = ?", (card_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"flashcard {card_id} not found")
        return _decode_card(row)

    def delete_flashcard(self, card_id: int) -> bool:
        with self.connect() as conn:
            cur = conn.execute("DELETE FROM flashcards WHERE id = ?", (card_id,))
        return bool(cur.rowcount)

    def record_flashcard_answer(self, card_id: int, correct: bool) -> dict:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT times_correct, times_incorrect FROM flashcards WHERE id = ?",
                (card_id,),
            ).fetchone()
            if row is None:
                raise ValueError(f"flashcard {card_id} not found")
            times_correct = int(row["times_correct"]) + (1 if correct else 0)
            times_incorrect = int(row["times_incorrect"]) + (0 if correct else 1)
            conn.execute(
                """
                UPDATE flashcards
                SET times_correct = ?,
                    times_incorrect = ?,
                    is_mastered = ?,
                    last_practiced = ?
                WHERE id = ?
                """,
                (
                    times_correct,
                    times_incorrect,
                    int(flashcard_mastered(times_correct=times_correct, times_incorrect=times_incorrect)),
                    _iso_now(),
                    card_id,
                ),
            )
            updated = conn.execute("SELECT * FROM flashcards WHERE id = ?", (card_id,)).fetchone()
        return _decode_card(updated)

    def toggle_flashcard_star(self, card_id: int) -> bool:
        with self.connect() as conn:
            cur = conn.execute(
                "UPDATE flashcards SET is_starred = 1 - is_starred WHERE id = ?",
                (card_id,),
            )
            if not cur.rowcount:
                raise ValueError(f"flashcard {card_id} not found")
            row = conn.execute("SELECT is_starred FROM flashcards WHERE id = ?", (card_id,)).fetchone()
        return bool(row["is_starred"])


def _insert_flashcards(conn: sqlite3.Connection, set_id: int, pairs: Sequence[tuple[str, str]]) -> int:
    if conn.execute("SELECT 1 FROM flashcard_sets WHERE id = ?", (set_id,)).fetchone() is None:
        raise ValueError(f"flashcard set {set_id} not found")
    start = conn.execute(
        "SELECT COALESCE(MAX(position), 0) FROM flashcards WHERE set_id = ?",
        (set_id,),
    ).fetchone()[0]
    conn.executemany(
        """
        INSERT INTO flashcards (set_id, term, definition, position)
        VALUES (?, ?, ?, ?)
        """,
        [(set_id, term, definition, start + idx) for idx, (term, definition) in enumerate(pairs, start=1)],
    )
    return len(pairs)


def _ensure_profile(conn: sqlite3.Connection, user_id: str, username: str | None) -> None:
    conn.execute(
        """
        INSERT OR IGNORE INTO user_profile (user_id, username)
        VALUES (?, ?)
        """,
        (user_id, username),
    )


def _decode_set(row: sqlite3.Row) -> dict:
    data = dict(row)
    data["is_public"] = bool(data.get("is_public"))
    data["card_count"] = int(data.get("card_count") or 0)
    return data


def _decode_card(row: sqlite3.Row) -> dict:
    data = dict(row)
    data["is_starred"] = bool(data.get("is_starred"))
    data["is_mastered"] = bool(data.get("is_mastered"))
    return data


def _iso_now() -> str:
    return datetime.now(UTC).isoformat()


def _parse_date(value: object) -> date | None:
    text = str(value or "").strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None
