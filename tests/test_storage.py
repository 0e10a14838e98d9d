from __future__ import annotations

import sqlite3
from datetime import date, datetime, timezone

import pytest

from hanzi_quest.errors import NotFoundError
from hanzi_quest.scheduler.mastery import (
    STATE_LEARNING,
    STATE_MASTERED,
    CharacterProgress,
    apply_completion,
    derive_level,
    flashcard_mastered,
    next_streak,
)

UTC = timezone.utc


def test_apply_completion_moves_new_to_learning_then_mastered():
    now = datetime(2026, 3, 1, tzinfo=UTC)
    first = apply_completion(None, completion_key="s1:1", now=now)
    second = apply_completion(first.progress, completion_key="s2:1", now=now)
    third = apply_completion(second.progress, completion_key="s3:1", now=now)

    assert first.progress.state == STATE_LEARNING
    assert second.progress.practice_count == 2
    assert third.progress.state == STATE_MASTERED
    assert third.progress.last_practiced == now.isoformat()


def test_apply_completion_with_repeated_key_is_a_no_op():
    previous = CharacterProgress(state=STATE_LEARNING, practice_count=1, last_completion_key="s1:1")
    update = apply_completion(previous, completion_key="s1:1")
    assert update.applied is False
    assert update.progress.practice_count == 1


def test_level_streak_and_flashcard_mastery_rules():
    assert derive_level(0) == 1
    assert derive_level(9) == 1
    assert derive_level(10) == 2
    today = date(2026, 3, 10)
    assert next_streak(streak=0, last_active=None, today=today) == 1
    assert next_streak(streak=4, last_active=date(2026, 3, 9), today=today) == 5
    assert next_streak(streak=4, last_active=today, today=today) == 4
    assert next_streak(streak=4, last_active=date(2026, 3, 7), today=today) == 1
    assert flashcard_mastered(times_correct=3, times_incorrect=1)
    assert not flashcard_mastered(times_correct=3, times_incorrect=3)


def test_database_completion_is_idempotent_per_key(temp_db):
    first = temp_db.complete_character("u1", 1, completion_key="abc:1")
    repeat = temp_db.complete_character("u1", 1, completion_key="abc:1")
    fresh = temp_db.complete_character("u1", 1, completion_key="def:1")

    assert first["applied"] is True
    assert repeat["applied"] is False
    assert repeat["practice_count"] == 1
    assert fresh["practice_count"] == 2


def test_unknown_character_is_rejected(temp_db):
    with pytest.raises(ValueError):
        temp_db.complete_character("u1", 99999)


def test_profile_refresh_counts_progress_and_awards_badges(temp_db):
    for key in ("a", "b", "c"):
        temp_db.complete_character("u1", 2, completion_key=f"{key}:2")
    temp_db.complete_character("u1", 3, completion_key="a:3")

    profile = temp_db.update_profile_after_completion("u1")

    assert profile["mastered"] == 1
    assert profile["learning"] == 1
    assert profile["total_characters_practiced"] == 2
    assert profile["streak"] == 1
    assert profile["level"] == 1
    earned = {badge["id"] for badge in temp_db.list_badges("u1") if badge["earned"]}
    assert earned == {"first_stroke"}


def test_dashboard_prefers_learning_characters(temp_db):
    first = temp_db.next_dashboard_character("u1")
    assert first["character"] == "的"
    assert first["state"] == "new"

    temp_db.complete_character("u1", 5, completion_key="x:5")
    picked = temp_db.next_dashboard_character("u1")
    assert picked["id"] == 5
    assert picked["state"] == STATE_LEARNING
    assert [row["id"] for row in temp_db.list_recent_characters("u1")] == [5]


def test_flashcard_sets_cards_and_stars(temp_db):
    created = temp_db.create_flashcard_set(user_id="u1", title="Animals", description=None)
    temp_db.add_flashcards(created["id"], [("猫", "cat"), ("狗", "dog")])
    temp_db.add_flashcards(created["id"], [("鱼", "fish")])

    cards = temp_db.get_flashcards_with_progress(created["id"])
    assert [card["term"] for card in cards] == ["猫", "狗", "鱼"]
    assert [card["position"] for card in cards] == [1, 2, 3]
    assert temp_db.get_flashcard_set(created["id"])["card_count"] == 3

    assert temp_db.toggle_flashcard_star(cards[0]["id"]) is True
    assert temp_db.toggle_flashcard_star(cards[0]["id"]) is False

    for _ in range(3):
        updated = temp_db.record_flashcard_answer(cards[1]["id"], True)
    assert updated["is_mastered"] is True
    assert updated["times_correct"] == 3

    assert temp_db.delete_flashcard(cards[2]["id"]) is True
    assert temp_db.replace_flashcards(created["id"], [("鸟", "bird")]) == 1
    assert [card["term"] for card in temp_db.get_flashcards_with_progress(created["id"])] == ["鸟"]

    assert temp_db.delete_flashcard_set(created["id"]) is True
    with pytest.raises(NotFoundError):
        temp_db.get_flashcard_set(created["id"])


def test_replace_flashcards_keeps_old_cards_when_insert_fails(temp_db):
    created = temp_db.create_flashcard_set(user_id="u1", title="Weather", description=None)
    temp_db.add_flashcards(created["id"], [("雨", "rain"), ("雪", "snow")])

    with pytest.raises(sqlite3.IntegrityError):
        temp_db.replace_flashcards(created["id"], [("风", "wind"), (None, "broken")])

    assert [card["term"] for card in temp_db.get_flashcards_with_progress(created["id"])] == ["雨", "雪"]
