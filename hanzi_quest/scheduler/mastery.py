from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone

from hanzi_quest.config import SessionDefaults

UTC = timezone.utc

STATE_NEW = "new"
STATE_LEARNING = "learning"
STATE_MASTERED = "mastered"

CHARACTERS_PER_LEVEL = 10
FLASHCARD_MASTERY_STREAK = 3


@dataclass
class CharacterProgress:
    state: str = STATE_NEW
    practice_count: int = 0
    last_practiced: str | None = None
    last_completion_key: str | None = None


@dataclass
class CompletionUpdate:
    progress: CharacterProgress
    applied: bool


def apply_completion(
    previous: CharacterProgress | None,
    *,
    completion_key: str | None = None,
    now: datetime | None = None,
    mastery_threshold: int = SessionDefaults.mastery_threshold,
) -> CompletionUpdate:
    now = now or datetime.now(UTC)
    progress = previous or CharacterProgress()

    # A repeated key means the caller retried the same completion.
    if completion_key and progress.last_completion_key == completion_key:
        return CompletionUpdate(progress=progress, applied=False)

    count = progress.practice_count + 1
    if count >= mastery_threshold:
        state = STATE_MASTERED
    else:
        state = STATE_LEARNING

    return CompletionUpdate(
        progress=CharacterProgress(
            state=state,
            practice_count=count,
            last_practiced=now.isoformat(),
            last_completion_key=completion_key,
        ),
        applied=True,
    )


def derive_level(mastered: int) -> int:
    return 1 + max(0, int(mastered)) // CHARACTERS_PER_LEVEL


def next_streak(*, streak: int, last_active: date | None, today: date) -> int:
    if last_active is None:
        return 1
    gap = (today - last_active).days
    if gap <= 0:
        return max(1, streak)
    if gap == 1:
        return streak + 1
    return 1


def flashcard_mastered(*, times_correct: int, times_incorrect: int) -> bool:
    return times_correct >= FLASHCARD_MASTERY_STREAK and times_correct > times_incorrect


def progress_from_row(row: dict | None) -> CharacterProgress | None:
    if row is None:
        return None
    return CharacterProgress(
        state=str(row.get("state") or STATE_NEW),
        practice_count=int(row.get("practice_count") or 0),
        last_practiced=row.get("last_practiced"),
        last_completion_key=row.get("last_completion_key"),
    )
