from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import Any, Callable, Protocol, Sequence

from hanzi_quest.errors import BackendError
from hanzi_quest.session.models import (
    SOURCE_CATALOG,
    SOURCE_STUDY_SET,
    PracticeItem,
    StudyPair,
    UserProgressSnapshot,
)
from hanzi_quest.storage.db import Database

logger = logging.getLogger(__name__)


class Backend(Protocol):
    async def fetch_catalog_items(self, limit: int | None = None) -> list[PracticeItem]: ...

    async def fetch_items_by_ids(self, item_ids: Sequence[str]) -> list[PracticeItem]: ...

    async def fetch_learning_items(self, user_id: str) -> list[PracticeItem]: ...

    async def fetch_next_dashboard_item(self, user_id: str) -> PracticeItem | None: ...

    async def fetch_recent_items(self, user_id: str, limit: int = 5) -> list[dict]: ...

    async def record_completion(self, user_id: str, item_id: str, completion_key: str | None = None) -> dict: ...

    async def refresh_profile(self, user_id: str) -> UserProgressSnapshot: ...

    async def get_profile(self, user_id: str) -> UserProgressSnapshot: ...

    async def list_badges(self, user_id: str) -> list[dict]: ...

    async def create_study_set(self, user_id: str, title: str, description: str | None = None) -> dict: ...

    async def update_study_set(self, set_id: int, title: str, description: str | None = None) -> dict: ...

    async def get_study_set(self, set_id: int) -> dict: ...

    async def add_items_to_set(self, set_id: int, pairs: Sequence[StudyPair]) -> int: ...

    async def replace_set_items(self, set_id: int, pairs: Sequence[StudyPair]) -> int: ...

    async def delete_set(self, set_id: int) -> bool: ...

    async def list_sets(self, user_id: str) -> list[dict]: ...

    async def get_set_items(self, set_id: int) -> list[dict]: ...

    async def get_set_item(self, card_id: int) -> dict: ...

    async def remove_item_from_set(self, item_id: int) -> bool: ...

    async def record_flashcard_answer(self, card_id: int, correct: bool) -> dict: ...

    async def toggle_star(self, card_id: int) -> bool: ...


def character_to_item(row: dict, source_kind: str = SOURCE_CATALOG) -> PracticeItem:
    return PracticeItem(
        id=str(row["id"]),
        primary_text=str(row["character"]),
        secondary_text=str(row.get("pinyin") or ""),
        tertiary_text=row.get("meaning"),
        source_kind=source_kind,
    )


def card_to_item(row: dict) -> PracticeItem:
    return PracticeItem(
        id=str(row["id"]),
        primary_text=str(row["term"]),
        secondary_text=str(row["definition"]),
        tertiary_text=None,
        source_kind=SOURCE_STUDY_SET,
        starred=bool(row.get("is_starred")),
    )


class SQLiteBackend:
    """Backend over the local sqlite database; blocking calls run in worker threads."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def _call(self, operation: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except (sqlite3.Error, ValueError) as exc:
            logger.debug("sqlite backend %s failed: %s", operation, exc)
            raise BackendError(operation, str(exc)) from exc

    async def fetch_catalog_items(self, limit: int | None = None) -> list[PracticeItem]:
        rows = await self._call("fetch_catalog_items", self.db.list_characters, limit)
        return [character_to_item(row) for row in rows]

    async def fetch_items_by_ids(self, item_ids: Sequence[str]) -> list[PracticeItem]:
        try:
            ids = [int(value) for value in item_ids]
        except (TypeError, ValueError) as exc:
            raise BackendError("fetch_items_by_ids", "invalid item id") from exc
        rows = await self._call("fetch_items_by_ids", self.db.get_characters_by_ids, ids)
        return [character_to_item(row) for row in rows]

    async def fetch_learning_items(self, user_id: str) -> list[PracticeItem]:
        rows = await self._call("fetch_learning_items", self.db.list_learning_characters, user_id)
        return [character_to_item(row) for row in rows]

    async def fetch_next_dashboard_item(self, user_id: str) -> PracticeItem | None:
        row = await self._call("fetch_next_dashboard_item", self.db.next_dashboard_character, user_id)
        return character_to_item(row) if row else None

    async def fetch_recent_items(self, user_id: str, limit: int = 5) -> list[dict]:
        return await self._call("fetch_recent_items", self.db.list_recent_characters, user_id, limit)

    async def record_completion(self, user_id: str, item_id: str, completion_key: str | None = None) -> dict:
        try:
            character_id = int(item_id)
        except (TypeError, ValueError) as exc:
            raise BackendError("record_completion", f"invalid item id {item_id!r}") from exc
        return await self._call(
            "record_completion",
            self.db.complete_character,
            user_id,
            character_id,
            completion_key=completion_key,
        )

    async def refresh_profile(self, user_id: str) -> UserProgressSnapshot:
        row = await self._call("refresh_profile", self.db.update_profile_after_completion, user_id)
        return UserProgressSnapshot.from_row(row)

    async def get_profile(self, user_id: str) -> UserProgressSnapshot:
        row = await self._call("get_profile", self.db.get_profile, user_id)
        return UserProgressSnapshot.from_row(row)

    async def list_badges(self, user_id: str) -> list[dict]:
        return await self._call("list_badges", self.db.list_badges, user_id)

    async def create_study_set(self, user_id: str, title: str, description: str | None = None) -> dict:
        return await self._call(
            "create_study_set",
            self.db.create_flashcard_set,
            user_id=user_id,
            title=title,
            description=description,
        )

    async def update_study_set(self, set_id: int, title: str, description: str | None = None) -> dict:
        return await self._call(
            "update_study_set",
            self.db.update_flashcard_set,
            set_id,
            title=title,
            description=description,
        )

    async def get_study_set(self, set_id: int) -> dict:
        return await self._call("get_study_set", self.db.get_flashcard_set, set_id)

    async def add_items_to_set(self, set_id: int, pairs: Sequence[StudyPair]) -> int:
        rows = [(pair.term, pair.definition) for pair in pairs]
        return await self._call("add_items_to_set", self.db.add_flashcards, set_id, rows)

    async def replace_set_items(self, set_id: int, pairs: Sequence[StudyPair]) -> int:
        rows = [(pair.term, pair.definition) for pair in pairs]
        return await self._call("replace_set_items", self.db.replace_flashcards, set_id, rows)

    async def delete_set(self, set_id: int) -> bool:
        return await self._call("delete_set", self.db.delete_flashcard_set, set_id)

    async def list_sets(self, user_id: str) -> list[dict]:
        return await self._call("list_sets", self.db.list_flashcard_sets, user_id)

    async def get_set_items(self, set_id: int) -> list[dict]:
        return await self._call("get_set_items", self.db.get_flashcards_with_progress, set_id)

    async def get_set_item(self, card_id: int) -> dict:
        return await self._call("get_set_item", self.db.get_flashcard, card_id)

    async def remove_item_from_set(self, item_id: int) -> bool:
        return await self._call("remove_item_from_set", self.db.delete_flashcard, item_id)

    async def record_flashcard_answer(self, card_id: int, correct: bool) -> dict:
        return await self._call("record_flashcard_answer", self.db.record_flashcard_answer, card_id, correct)

    async def toggle_star(self, card_id: int) -> bool:
        return await self._call("toggle_star", self.db.toggle_flashcard_star, card_id)
