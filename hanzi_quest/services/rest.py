from __future__ import annotations

import logging
import os
from typing import Any, Sequence

import httpx

from hanzi_quest.errors import BackendError, NotFoundError
from hanzi_quest.session.models import PracticeItem, StudyPair, UserProgressSnapshot
from hanzi_quest.storage.backend import character_to_item

logger = logging.getLogger(__name__)

CHARACTER_COLUMNS = "id,character,pinyin,meaning,frequency_rank"
PROFILE_COLUMNS = "username,level,mastered,learning,streak,total_characters_practiced"


class RestBackend:
    """Backend speaking to a PostgREST-style remote store (tables under /rest/v1, functions under /rest/v1/rpc)."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("HANZI_QUEST_REST_URL") or "").rstrip("/")
        self.api_key = api_key or os.getenv("HANZI_QUEST_REST_KEY")
        self.timeout = float(timeout or os.getenv("HANZI_QUEST_REST_TIMEOUT", "15"))
        self.transport = transport

    def available(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        params: dict | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        if not self.available():
            raise BackendError(operation, "remote backend is not configured")
        headers = self._headers()
        if prefer:
            headers["Prefer"] = prefer
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                resp = await client.request(method, path, params=params, json=json, headers=headers)
                logger.debug("%s %s -> %s", method, path, resp.status_code)
                resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise BackendError(operation, f"HTTP {exc.response.status_code}: {exc.response.text[:200]}") from exc
        except httpx.HTTPError as exc:
            raise BackendError(operation, str(exc) or exc.__class__.__name__) from exc
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise BackendError(operation, "invalid JSON response") from exc

    async def _rpc(self, name: str, payload: dict) -> Any:
        return await self._request(name, "POST", f"/rest/v1/rpc/{name}", json=payload)

    async def _select(self, operation: str, table: str, params: dict) -> list[dict]:
        data = await self._request(operation, "GET", f"/rest/v1/{table}", params=params)
        return list(data or [])

    async def fetch_catalog_items(self, limit: int | None = None) -> list[PracticeItem]:
        params = {"select": CHARACTER_COLUMNS, "order": "frequency_rank.asc"}
        if limit is not None:
            params["limit"] = str(int(limit))
        rows = await self._select("fetch_catalog_items", "characters", params)
        return [character_to_item(row) for row in rows]

    async def fetch_items_by_ids(self, item_ids: Sequence[str]) -> list[PracticeItem]:
        ids = [str(value) for value in item_ids]
        if not ids:
            return []
        rows = await self._select(
            "fetch_items_by_ids",
            "characters",
            {"select": CHARACTER_COLUMNS, "id": f"in.({','.join(ids)})"},
        )
        by_id = {str(row["id"]): row for row in rows}
        return [character_to_item(by_id[value]) for value in ids if value in by_id]

    async def fetch_learning_items(self, user_id: str) -> list[PracticeItem]:
        rows = await self._select(
            "fetch_learning_items",
            "user_character_progress",
            {
                "select": f"character_id,characters({CHARACTER_COLUMNS})",
                "user_id": f"eq.{user_id}",
                "state": "eq.learning",
                "order": "last_practiced.asc",
            },
        )
        return [character_to_item(row["characters"]) for row in rows if row.get("characters")]

    async def fetch_next_dashboard_item(self, user_id: str) -> PracticeItem | None:
        learning = await self.fetch_learning_items(user_id)
        if learning:
            return learning[0]
        practiced = await self._select(
            "fetch_next_dashboard_item",
            "user_character_progress",
            {"select": "character_id", "user_id": f"eq.{user_id}"},
        )
        params = {"select": CHARACTER_COLUMNS, "order": "frequency_rank.asc", "limit": "1"}
        if practiced:
            ids = ",".join(str(row["character_id"]) for row in practiced)
            params["id"] = f"not.in.({ids})"
        rows = await self._select("fetch_next_dashboard_item", "characters", params)
        return character_to_item(rows[0]) if rows else None

    async def fetch_recent_items(self, user_id: str, limit: int = 5) -> list[dict]:
        rows = await self._select(
            "fetch_recent_items",
            "user_character_progress",
            {
                "select": "state,last_practiced,characters(id,character,meaning)",
                "user_id": f"eq.{user_id}",
                "order": "last_practiced.desc",
                "limit": str(int(limit)),
            },
        )
        recent: list[dict] = []
        for row in rows:
            character = row.get("characters") or {}
            recent.append(
                {
                    "id": character.get("id"),
                    "character": character.get("character") or "?",
                    "meaning": character.get("meaning") or "",
                    "state": row.get("state"),
                    "last_practiced": row.get("last_practiced"),
                }
            )
        return recent

    async def record_completion(self, user_id: str, item_id: str, completion_key: str | None = None) -> dict:
        data = await self._rpc(
            "complete_character",
            {"p_user_id": user_id, "p_character_id": item_id, "p_completion_key": completion_key},
        )
        return data if isinstance(data, dict) else {"character_id": item_id, "result": data}

    async def refresh_profile(self, user_id: str) -> UserProgressSnapshot:
        await self._rpc("update_profile_after_completion", {"p_user_id": user_id})
        return await self.get_profile(user_id)

    async def get_profile(self, user_id: str) -> UserProgressSnapshot:
        rows = await self._select(
            "get_profile",
            "user_profile",
            {"select": PROFILE_COLUMNS, "user_id": f"eq.{user_id}"},
        )
        if not rows:
            raise BackendError("get_profile", f"profile for {user_id} not found")
        return UserProgressSnapshot.from_row(rows[0])

    async def list_badges(self, user_id: str) -> list[dict]:
        badges = await self._select("list_badges", "badges", {"select": "*"})
        earned = await self._select(
            "list_badges",
            "user_badges",
            {"select": "badge_id,earned_at", "user_id": f"eq.{user_id}"},
        )
        earned_at = {str(row["badge_id"]): row.get("earned_at") for row in earned}
        return [
            {**badge, "earned_at": earned_at.get(str(badge["id"])), "earned": str(badge["id"]) in earned_at}
            for badge in badges
        ]

    async def create_study_set(self, user_id: str, title: str, description: str | None = None) -> dict:
        rows = await self._request(
            "create_study_set",
            "POST",
            "/rest/v1/flashcard_sets",
            json={"user_id": user_id, "title": title, "description": description},
            prefer="return=representation",
        )
        return _first_row("create_study_set", rows)

    async def update_study_set(self, set_id: int, title: str, description: str | None = None) -> dict:
        rows = await self._request(
            "update_study_set",
            "PATCH",
            "/rest/v1/flashcard_sets",
            params={"id": f"eq.{set_id}"},
            json={"title": title, "description": description},
            prefer="return=representation",
        )
        return _first_row("update_study_set", rows)

    async def get_study_set(self, set_id: int) -> dict:
        rows = await self._select("get_study_set", "flashcard_sets", {"select": "*", "id": f"eq.{set_id}"})
        if not rows:
            raise NotFoundError(f"flashcard set {set_id} not found")
        return dict(rows[0])

    async def add_items_to_set(self, set_id: int, pairs: Sequence[StudyPair]) -> int:
        existing = await self.get_set_items(set_id)
        start = max((int(row.get("position") or 0) for row in existing), default=0)
        payload = [
            {"set_id": set_id, "term": pair.term, "definition": pair.definition, "position": start + idx}
            for idx, pair in enumerate(pairs, start=1)
        ]
        await self._request("add_items_to_set", "POST", "/rest/v1/flashcards", json=payload)
        return len(payload)

    async def replace_set_items(self, set_id: int, pairs: Sequence[StudyPair]) -> int:
        # One server-side function so the old cards survive a failed insert.
        cards = [{"term": pair.term, "definition": pair.definition} for pair in pairs]
        await self._rpc("replace_flashcards", {"p_set_id": set_id, "p_cards": cards})
        return len(cards)

    async def delete_set(self, set_id: int) -> bool:
        rows = await self._request(
            "delete_set",
            "DELETE",
            "/rest/v1/flashcard_sets",
            params={"id": f"eq.{set_id}"},
            prefer="return=representation",
        )
        return bool(rows)

    async def list_sets(self, user_id: str) -> list[dict]:
        return await self._select(
            "list_sets",
            "flashcard_sets",
            {"select": "*", "user_id": f"eq.{user_id}", "order": "created_at.desc"},
        )

    async def get_set_items(self, set_id: int) -> list[dict]:
        data = await self._rpc("get_flashcards_with_progress", {"p_set_id": set_id})
        return list(data or [])

    async def get_set_item(self, card_id: int) -> dict:
        rows = await self._select("get_set_item", "flashcards", {"select": "*", "id": f"eq.{card_id}"})
        if not rows:
            raise NotFoundError(f"flashcard {card_id} not found")
        return dict(rows[0])

    async def remove_item_from_set(self, item_id: int) -> bool:
        rows = await self._request(
            "remove_item_from_set",
            "DELETE",
            "/rest/v1/flashcards",
            params={"id": f"eq.{item_id}"},
            prefer="return=representation",
        )
        return bool(rows)

    async def record_flashcard_answer(self, card_id: int, correct: bool) -> dict:
        data = await self._rpc(
            "record_flashcard_answer",
            {"p_flashcard_id": card_id, "p_is_correct": bool(correct)},
        )
        return data if isinstance(data, dict) else {"id": card_id}

    async def toggle_star(self, card_id: int) -> bool:
        data = await self._rpc("toggle_flashcard_star", {"p_flashcard_id": card_id})
        return bool(data)


def _first_row(operation: str, rows: Any) -> dict:
    if isinstance(rows, list) and rows:
        return dict(rows[0])
    if isinstance(rows, dict):
        return rows
    raise BackendError(operation, "empty response")
