from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from hanzi_quest.errors import BackendError, NotFoundError, ValidationError
from hanzi_quest.session.models import PracticeItem, StudyPair
from hanzi_quest.sets.importer import ParseReport, build_draft, parse_delimited, resolve_delimiter, serialize_pairs
from hanzi_quest.storage.backend import Backend, card_to_item

logger = logging.getLogger(__name__)


@dataclass
class SetResult:
    ok: bool
    data: dict = field(default_factory=dict)
    error: str | None = None


class StudySetService:
    """Study-set operations scoped to the signed-in user.

    Input is validated before the first backend call. Backend failures are
    logged once here and returned as ``SetResult(ok=False)``; a set or card
    owned by someone else raises ``NotFoundError`` like a missing one.
    """

    def __init__(self, backend: Backend) -> None:
        self.backend = backend

    def preview_import(self, text: str, delimiter: str | None) -> ParseReport:
        return parse_delimited(text, resolve_delimiter(delimiter))

    async def create_set(
        self,
        *,
        user_id: str,
        title: str,
        description: str | None,
        rows: Sequence[Mapping[str, str] | StudyPair],
    ) -> SetResult:
        clean_title = _require_title(title)
        draft = build_draft(rows)
        return await self._create_with_cards(
            user_id=user_id,
            title=clean_title,
            description=_clean_description(description),
            pairs=draft,
        )

    async def import_set(
        self,
        *,
        user_id: str,
        title: str,
        text: str,
        delimiter: str | None,
    ) -> SetResult:
        clean_title = _require_title(title)
        if not str(text or "").strip():
            raise ValidationError("import text is empty")
        report = self.preview_import(text, delimiter)
        if not report.items:
            raise ValidationError(
                f"no valid cards found ({report.dropped_lines} invalid lines); "
                "each line needs a term and a definition separated by the chosen delimiter"
            )
        result = await self._create_with_cards(
            user_id=user_id,
            title=clean_title,
            description=f"Imported {len(report.items)} cards",
            pairs=report.items,
        )
        result.data["dropped_lines"] = report.dropped_lines
        return result

    async def _create_with_cards(
        self,
        *,
        user_id: str,
        title: str,
        description: str | None,
        pairs: Sequence[StudyPair],
    ) -> SetResult:
        try:
            created = await self.backend.create_study_set(user_id, title, description)
        except BackendError as exc:
            return _failure("create", exc, hint="the title might already exist")
        set_id = int(created["id"])
        try:
            added = await self.backend.add_items_to_set(set_id, pairs)
        except BackendError as exc:
            # A set without its cards is removed again.
            result = _failure("add cards", exc)
            result.data["set_removed"] = await self._remove_empty_set(set_id)
            return result
        logger.info("study set %s created with %d cards", set_id, added)
        return SetResult(ok=True, data={"set": {**created, "card_count": added}, "imported": added})

    async def _remove_empty_set(self, set_id: int) -> bool:
        try:
            return bool(await self.backend.delete_set(set_id))
        except BackendError as exc:
            logger.error("empty study set %s could not be removed: %s", set_id, exc)
            return False

    async def update_set(
        self,
        set_id: int,
        *,
        user_id: str,
        title: str,
        description: str | None,
        rows: Sequence[Mapping[str, str] | StudyPair],
    ) -> SetResult:
        clean_title = _require_title(title)
        draft = build_draft(rows)
        try:
            previous = await self._owned_set(set_id, user_id)
            updated = await self.backend.update_study_set(set_id, clean_title, _clean_description(description))
        except BackendError as exc:
            return _failure("update", exc)
        try:
            count = await self.backend.replace_set_items(set_id, draft)
        except BackendError as exc:
            # The card list is replaced atomically, so only the title needs restoring.
            result = _failure("replace cards", exc)
            result.data["restored"] = await self._restore_details(previous)
            return result
        return SetResult(ok=True, data={"set": {**updated, "card_count": count}})

    async def _restore_details(self, previous: dict) -> bool:
        try:
            await self.backend.update_study_set(int(previous["id"]), previous["title"], previous.get("description"))
        except BackendError as exc:
            logger.error("study set %s keeps its new title after a failed update: %s", previous["id"], exc)
            return False
        return True

    async def delete_set(self, set_id: int, *, user_id: str) -> SetResult:
        try:
            await self._owned_set(set_id, user_id)
            deleted = await self.backend.delete_set(set_id)
        except BackendError as exc:
            return _failure("delete", exc)
        return SetResult(ok=True, data={"deleted": bool(deleted)})

    async def list_sets(self, user_id: str) -> SetResult:
        try:
            sets = await self.backend.list_sets(user_id)
        except BackendError as exc:
            return _failure("list", exc)
        return SetResult(ok=True, data={"sets": sets})

    async def get_set(self, set_id: int, *, user_id: str) -> SetResult:
        try:
            study_set = await self._owned_set(set_id, user_id)
            cards = await self.backend.get_set_items(set_id)
        except BackendError as exc:
            return _failure("get", exc)
        starred = sum(1 for card in cards if card.get("is_starred"))
        return SetResult(ok=True, data={"set": study_set, "cards": cards, "starred_count": starred})

    async def remove_item(self, card_id: int, *, user_id: str) -> SetResult:
        try:
            await self._owned_card(card_id, user_id)
            removed = await self.backend.remove_item_from_set(card_id)
        except BackendError as exc:
            return _failure("remove card", exc)
        return SetResult(ok=True, data={"removed": bool(removed)})

    async def toggle_star(self, card_id: int, *, user_id: str) -> SetResult:
        try:
            await self._owned_card(card_id, user_id)
            starred = await self.backend.toggle_star(card_id)
        except BackendError as exc:
            return _failure("toggle star", exc)
        return SetResult(ok=True, data={"card_id": card_id, "starred": bool(starred)})

    async def export_set(self, set_id: int, delimiter: str | None, *, user_id: str) -> SetResult:
        sep = resolve_delimiter(delimiter)
        try:
            await self._owned_set(set_id, user_id)
            cards = await self.backend.get_set_items(set_id)
        except BackendError as exc:
            return _failure("export", exc)
        pairs = [StudyPair(term=str(card["term"]), definition=str(card["definition"])) for card in cards]
        return SetResult(ok=True, data={"text": serialize_pairs(pairs, sep), "count": len(pairs)})

    async def session_items(self, set_id: int, *, user_id: str, starred_only: bool = False) -> list[PracticeItem]:
        await self._owned_set(set_id, user_id)
        cards = await self.backend.get_set_items(set_id)
        items = [card_to_item(card) for card in cards]
        if starred_only:
            items = [item for item in items if item.starred]
        if not items:
            raise ValidationError("no starred cards to study" if starred_only else "no cards in this set")
        return items

    async def _owned_set(self, set_id: int, user_id: str) -> dict:
        study_set = await self.backend.get_study_set(set_id)
        if str(study_set.get("user_id")) != str(user_id):
            raise NotFoundError(f"flashcard set {set_id} not found")
        return study_set

    async def _owned_card(self, card_id: int, user_id: str) -> dict:
        card = await self.backend.get_set_item(card_id)
        try:
            await self._owned_set(int(card["set_id"]), user_id)
        except NotFoundError as exc:
            raise NotFoundError(f"flashcard {card_id} not found") from exc
        return card


def _failure(operation: str, exc: BackendError, *, hint: str | None = None) -> SetResult:
    logger.warning("study set %s failed: %s", operation, exc)
    message = f"{exc} ({hint})" if hint else str(exc)
    return SetResult(ok=False, error=message)


def _require_title(title: str | None) -> str:
    clean = str(title or "").strip()
    if not clean:
        raise ValidationError("please enter a title")
    return clean


def _clean_description(description: str | None) -> str | None:
    return str(description or "").strip() or None
