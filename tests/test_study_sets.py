from __future__ import annotations

import asyncio
import logging

import pytest

from hanzi_quest.errors import BackendError, NotFoundError, ValidationError
from hanzi_quest.sets.service import StudySetService
from hanzi_quest.storage.backend import SQLiteBackend


@pytest.fixture()
def service(temp_db):
    return StudySetService(SQLiteBackend(temp_db))


def test_import_creates_set_with_generated_description(service):
    result = asyncio.run(
        service.import_set(user_id="u1", title=" HSK 1 ", text="你,nǐ,you\n好,hǎo\nbroken", delimiter="comma")
    )
    assert result.ok
    assert result.data["imported"] == 2
    assert result.data["dropped_lines"] == 1
    assert result.data["set"]["title"] == "HSK 1"
    assert result.data["set"]["description"] == "Imported 2 cards"

    detail = asyncio.run(service.get_set(result.data["set"]["id"], user_id="u1"))
    assert [(card["term"], card["definition"]) for card in detail.data["cards"]] == [("你", "nǐ,you"), ("好", "hǎo")]


def test_import_without_valid_lines_fails_before_any_write(service):
    with pytest.raises(ValidationError):
        asyncio.run(service.import_set(user_id="u1", title="Empty", text="no delimiter\n\n", delimiter="tab"))
    with pytest.raises(ValidationError):
        asyncio.run(service.import_set(user_id="u1", title="  ", text="a\tb", delimiter="tab"))
    listed = asyncio.run(service.list_sets("u1"))
    assert listed.data["sets"] == []


def test_duplicate_title_is_reported_not_raised(service):
    rows = [{"term": "一", "definition": "one"}]
    assert asyncio.run(service.create_set(user_id="u1", title="Numbers", description="", rows=rows)).ok
    again = asyncio.run(service.create_set(user_id="u1", title="Numbers", description=None, rows=rows))
    assert again.ok is False
    assert "already exist" in again.error


def test_update_replaces_cards_and_export_round_trips(service):
    created = asyncio.run(
        service.create_set(
            user_id="u1",
            title="Nature",
            description="  outdoors ",
            rows=[{"term": "山", "definition": "mountain"}],
        )
    )
    set_id = created.data["set"]["id"]
    assert created.data["set"]["description"] == "outdoors"

    updated = asyncio.run(
        service.update_set(
            set_id,
            user_id="u1",
            title="Nature words",
            description=None,
            rows=[{"term": "水", "definition": "water"}, {"term": "火", "definition": "fire"}],
        )
    )
    assert updated.ok
    assert updated.data["set"]["title"] == "Nature words"
    assert updated.data["set"]["card_count"] == 2

    exported = asyncio.run(service.export_set(set_id, "tab", user_id="u1"))
    assert exported.data == {"text": "水\twater\n火\tfire", "count": 2}


def test_starred_only_session_items(service):
    created = asyncio.run(
        service.create_set(
            user_id="u1",
            title="Stars",
            description=None,
            rows=[{"term": "星", "definition": "star"}, {"term": "月", "definition": "moon"}],
        )
    )
    set_id = created.data["set"]["id"]
    with pytest.raises(ValidationError):
        asyncio.run(service.session_items(set_id, user_id="u1", starred_only=True))

    cards = asyncio.run(service.get_set(set_id, user_id="u1")).data["cards"]
    toggled = asyncio.run(service.toggle_star(cards[1]["id"], user_id="u1"))
    assert toggled.data["starred"] is True

    items = asyncio.run(service.session_items(set_id, user_id="u1", starred_only=True))
    assert [item.primary_text for item in items] == ["月"]
    assert items[0].starred
    assert asyncio.run(service.get_set(set_id, user_id="u1")).data["starred_count"] == 1


class CardsFailBackend(SQLiteBackend):
    async def add_items_to_set(self, set_id, pairs):
        raise BackendError("add_items_to_set", "disk full")

    async def replace_set_items(self, set_id, pairs):
        raise BackendError("replace_set_items", "disk full")


def test_missing_and_foreign_sets_are_not_found(service):
    created = asyncio.run(
        service.create_set(user_id="u1", title="Mine", description=None, rows=[{"term": "我", "definition": "I"}])
    )
    set_id = created.data["set"]["id"]
    card_id = asyncio.run(service.get_set(set_id, user_id="u1")).data["cards"][0]["id"]

    for call in (
        service.get_set(404, user_id="u1"),
        service.get_set(set_id, user_id="u2"),
        service.delete_set(set_id, user_id="u2"),
        service.export_set(set_id, "tab", user_id="u2"),
        service.session_items(set_id, user_id="u2"),
        service.toggle_star(card_id, user_id="u2"),
        service.remove_item(card_id, user_id="u2"),
        service.remove_item(99999, user_id="u1"),
    ):
        with pytest.raises(NotFoundError):
            asyncio.run(call)

    assert asyncio.run(service.get_set(set_id, user_id="u1")).data["set"]["card_count"] == 1


def test_set_is_removed_when_its_cards_cannot_be_added(temp_db):
    service = StudySetService(CardsFailBackend(temp_db))
    result = asyncio.run(
        service.import_set(user_id="u1", title="Broken", text="山\tmountain", delimiter="tab")
    )
    assert result.ok is False
    assert "disk full" in result.error
    assert result.data["set_removed"] is True
    assert temp_db.list_flashcard_sets("u1") == []


def test_failed_card_replacement_restores_title_and_keeps_cards(temp_db):
    created = asyncio.run(
        StudySetService(SQLiteBackend(temp_db)).create_set(
            user_id="u1",
            title="Before",
            description="old",
            rows=[{"term": "山", "definition": "mountain"}],
        )
    )
    set_id = created.data["set"]["id"]

    result = asyncio.run(
        StudySetService(CardsFailBackend(temp_db)).update_set(
            set_id,
            user_id="u1",
            title="After",
            description="new",
            rows=[{"term": "水", "definition": "water"}],
        )
    )

    assert result.ok is False
    assert result.data["restored"] is True
    study_set = temp_db.get_flashcard_set(set_id)
    assert (study_set["title"], study_set["description"]) == ("Before", "old")
    assert [card["term"] for card in temp_db.get_flashcards_with_progress(set_id)] == ["山"]


def test_backend_failure_is_logged_once(temp_db, caplog):
    service = StudySetService(CardsFailBackend(temp_db))
    with caplog.at_level(logging.WARNING, logger="hanzi_quest.sets.service"):
        asyncio.run(service.create_set(user_id="u1", title="Logs", description=None, rows=[{"term": "a", "definition": "b"}]))
    warnings = [record for record in caplog.records if record.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "add cards" in warnings[0].getMessage()
