from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import hanzi_quest.app as app_module
from hanzi_quest.errors import BackendError
from hanzi_quest.session.models import PracticeItem, UserProgressSnapshot
from hanzi_quest.session.reconciler import ProgressCache
from hanzi_quest.session.service import SessionRegistry
from hanzi_quest.storage.backend import SQLiteBackend
from hanzi_quest.storage.db import Database


@pytest.fixture()
def temp_db(tmp_path):
    db = Database(tmp_path / "hanzi_quest_test.db")
    db.initialize()
    return db


@pytest.fixture()
def client(temp_db, monkeypatch):
    monkeypatch.setattr(app_module, "backend", SQLiteBackend(temp_db))
    monkeypatch.setattr(app_module, "registry", SessionRegistry())
    monkeypatch.setattr(app_module, "progress_cache", ProgressCache())
    with TestClient(app_module.app) as c:
        c.headers.update({"X-User-Id": "learner-1"})
        yield c


@pytest.fixture()
def items():
    return [
        PracticeItem(id="1", primary_text="你", secondary_text="nǐ", tertiary_text="you"),
        PracticeItem(id="2", primary_text="好", secondary_text="hǎo", tertiary_text="good"),
        PracticeItem(id="3", primary_text="我", secondary_text="wǒ", tertiary_text="I; me"),
    ]


class FakeBackend:
    """In-memory stand-in for the remote store; records every call it receives."""

    def __init__(self, *, fail_record: bool = False, fail_refresh: bool = False) -> None:
        self.fail_record = fail_record
        self.fail_refresh = fail_refresh
        self.calls: list[tuple] = []
        self.completions: dict[str, set[str]] = {}
        self.answers: list[tuple[int, bool]] = []

    async def record_completion(self, user_id, item_id, completion_key=None):
        self.calls.append(("record_completion", user_id, item_id, completion_key))
        if self.fail_record:
            raise BackendError("record_completion", "connection reset")
        self.completions.setdefault(user_id, set()).add(item_id)
        return {"character_id": item_id, "applied": True}

    async def refresh_profile(self, user_id):
        self.calls.append(("refresh_profile", user_id))
        if self.fail_refresh:
            raise BackendError("refresh_profile", "timeout")
        done = len(self.completions.get(user_id, ()))
        return UserProgressSnapshot(level=1, learning_count=done, total_practiced=done)

    async def record_flashcard_answer(self, card_id, correct):
        self.calls.append(("record_flashcard_answer", card_id, correct))
        self.answers.append((card_id, correct))
        return {"id": card_id}


@pytest.fixture()
def make_backend():
    return FakeBackend
