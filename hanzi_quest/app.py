from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Awaitable

from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from hanzi_quest.api.schemas import (
    AnswerRequest,
    CompleteRequest,
    ImportPreviewRequest,
    ImportSetRequest,
    PracticeStartRequest,
    QuizStartRequest,
    SelectRequest,
    StudySetRequest,
)
from hanzi_quest.config import SessionDefaults, configure_logging, ensure_dirs
from hanzi_quest.errors import BackendError, NotFoundError, ValidationError
from hanzi_quest.services.rest import RestBackend
from hanzi_quest.session.machine import WritingPractice
from hanzi_quest.session.reconciler import AnswerRecorder, CompletionReconciler, ProgressCache
from hanzi_quest.session.service import PracticeSession, SessionRegistry, build_quiz_machine, load_practice_items
from hanzi_quest.sets.service import SetResult, StudySetService
from hanzi_quest.storage.backend import Backend, SQLiteBackend
from hanzi_quest.storage.db import Database

logger = logging.getLogger(__name__)

db = Database()


def build_backend() -> Backend:
    kind = os.getenv("HANZI_QUEST_BACKEND", "sqlite").strip().lower()
    if kind == "rest":
        return RestBackend()
    return SQLiteBackend(db)


backend: Backend = build_backend()
progress_cache = ProgressCache()
registry = SessionRegistry()
defaults = SessionDefaults()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    configure_logging()
    if isinstance(backend, SQLiteBackend):
        ensure_dirs()
        backend.db.initialize()
    yield


app = FastAPI(title="Hanzi Quest", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def current_user_id(x_user_id: str | None) -> str:
    user_id = str(x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="please sign in")
    return user_id


def _set_service() -> StudySetService:
    return StudySetService(backend)


def _session(session_id: str, user_id: str) -> PracticeSession:
    try:
        return registry.get(session_id, user_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="session not found or already ended") from exc


def _set_payload(result: SetResult) -> dict:
    if not result.ok:
        raise HTTPException(status_code=502, detail=result.error or "backend unavailable")
    return {"ok": True, **result.data}


async def _set_call(call: Awaitable[SetResult]) -> dict:
    try:
        result = await call
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _set_payload(result)


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/api/profile")
async def profile(x_user_id: str | None = Header(default=None)) -> dict:
    user_id = current_user_id(x_user_id)
    try:
        snapshot = await backend.get_profile(user_id)
        badges = await backend.list_badges(user_id)
    except BackendError as exc:
        cached = progress_cache.get(user_id)
        if cached is None:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {"ok": True, "profile": cached.to_dict(), "badges": [], "stale": True}
    progress_cache.replace(user_id, snapshot)
    return {"ok": True, "profile": snapshot.to_dict(), "badges": badges, "stale": False}


@app.get("/api/dashboard")
async def dashboard(x_user_id: str | None = Header(default=None)) -> dict:
    user_id = current_user_id(x_user_id)
    try:
        snapshot = await backend.get_profile(user_id)
        next_item = await backend.fetch_next_dashboard_item(user_id)
        recent = await backend.fetch_recent_items(user_id, defaults.recent_limit)
    except BackendError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    progress_cache.replace(user_id, snapshot)
    return {
        "ok": True,
        "profile": snapshot.to_dict(),
        "next_item": next_item.to_dict() if next_item else None,
        "recent": recent,
    }


@app.get("/api/catalog")
async def catalog(limit: int | None = Query(default=None, ge=1, le=5000)) -> dict:
    try:
        items = await backend.fetch_catalog_items(limit=limit)
    except BackendError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"ok": True, "items": [item.to_dict() for item in items]}


@app.post("/api/practice")
async def start_practice(req: PracticeStartRequest, x_user_id: str | None = Header(default=None)) -> dict:
    user_id = current_user_id(x_user_id)
    try:
        items = await load_practice_items(
            backend,
            user_id=user_id,
            mode=req.mode,
            item_ids=req.item_ids,
            batch_size=defaults.new_batch_size,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except BackendError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    session = registry.open(
        user_id=user_id,
        mode=req.mode,
        machine=WritingPractice(items, shuffle=req.shuffle),
        reconciler=CompletionReconciler(backend, progress_cache),
    )
    return {"ok": True, **session.to_dict()}


@app.post("/api/practice/{session_id}/stroke")
def practice_stroke(session_id: str, x_user_id: str | None = Header(default=None)) -> dict:
    session = _session(session_id, current_user_id(x_user_id))
    strokes = _run(session.stroke)
    return {"ok": True, "strokes": strokes, **session.to_dict()}


@app.post("/api/practice/{session_id}/mistake")
def practice_mistake(session_id: str, x_user_id: str | None = Header(default=None)) -> dict:
    session = _session(session_id, current_user_id(x_user_id))
    mistakes = _run(session.mistake)
    return {"ok": True, "mistakes": mistakes, **session.to_dict()}


@app.post("/api/practice/{session_id}/restart")
def practice_restart(session_id: str, x_user_id: str | None = Header(default=None)) -> dict:
    session = _session(session_id, current_user_id(x_user_id))
    _run(session.restart)
    return {"ok": True, **session.to_dict()}


@app.post("/api/practice/{session_id}/complete")
async def practice_complete(
    session_id: str,
    req: CompleteRequest,
    x_user_id: str | None = Header(default=None),
) -> dict:
    session = _session(session_id, current_user_id(x_user_id))
    try:
        transitioned = await session.complete(req.item_id)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"ok": True, "transitioned": transitioned, **session.to_dict()}


@app.post("/api/practice/{session_id}/next")
def practice_next(session_id: str, x_user_id: str | None = Header(default=None)) -> dict:
    session = _session(session_id, current_user_id(x_user_id))
    return _advance(session)


@app.delete("/api/practice/{session_id}")
def practice_exit(session_id: str, x_user_id: str | None = Header(default=None)) -> dict:
    session = _session(session_id, current_user_id(x_user_id))
    registry.discard(session.id)
    return {"ok": True, "session_id": session.id, "closed": True}


@app.get("/api/sets")
async def list_sets(x_user_id: str | None = Header(default=None)) -> dict:
    user_id = current_user_id(x_user_id)
    return _set_payload(await _set_service().list_sets(user_id))


@app.post("/api/sets")
async def create_set(req: StudySetRequest, x_user_id: str | None = Header(default=None)) -> dict:
    user_id = current_user_id(x_user_id)
    try:
        result = await _set_service().create_set(
            user_id=user_id,
            title=req.title,
            description=req.description,
            rows=[row.model_dump() for row in req.cards],
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _set_payload(result)


@app.post("/api/sets/import/preview")
def preview_import(req: ImportPreviewRequest) -> dict:
    try:
        report = _set_service().preview_import(req.text, req.delimiter)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"ok": True, **report.to_dict()}


@app.post("/api/sets/import")
async def import_set(req: ImportSetRequest, x_user_id: str | None = Header(default=None)) -> dict:
    user_id = current_user_id(x_user_id)
    try:
        result = await _set_service().import_set(
            user_id=user_id,
            title=req.title,
            text=req.text,
            delimiter=req.delimiter,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _set_payload(result)


@app.get("/api/sets/{set_id}")
async def get_set(set_id: int, x_user_id: str | None = Header(default=None)) -> dict:
    user_id = current_user_id(x_user_id)
    return await _set_call(_set_service().get_set(set_id, user_id=user_id))


@app.put("/api/sets/{set_id}")
async def update_set(set_id: int, req: StudySetRequest, x_user_id: str | None = Header(default=None)) -> dict:
    user_id = current_user_id(x_user_id)
    return await _set_call(
        _set_service().update_set(
            set_id,
            user_id=user_id,
            title=req.title,
            description=req.description,
            rows=[row.model_dump() for row in req.cards],
        )
    )


@app.delete("/api/sets/{set_id}")
async def delete_set(set_id: int, x_user_id: str | None = Header(default=None)) -> dict:
    user_id = current_user_id(x_user_id)
    return await _set_call(_set_service().delete_set(set_id, user_id=user_id))


@app.get("/api/sets/{set_id}/export")
async def export_set(
    set_id: int,
    delimiter: str = Query(default="tab"),
    x_user_id: str | None = Header(default=None),
) -> dict:
    user_id = current_user_id(x_user_id)
    return await _set_call(_set_service().export_set(set_id, delimiter, user_id=user_id))


@app.delete("/api/cards/{card_id}")
async def remove_card(card_id: int, x_user_id: str | None = Header(default=None)) -> dict:
    user_id = current_user_id(x_user_id)
    return await _set_call(_set_service().remove_item(card_id, user_id=user_id))


@app.post("/api/cards/{card_id}/star")
async def star_card(card_id: int, x_user_id: str | None = Header(default=None)) -> dict:
    user_id = current_user_id(x_user_id)
    return await _set_call(_set_service().toggle_star(card_id, user_id=user_id))


@app.post("/api/sets/{set_id}/sessions")
async def start_quiz(set_id: int, req: QuizStartRequest, x_user_id: str | None = Header(default=None)) -> dict:
    user_id = current_user_id(x_user_id)
    try:
        items = await _set_service().session_items(set_id, user_id=user_id, starred_only=req.starred_only)
        machine = build_quiz_machine(
            req.mode,
            items,
            shuffle=req.shuffle,
            swap=req.swap,
            distractor_count=req.distractor_count,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except BackendError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    session = registry.open(
        user_id=user_id,
        mode=machine.kind,
        machine=machine,
        recorder=AnswerRecorder(backend),
    )
    return {"ok": True, **session.to_dict()}


@app.get("/api/sessions/{session_id}")
def get_quiz_session(session_id: str, x_user_id: str | None = Header(default=None)) -> dict:
    session = _session(session_id, current_user_id(x_user_id))
    return {"ok": True, **session.to_dict()}


@app.post("/api/sessions/{session_id}/reveal")
def reveal_card(session_id: str, x_user_id: str | None = Header(default=None)) -> dict:
    session = _session(session_id, current_user_id(x_user_id))
    face = _run(session.reveal)
    return {"ok": True, "face": face, **session.to_dict()}


@app.post("/api/sessions/{session_id}/previous")
def previous_card(session_id: str, x_user_id: str | None = Header(default=None)) -> dict:
    session = _session(session_id, current_user_id(x_user_id))
    moved = _run(session.previous)
    return {"ok": True, "moved": moved, **session.to_dict()}


@app.post("/api/sessions/{session_id}/answer")
async def submit_answer(
    session_id: str,
    req: AnswerRequest,
    x_user_id: str | None = Header(default=None),
) -> dict:
    session = _session(session_id, current_user_id(x_user_id))
    try:
        verdict = await session.submit(req.answer)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"ok": True, "correct": verdict, **session.to_dict()}


@app.post("/api/sessions/{session_id}/retype")
def retype_answer(
    session_id: str,
    req: AnswerRequest,
    x_user_id: str | None = Header(default=None),
) -> dict:
    session = _session(session_id, current_user_id(x_user_id))
    accepted = _run(session.retype, req.answer)
    return {"ok": True, "accepted": accepted, **session.to_dict()}


@app.post("/api/sessions/{session_id}/select")
async def select_option(
    session_id: str,
    req: SelectRequest,
    x_user_id: str | None = Header(default=None),
) -> dict:
    session = _session(session_id, current_user_id(x_user_id))
    try:
        verdict = await session.select(req.option)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"ok": True, "correct": verdict, **session.to_dict()}


@app.post("/api/sessions/{session_id}/star")
async def star_current_card(session_id: str, x_user_id: str | None = Header(default=None)) -> dict:
    user_id = current_user_id(x_user_id)
    session = _session(session_id, user_id)
    item = session.machine.current
    if item is None:
        raise HTTPException(status_code=400, detail="no card to star")
    payload = await _set_call(_set_service().toggle_star(int(item.id), user_id=user_id))
    session.set_starred(item.id, payload["starred"])
    return {"ok": True, "starred": payload["starred"], **session.to_dict()}


@app.post("/api/sessions/{session_id}/next")
def next_question(session_id: str, x_user_id: str | None = Header(default=None)) -> dict:
    session = _session(session_id, current_user_id(x_user_id))
    return _advance(session)


@app.delete("/api/sessions/{session_id}")
def exit_quiz(session_id: str, x_user_id: str | None = Header(default=None)) -> dict:
    session = _session(session_id, current_user_id(x_user_id))
    registry.discard(session.id)
    return {"ok": True, "session_id": session.id, "closed": True}


def _advance(session: PracticeSession) -> dict:
    result = session.next()
    return {
        "ok": True,
        "advanced": result.advanced,
        "has_next": result.has_next,
        "finished": result.finished,
        "reason": result.reason,
        **session.to_dict(),
    }


def _run(action, *args):
    try:
        return action(*args)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
