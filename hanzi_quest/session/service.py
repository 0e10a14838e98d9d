from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Callable, Sequence

from hanzi_quest.config import SessionDefaults
from hanzi_quest.errors import ValidationError
from hanzi_quest.session.machine import (
    FlashcardStudy,
    MultipleChoiceQuiz,
    PracticeMachine,
    WritingPractice,
    WrittenQuiz,
)
from hanzi_quest.session.models import SOURCE_CUSTOM, AdvanceResult, PracticeItem, UserProgressSnapshot
from hanzi_quest.session.reconciler import AnswerRecorder, CompletionReconciler, ReconcileOutcome, RecordOutcome
from hanzi_quest.storage.backend import Backend

logger = logging.getLogger(__name__)

PRACTICE_MODES = {"new", "review", "select", "dashboard"}


class PracticeSession:
    def __init__(
        self,
        *,
        session_id: str,
        user_id: str,
        mode: str,
        machine: PracticeMachine,
        reconciler: CompletionReconciler | None = None,
        recorder: AnswerRecorder | None = None,
        on_finished: Callable[["PracticeSession"], None] | None = None,
    ) -> None:
        self.id = session_id
        self.user_id = user_id
        self.mode = mode
        self.machine = machine
        self.reconciler = reconciler
        self.recorder = recorder
        self.on_finished = on_finished
        self.closed = False
        self.progress: UserProgressSnapshot | None = None
        self.last_reconcile: ReconcileOutcome | None = None
        self.last_record: RecordOutcome | None = None
        self.starred: dict[str, bool] = {}

    def close(self) -> None:
        self.closed = True

    async def complete(self, item_id: str | None = None) -> bool:
        machine = self._machine(WritingPractice)
        item = machine.current
        if item is None or not machine.on_complete(item_id):
            return False
        if self.reconciler is None:
            return True
        outcome = await self.reconciler.on_item_completed(
            self.user_id,
            item,
            completion_key=f"{self.id}:{item.id}",
        )
        if self.closed:
            logger.debug("session %s closed before reconciliation finished; result discarded", self.id)
            return True
        self.last_reconcile = outcome
        if outcome.snapshot is not None:
            self.progress = outcome.snapshot
        return True

    def stroke(self) -> int:
        return self._machine(WritingPractice).on_correct_stroke()

    def mistake(self) -> int:
        return self._machine(WritingPractice).on_mistake()

    def restart(self) -> None:
        self._machine(WritingPractice).restart()

    def reveal(self) -> str | None:
        return self._machine(FlashcardStudy).reveal()

    def previous(self) -> bool:
        return self._machine(FlashcardStudy).previous()

    async def submit(self, answer: str) -> bool | None:
        machine = self._machine(WrittenQuiz)
        item = machine.current
        verdict = machine.submit(answer)
        if verdict is not None and item is not None:
            await self._record(item, verdict)
        return verdict

    def retype(self, text: str) -> bool:
        return self._machine(WrittenQuiz).retype(text)

    async def select(self, option: str) -> bool | None:
        machine = self._machine(MultipleChoiceQuiz)
        item = machine.current
        verdict = machine.select(option)
        if verdict is not None and item is not None:
            await self._record(item, verdict)
        return verdict

    def next(self) -> AdvanceResult:
        result = self.machine.next()
        if result.finished and self.on_finished is not None:
            self.on_finished(self)
        return result

    def set_starred(self, item_id: str, starred: bool) -> None:
        self.starred[item_id] = starred

    async def _record(self, item: PracticeItem, correct: bool) -> None:
        if self.recorder is None:
            return
        outcome = await self.recorder.record(item, correct)
        if not self.closed:
            self.last_record = outcome

    def _machine(self, kind: type) -> PracticeMachine:
        if not isinstance(self.machine, kind):
            raise ValidationError(f"{self.mode} sessions do not support this action")
        return self.machine

    def to_dict(self) -> dict:
        snapshot = self.machine.snapshot()
        data = {
            "session_id": self.id,
            "mode": self.mode,
            "closed": self.closed,
            "snapshot": snapshot.to_dict(),
        }
        if snapshot.item is not None and snapshot.item.id in self.starred:
            data["snapshot"]["item"]["starred"] = self.starred[snapshot.item.id]
        if isinstance(self.machine, WritingPractice):
            data["target_glyph"] = self.machine.target_glyph
            data["progress"] = self.progress.to_dict() if self.progress else None
            data["sync"] = self.last_reconcile.to_dict() if self.last_reconcile else None
        else:
            data["question"] = self.machine.question_of(snapshot.item) if snapshot.item else None
            data["sync"] = {"ok": self.last_record.ok, "error": self.last_record.error} if self.last_record else None
        if isinstance(self.machine, (WrittenQuiz, MultipleChoiceQuiz)) and self.machine.finished:
            summary = self.machine.summary()
            data["summary"] = {
                "correct": summary.correct,
                "total": summary.total,
                "percent": summary.percent,
                "tier": summary.tier,
                "label": summary.label,
            }
        return data


class SessionRegistry:
    """Active sessions held in memory; nothing survives a restart."""

    def __init__(self) -> None:
        self._sessions: dict[str, PracticeSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def open(
        self,
        *,
        user_id: str,
        mode: str,
        machine: PracticeMachine,
        reconciler: CompletionReconciler | None = None,
        recorder: AnswerRecorder | None = None,
    ) -> PracticeSession:
        # One active session per user; switching mode discards the previous one.
        for existing in [s for s in self._sessions.values() if s.user_id == user_id]:
            self.discard(existing.id)
        session = PracticeSession(
            session_id=uuid.uuid4().hex,
            user_id=user_id,
            mode=mode,
            machine=machine,
            reconciler=reconciler,
            recorder=recorder,
            on_finished=lambda finished: self.discard(finished.id),
        )
        self._sessions[session.id] = session
        logger.info("session %s opened for user %s (%s, %d items)", session.id, user_id, mode, machine.sequencer.length)
        return session

    def get(self, session_id: str, user_id: str) -> PracticeSession:
        session = self._sessions.get(session_id)
        if session is None or session.user_id != user_id:
            raise KeyError(session_id)
        return session

    def discard(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            session.close()


async def load_practice_items(
    backend: Backend,
    *,
    user_id: str,
    mode: str,
    item_ids: Sequence[str] | None = None,
    batch_size: int = SessionDefaults.new_batch_size,
) -> list[PracticeItem]:
    normalized = str(mode or "").strip().lower()
    if normalized not in PRACTICE_MODES:
        raise ValidationError(f"unsupported practice mode: {mode}")
    if normalized == "select":
        ids = [str(value).strip() for value in (item_ids or []) if str(value).strip()]
        if not ids:
            raise ValidationError("select at least one character to practice")
        items = [replace(item, source_kind=SOURCE_CUSTOM) for item in await backend.fetch_items_by_ids(ids)]
    elif normalized == "new":
        items = await backend.fetch_catalog_items(limit=batch_size)
    elif normalized == "review":
        items = await backend.fetch_learning_items(user_id)
    else:
        item = await backend.fetch_next_dashboard_item(user_id)
        items = [item] if item else []
    if not items:
        raise ValidationError("no characters available for this practice mode")
    return items


def build_quiz_machine(
    mode: str,
    items: Sequence[PracticeItem],
    *,
    shuffle: bool = False,
    swap: bool = False,
    distractor_count: int = SessionDefaults.distractor_count,
) -> PracticeMachine:
    normalized = str(mode or "").strip().lower().replace("-", "_")
    if normalized == "study":
        return FlashcardStudy(items, shuffle=shuffle, swap=swap)
    if normalized == "written":
        return WrittenQuiz(items, shuffle=shuffle, swap=swap)
    if normalized == "multiple_choice":
        return MultipleChoiceQuiz(items, shuffle=shuffle, swap=swap, distractor_count=distractor_count)
    raise ValidationError(f"unsupported quiz mode: {mode}")
