from __future__ import annotations

import logging
from dataclasses import dataclass

from hanzi_quest.errors import BackendError
from hanzi_quest.session.models import PracticeItem, UserProgressSnapshot
from hanzi_quest.storage.backend import Backend

logger = logging.getLogger(__name__)

STEP_RECORD = "record_completion"
STEP_REFRESH = "refresh_profile"


@dataclass(frozen=True)
class ReconcileOutcome:
    ok: bool
    recorded: bool
    snapshot: UserProgressSnapshot | None = None
    failed_step: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "recorded": self.recorded,
            "snapshot": self.snapshot.to_dict() if self.snapshot else None,
            "failed_step": self.failed_step,
            "error": self.error,
        }


@dataclass(frozen=True)
class RecordOutcome:
    ok: bool
    error: str | None = None


class ProgressCache:
    """Last known profile aggregates per user; each refresh replaces the entry."""

    def __init__(self) -> None:
        self._snapshots: dict[str, UserProgressSnapshot] = {}

    def get(self, user_id: str) -> UserProgressSnapshot | None:
        return self._snapshots.get(user_id)

    def replace(self, user_id: str, snapshot: UserProgressSnapshot) -> None:
        self._snapshots[user_id] = snapshot

    def clear(self) -> None:
        self._snapshots.clear()


class CompletionReconciler:
    def __init__(self, backend: Backend, cache: ProgressCache) -> None:
        self.backend = backend
        self.cache = cache

    async def on_item_completed(
        self,
        user_id: str,
        item: PracticeItem,
        *,
        completion_key: str | None = None,
    ) -> ReconcileOutcome:
        # Two non-atomic steps; the refresh only runs after the record call succeeded.
        try:
            await self.backend.record_completion(user_id, item.id, completion_key)
        except BackendError as exc:
            logger.warning("completion of %s for user %s not recorded: %s", item.id, user_id, exc)
            return ReconcileOutcome(ok=False, recorded=False, failed_step=STEP_RECORD, error=str(exc))

        try:
            snapshot = await self.backend.refresh_profile(user_id)
        except BackendError as exc:
            logger.warning("profile refresh for user %s failed, keeping stale snapshot: %s", user_id, exc)
            return ReconcileOutcome(
                ok=False,
                recorded=True,
                snapshot=self.cache.get(user_id),
                failed_step=STEP_REFRESH,
                error=str(exc),
            )

        self.cache.replace(user_id, snapshot)
        logger.info("completion of %s for user %s reconciled (level %s)", item.id, user_id, snapshot.level)
        return ReconcileOutcome(ok=True, recorded=True, snapshot=snapshot)


class AnswerRecorder:
    def __init__(self, backend: Backend) -> None:
        self.backend = backend

    async def record(self, item: PracticeItem, correct: bool) -> RecordOutcome:
        try:
            await self.backend.record_flashcard_answer(int(item.id), correct)
        except (BackendError, ValueError) as exc:
            logger.warning("answer for card %s not recorded: %s", item.id, exc)
            return RecordOutcome(ok=False, error=str(exc))
        return RecordOutcome(ok=True)
