from __future__ import annotations

import random
from typing import Sequence

from hanzi_quest.quiz.distractors import fisher_yates
from hanzi_quest.session.models import (
    COMPLETED,
    IN_PROGRESS,
    NOT_STARTED,
    AdvanceResult,
    PracticeItem,
)


class SessionSequencer:
    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()
        self._items: list[PracticeItem] = []
        self._states: dict[str, str] = {}
        self._cursor = 0
        self._finished = False

    def reset(self, items: Sequence[PracticeItem], shuffle: bool = False) -> None:
        incoming = list(items)
        self._items = fisher_yates(incoming, self._rng) if shuffle else incoming
        self._states = {item.id: NOT_STARTED for item in self._items}
        self._cursor = 0
        self._finished = not self._items

    @property
    def items(self) -> tuple[PracticeItem, ...]:
        return tuple(self._items)

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def length(self) -> int:
        return len(self._items)

    @property
    def is_last(self) -> bool:
        return bool(self._items) and self._cursor == len(self._items) - 1

    @property
    def finished(self) -> bool:
        return self._finished

    def current(self) -> PracticeItem | None:
        if self._finished:
            return None
        return self._items[self._cursor]

    def state_of(self, item_id: str) -> str:
        return self._states.get(item_id, NOT_STARTED)

    def mark_in_progress(self, item_id: str) -> None:
        if self._states.get(item_id) == NOT_STARTED:
            self._states[item_id] = IN_PROGRESS

    def mark_completed(self, item_id: str) -> bool:
        if item_id not in self._states or self._states[item_id] == COMPLETED:
            return False
        self._states[item_id] = COMPLETED
        return True

    def advance(self) -> AdvanceResult:
        current = self.current()
        if current is None:
            return AdvanceResult(advanced=False, has_next=False, finished=True, reason="finished")
        if self._states.get(current.id) != COMPLETED:
            return AdvanceResult(advanced=False, has_next=True, reason="incomplete")
        if self.is_last:
            self._finished = True
            return AdvanceResult(advanced=False, has_next=False, finished=True)
        self._cursor += 1
        return AdvanceResult(advanced=True, has_next=True)

    def retreat(self) -> bool:
        if self._finished or self._cursor == 0:
            return False
        self._cursor -= 1
        return True
