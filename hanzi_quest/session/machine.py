from __future__ import annotations

import random
from typing import Sequence

from hanzi_quest.config import SessionDefaults
from hanzi_quest.quiz.distractors import sample_options
from hanzi_quest.quiz.matching import matches
from hanzi_quest.session.models import (
    PHASE_ANSWERED,
    PHASE_COMPLETED,
    PHASE_FINISHED,
    PHASE_IDLE,
    PHASE_MUST_RETYPE,
    PHASE_PRESENTING,
    AdvanceResult,
    PracticeItem,
    QuizResult,
    QuizSummary,
    SessionSnapshot,
)
from hanzi_quest.session.sequencer import SessionSequencer

FACE_QUESTION = "question"
FACE_ANSWER = "answer"

TIER_PERFECT = "perfect"
TIER_GOOD = "good"
TIER_KEEP_PRACTICING = "keep_practicing"


class PracticeMachine:
    kind = "practice"

    def __init__(
        self,
        items: Sequence[PracticeItem],
        *,
        shuffle: bool = False,
        swap: bool = False,
        rng: random.Random | None = None,
    ) -> None:
        self.rng = rng or random.Random()
        self.swap = swap
        self.sequencer = SessionSequencer(self.rng)
        self.sequencer.reset(items, shuffle=shuffle)
        self.phase = PHASE_IDLE
        self.results: list[QuizResult] = []
        self._present()

    def question_of(self, item: PracticeItem) -> str:
        return item.secondary_text if self.swap else item.primary_text

    def answer_of(self, item: PracticeItem) -> str:
        return item.primary_text if self.swap else item.secondary_text

    @property
    def current(self) -> PracticeItem | None:
        return self.sequencer.current()

    @property
    def finished(self) -> bool:
        return self.phase == PHASE_FINISHED

    def next(self) -> AdvanceResult:
        result = self.sequencer.advance()
        if result.advanced:
            self._present()
        elif result.finished:
            self.phase = PHASE_FINISHED
        return result

    def summary(self) -> QuizSummary:
        total = len(self.results)
        correct = sum(1 for result in self.results if result.correct)
        percent = int(correct * 100 / total + 0.5) if total else 0
        if total and correct == total:
            tier = TIER_PERFECT
        elif total and correct >= total * SessionDefaults.good_score_ratio:
            tier = TIER_GOOD
        else:
            tier = TIER_KEEP_PRACTICING
        return QuizSummary(correct=correct, total=total, percent=percent, tier=tier)

    def snapshot(self) -> SessionSnapshot:
        item = self.current
        return SessionSnapshot(
            kind=self.kind,
            phase=self.phase,
            position=self.sequencer.cursor,
            total=self.sequencer.length,
            item=item,
            completion=self.sequencer.state_of(item.id) if item else PHASE_FINISHED,
            results=tuple(self.results),
            **self._snapshot_extras(),
        )

    def _snapshot_extras(self) -> dict:
        return {}

    def _present(self) -> None:
        item = self.current
        if item is None:
            self.phase = PHASE_FINISHED
            return
        self.phase = PHASE_PRESENTING
        self.sequencer.mark_in_progress(item.id)
        self._on_present(item)

    def _on_present(self, item: PracticeItem) -> None:
        return None


class FlashcardStudy(PracticeMachine):
    kind = "study"

    def reveal(self) -> str | None:
        if self.phase == PHASE_PRESENTING:
            self.phase = PHASE_ANSWERED
        elif self.phase == PHASE_ANSWERED:
            self.phase = PHASE_PRESENTING
        else:
            return None
        return self.face

    @property
    def face(self) -> str:
        return FACE_ANSWER if self.phase == PHASE_ANSWERED else FACE_QUESTION

    def next(self) -> AdvanceResult:
        item = self.current
        if item is not None:
            self.sequencer.mark_completed(item.id)
        return super().next()

    def previous(self) -> bool:
        if not self.sequencer.retreat():
            return False
        self._present()
        return True

    def _snapshot_extras(self) -> dict:
        item = self.current
        if item is None:
            return {}
        return {"face": self.face, "correct_answer": self.answer_of(item) if self.face == FACE_ANSWER else None}


class WrittenQuiz(PracticeMachine):
    kind = "written"

    def submit(self, answer: str) -> bool | None:
        item = self.current
        if item is None or self.phase != PHASE_PRESENTING:
            return None
        correct = matches(answer, self.answer_of(item))
        self.results.append(QuizResult(item=item, user_answer=str(answer or "").strip(), correct=correct))
        if correct:
            self.sequencer.mark_completed(item.id)
            self.phase = PHASE_COMPLETED
        else:
            self.phase = PHASE_MUST_RETYPE
        return correct

    def retype(self, text: str) -> bool:
        item = self.current
        if item is None or self.phase != PHASE_MUST_RETYPE:
            return False
        if not matches(text, self.answer_of(item)):
            return False
        self.sequencer.mark_completed(item.id)
        self.phase = PHASE_COMPLETED
        return True

    def _snapshot_extras(self) -> dict:
        item = self.current
        if item is None or self.phase == PHASE_PRESENTING:
            return {}
        last = self.results[-1] if self.results and self.results[-1].item.id == item.id else None
        return {
            "verdict": last.correct if last else None,
            "correct_answer": self.answer_of(item),
        }


class MultipleChoiceQuiz(PracticeMachine):
    kind = "multiple_choice"

    def __init__(
        self,
        items: Sequence[PracticeItem],
        *,
        shuffle: bool = False,
        swap: bool = False,
        rng: random.Random | None = None,
        distractor_count: int = SessionDefaults.distractor_count,
    ) -> None:
        self.distractor_count = distractor_count
        self.options: list[str] = []
        self.selected: str | None = None
        super().__init__(items, shuffle=shuffle, swap=swap, rng=rng)

    def select(self, option: str) -> bool | None:
        item = self.current
        if item is None or self.phase != PHASE_PRESENTING or option not in self.options:
            return None
        correct = option == self.answer_of(item)
        self.selected = option
        self.results.append(QuizResult(item=item, user_answer=option, correct=correct))
        self.sequencer.mark_completed(item.id)
        self.phase = PHASE_COMPLETED
        return correct

    def _on_present(self, item: PracticeItem) -> None:
        self.selected = None
        self.options = sample_options(
            self.sequencer.items,
            self.sequencer.cursor,
            self.answer_of(item),
            self.distractor_count,
            answer_of=self.answer_of,
            rng=self.rng,
        )

    def _snapshot_extras(self) -> dict:
        if self.current is None:
            return {}
        extras: dict = {"options": tuple(self.options), "selected": self.selected}
        if self.phase == PHASE_COMPLETED:
            extras["verdict"] = self.results[-1].correct
            extras["correct_answer"] = self.answer_of(self.current)
        return extras


class WritingPractice(PracticeMachine):
    kind = "writing"

    def __init__(self, items: Sequence[PracticeItem], **kwargs) -> None:
        self.strokes = 0
        self.mistakes = 0
        super().__init__(items, **kwargs)

    @property
    def target_glyph(self) -> str | None:
        item = self.current
        return item.primary_text if item else None

    def on_correct_stroke(self) -> int:
        if self.phase == PHASE_PRESENTING:
            self.strokes += 1
        return self.strokes

    def on_mistake(self) -> int:
        if self.phase == PHASE_PRESENTING:
            self.mistakes += 1
        return self.mistakes

    def on_complete(self, item_id: str | None = None) -> bool:
        item = self.current
        if item is None:
            return False
        if item_id is not None and str(item_id) != item.id:
            return False
        if not self.sequencer.mark_completed(item.id):
            return False
        self.phase = PHASE_COMPLETED
        return True

    def restart(self) -> None:
        self.strokes = 0
        self.mistakes = 0

    def _on_present(self, item: PracticeItem) -> None:
        self.restart()

    def _snapshot_extras(self) -> dict:
        return {"strokes": self.strokes, "mistakes": self.mistakes}
