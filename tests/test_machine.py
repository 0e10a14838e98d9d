from __future__ import annotations

import random

from hanzi_quest.session.machine import (
    FACE_ANSWER,
    FACE_QUESTION,
    TIER_GOOD,
    TIER_KEEP_PRACTICING,
    TIER_PERFECT,
    FlashcardStudy,
    MultipleChoiceQuiz,
    WritingPractice,
    WrittenQuiz,
)
from hanzi_quest.session.models import (
    COMPLETED,
    PHASE_ANSWERED,
    PHASE_COMPLETED,
    PHASE_FINISHED,
    PHASE_MUST_RETYPE,
    PHASE_PRESENTING,
    PracticeItem,
)


def _cards(*pairs: tuple[str, str]) -> list[PracticeItem]:
    return [
        PracticeItem(id=str(idx), primary_text=term, secondary_text=definition, source_kind="study_set")
        for idx, (term, definition) in enumerate(pairs, start=10)
    ]


def test_written_quiz_scores_two_of_three():
    quiz = WrittenQuiz(_cards(("你", "you"), ("好", "good"), ("我", "I")))

    assert quiz.submit("You ") is True
    assert quiz.next().advanced
    assert quiz.submit("good") is True
    assert quiz.next().advanced
    assert quiz.submit("me") is False
    assert quiz.phase == PHASE_MUST_RETYPE

    refused = quiz.next()
    assert not refused.advanced
    assert quiz.current.primary_text == "我"

    assert quiz.retype("me") is False
    assert quiz.retype(" i ") is True
    assert quiz.phase == PHASE_COMPLETED
    assert quiz.next().finished

    assert [result.correct for result in quiz.results] == [True, True, False]
    summary = quiz.summary()
    assert summary.label == "2/3, 67%"
    assert summary.tier == TIER_KEEP_PRACTICING
    assert quiz.phase == PHASE_FINISHED


def test_written_quiz_records_one_result_per_item():
    quiz = WrittenQuiz(_cards(("上", "up")))
    assert quiz.submit("down") is False
    assert quiz.submit("up") is None
    assert quiz.retype("up") is True
    assert len(quiz.results) == 1

    snap = quiz.snapshot()
    assert snap.verdict is False
    assert snap.correct_answer == "up"


def test_written_quiz_with_swap_asks_definition_and_expects_term():
    quiz = WrittenQuiz(_cards(("大", "big")), swap=True)
    assert quiz.question_of(quiz.current) == "big"
    assert quiz.submit("大") is True


def test_summary_tiers():
    quiz = WrittenQuiz(_cards(("一", "one")))
    quiz.submit("one")
    assert quiz.summary().tier == TIER_PERFECT
    assert quiz.summary().label == "1/1, 100%"

    quiz = WrittenQuiz(_cards(*[(str(i), str(i)) for i in range(10)]))
    for idx in range(10):
        answer = str(idx) if idx < 7 else "wrong"
        if not quiz.submit(answer):
            quiz.retype(str(idx))
        quiz.next()
    assert quiz.summary().percent == 70
    assert quiz.summary().tier == TIER_GOOD


def test_flashcard_flip_toggles_between_faces():
    study = FlashcardStudy(_cards(("人", "person"), ("中", "middle")))
    assert study.face == FACE_QUESTION
    assert study.reveal() == FACE_ANSWER
    assert study.phase == PHASE_ANSWERED
    assert study.snapshot().correct_answer == "person"
    assert study.reveal() == FACE_QUESTION
    assert study.phase == PHASE_PRESENTING


def test_flashcard_next_marks_viewed_and_previous_goes_back():
    study = FlashcardStudy(_cards(("人", "person"), ("中", "middle")))
    assert study.previous() is False
    assert study.next().advanced
    assert study.sequencer.state_of("10") == COMPLETED
    assert study.face == FACE_QUESTION
    assert study.previous() is True
    assert study.current.primary_text == "人"
    study.next()
    assert study.next().finished
    assert study.finished
    assert study.reveal() is None


def test_multiple_choice_selection_is_single_shot():
    quiz = MultipleChoiceQuiz(
        _cards(("A", "alpha"), ("B", "beta"), ("C", "gamma"), ("D", "delta")),
        rng=random.Random(5),
    )
    assert sorted(quiz.options) == ["alpha", "beta", "delta", "gamma"]
    assert quiz.select("not an option") is None
    assert quiz.select("beta") is False
    assert quiz.select("alpha") is None
    assert len(quiz.results) == 1
    snap = quiz.snapshot()
    assert snap.selected == "beta"
    assert snap.verdict is False
    assert snap.correct_answer == "alpha"

    assert quiz.next().advanced
    assert quiz.selected is None
    assert quiz.select("beta") is True


def test_multiple_choice_options_shrink_with_small_sets():
    quiz = MultipleChoiceQuiz(_cards(("A", "alpha"), ("B", "beta")), rng=random.Random(1))
    assert sorted(quiz.options) == ["alpha", "beta"]
    quiz = MultipleChoiceQuiz(_cards(("A", "alpha")), rng=random.Random(1))
    assert quiz.options == ["alpha"]


def test_writing_completion_is_idempotent(items):
    practice = WritingPractice(items)
    assert practice.target_glyph == "你"

    assert practice.on_correct_stroke() == 1
    assert practice.on_mistake() == 1
    assert practice.on_complete("1") is True
    assert practice.on_complete("1") is False
    assert practice.phase == PHASE_COMPLETED

    # Counters freeze once the item is completed.
    assert practice.on_correct_stroke() == 1


def test_writing_ignores_completion_for_a_different_item(items):
    practice = WritingPractice(items)
    assert practice.on_complete("2") is False
    assert practice.sequencer.state_of("1") != COMPLETED
    assert not practice.next().advanced


def test_writing_restart_resets_counters_but_not_completion(items):
    practice = WritingPractice(items)
    practice.on_correct_stroke()
    practice.on_correct_stroke()
    practice.on_mistake()
    practice.restart()
    snap = practice.snapshot()
    assert (snap.strokes, snap.mistakes) == (0, 0)

    practice.on_complete()
    practice.restart()
    assert practice.sequencer.state_of("1") == COMPLETED

    assert practice.next().advanced
    assert practice.target_glyph == "好"
    assert practice.snapshot().strokes == 0


def test_writing_session_finishes_after_last_item(items):
    practice = WritingPractice(items[:1])
    practice.on_complete()
    result = practice.next()
    assert result.finished
    assert practice.target_glyph is None
    assert practice.snapshot().item is None
