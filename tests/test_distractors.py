from __future__ import annotations

import random

from hanzi_quest.quiz.distractors import fisher_yates, sample_options
from hanzi_quest.session.models import PracticeItem


def _pool(*answers: str) -> list[PracticeItem]:
    return [
        PracticeItem(id=str(idx), primary_text=f"term{idx}", secondary_text=answer)
        for idx, answer in enumerate(answers, start=1)
    ]


def test_options_from_four_item_pool_hold_every_answer_once():
    pool = _pool("A", "B", "C", "D")
    for seed in range(20):
        options = sample_options(pool, 1, "B", 3, rng=random.Random(seed))
        assert sorted(options) == ["A", "B", "C", "D"]


def test_option_count_is_capped_by_pool_size():
    pool = _pool("one", "two", "three", "four", "five", "six")
    rng = random.Random(7)
    assert len(sample_options(pool, 0, "one", 3, rng=rng)) == 4
    assert len(sample_options(pool[:2], 0, "one", 3, rng=rng)) == 2
    assert sample_options(pool[:1], 0, "one", 3, rng=rng) == ["one"]


def test_correct_answer_is_always_present_and_current_item_is_excluded():
    pool = _pool("red", "green", "blue", "green")
    for seed in range(30):
        options = sample_options(pool, 1, "green", 3, rng=random.Random(seed))
        assert "green" in options
        assert options.count("green") == 2
        assert len(options) == 4


def test_custom_answer_accessor_is_used_for_candidates():
    pool = _pool("x", "y", "z")
    options = sample_options(pool, 0, "term1", 2, answer_of=lambda item: item.primary_text, rng=random.Random(3))
    assert sorted(options) == ["term1", "term2", "term3"]


def test_fisher_yates_returns_a_permutation_without_mutating_input():
    source = list(range(10))
    shuffled = fisher_yates(source, random.Random(42))
    assert sorted(shuffled) == source
    assert source == list(range(10))
    assert fisher_yates([], random.Random(1)) == []


def test_five_item_pool_excluding_the_correct_item():
    pool = _pool("A", "C", "B", "D", "E")
    for seed in range(25):
        options = sample_options(pool, 2, "B", 3, rng=random.Random(seed))
        assert len(options) == 4
        assert options.count("B") == 1
        assert set(options) <= {"A", "B", "C", "D", "E"}
