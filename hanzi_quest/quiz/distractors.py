from __future__ import annotations

import random
from typing import Callable, Sequence, TypeVar

from hanzi_quest.session.models import PracticeItem

T = TypeVar("T")

DEFAULT_DISTRACTOR_COUNT = 3


def fisher_yates(items: Sequence[T], rng: random.Random | None = None) -> list[T]:
    rng = rng or random.Random()
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def default_answer(item: PracticeItem) -> str:
    return item.secondary_text


def sample_options(
    pool: Sequence[PracticeItem],
    exclude_index: int,
    correct_answer: str,
    count: int = DEFAULT_DISTRACTOR_COUNT,
    *,
    answer_of: Callable[[PracticeItem], str] = default_answer,
    rng: random.Random | None = None,
) -> list[str]:
    rng = rng or random.Random()
    candidates = [answer_of(item) for idx, item in enumerate(pool) if idx != exclude_index]
    distractors = fisher_yates(candidates, rng)[: max(0, int(count))]
    # Items sharing an answer text are not deduplicated.
    return fisher_yates([correct_answer, *distractors], rng)
