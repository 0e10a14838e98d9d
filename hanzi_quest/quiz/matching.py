from __future__ import annotations


def normalize_answer(text: str | None) -> str:
    return str(text or "").strip().lower()


def matches(candidate: str | None, canonical: str | None) -> bool:
    # Exact comparison after trim + lowercase; no typo tolerance.
    return normalize_answer(candidate) == normalize_answer(canonical)
