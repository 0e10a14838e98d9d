from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from hanzi_quest.errors import ValidationError
from hanzi_quest.session.models import StudyPair

DELIMITERS = {
    "tab": "\t",
    "comma": ",",
    "semicolon": ";",
}


@dataclass
class ParseReport:
    items: list[StudyPair] = field(default_factory=list)
    dropped_lines: int = 0

    def to_dict(self) -> dict:
        return {
            "items": [{"term": pair.term, "definition": pair.definition} for pair in self.items],
            "dropped_lines": self.dropped_lines,
        }


def resolve_delimiter(value: str | None) -> str:
    if value is None or value == "":
        return DELIMITERS["tab"]
    key = value.strip().lower()
    if key in DELIMITERS:
        return DELIMITERS[key]
    if value == "\\t":
        return "\t"
    if len(value) == 1 and value not in "\r\n":
        return value
    raise ValidationError(f"unsupported delimiter: {value!r}")


def parse_delimited(text: str, delimiter: str) -> ParseReport:
    if not delimiter:
        raise ValidationError("delimiter is empty")
    report = ParseReport()
    for raw_line in str(text or "").split("\n"):
        raw_line = raw_line.removesuffix("\r")
        if not raw_line.strip():
            continue
        # Only the first delimiter splits; the rest belongs to the definition.
        term, sep, definition = raw_line.partition(delimiter)
        term = term.strip()
        definition = definition.strip()
        if not sep or not term or not definition:
            report.dropped_lines += 1
            continue
        report.items.append(StudyPair(term=term, definition=definition))
    return report


def serialize_pairs(pairs: Iterable[StudyPair], delimiter: str) -> str:
    return "\n".join(f"{pair.term}{delimiter}{pair.definition}" for pair in pairs)


def build_draft(rows: Sequence[Mapping[str, str] | StudyPair]) -> list[StudyPair]:
    draft: list[StudyPair] = []
    for row in rows:
        if isinstance(row, StudyPair):
            term, definition = row.term, row.definition
        else:
            term, definition = row.get("term"), row.get("definition")
        term = str(term or "").strip()
        definition = str(definition or "").strip()
        if term and definition:
            draft.append(StudyPair(term=term, definition=definition))
    if not draft:
        raise ValidationError("add at least one card with both term and definition")
    return draft
