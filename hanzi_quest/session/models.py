from __future__ import annotations

from dataclasses import asdict, dataclass, field

SOURCE_CATALOG = "catalog"
SOURCE_CUSTOM = "custom"
SOURCE_STUDY_SET = "study_set"
SOURCE_KINDS = {SOURCE_CATALOG, SOURCE_CUSTOM, SOURCE_STUDY_SET}

NOT_STARTED = "not_started"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"

PHASE_IDLE = "idle"
PHASE_PRESENTING = "presenting"
PHASE_ANSWERED = "answered"
PHASE_MUST_RETYPE = "must_retype"
PHASE_COMPLETED = "completed"
PHASE_FINISHED = "finished"


@dataclass(frozen=True)
class PracticeItem:
    id: str
    primary_text: str
    secondary_text: str
    tertiary_text: str | None = None
    source_kind: str = SOURCE_CATALOG
    starred: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class QuizResult:
    item: PracticeItem
    user_answer: str
    correct: bool

    def to_dict(self) -> dict:
        return {"item": self.item.to_dict(), "user_answer": self.user_answer, "correct": self.correct}


@dataclass(frozen=True)
class StudyPair:
    term: str
    definition: str


@dataclass(frozen=True)
class UserProgressSnapshot:
    level: int = 1
    mastered_count: int = 0
    learning_count: int = 0
    streak_days: int = 0
    username: str = "Learner"
    total_practiced: int = 0

    @classmethod
    def from_row(cls, row: dict) -> "UserProgressSnapshot":
        return cls(
            level=int(row.get("level") or 1),
            mastered_count=int(row.get("mastered") or 0),
            learning_count=int(row.get("learning") or 0),
            streak_days=int(row.get("streak") or 0),
            username=str(row.get("username") or "Learner"),
            total_practiced=int(row.get("total_characters_practiced") or 0),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class AdvanceResult:
    advanced: bool
    has_next: bool
    finished: bool = False
    reason: str | None = None


@dataclass(frozen=True)
class QuizSummary:
    correct: int
    total: int
    percent: int
    tier: str

    @property
    def label(self) -> str:
        return f"{self.correct}/{self.total}, {self.percent}%"


@dataclass(frozen=True)
class SessionSnapshot:
    kind: str
    phase: str
    position: int
    total: int
    item: PracticeItem | None
    completion: str
    face: str | None = None
    options: tuple[str, ...] = ()
    selected: str | None = None
    verdict: bool | None = None
    correct_answer: str | None = None
    strokes: int = 0
    mistakes: int = 0
    results: tuple[QuizResult, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "phase": self.phase,
            "position": self.position,
            "total": self.total,
            "item": self.item.to_dict() if self.item else None,
            "completion": self.completion,
            "face": self.face,
            "options": list(self.options),
            "selected": self.selected,
            "verdict": self.verdict,
            "correct_answer": self.correct_answer,
            "strokes": self.strokes,
            "mistakes": self.mistakes,
            "results": [result.to_dict() for result in self.results],
        }
